"""
services/submission.py

답안 제출 흐름.

- 전체 파트 답안 + 경과 시간을 하나의 요청으로 모아 한 번만 전송한다.
- 제출 중 플래그로 중복 제출(더블 클릭, 시간 종료와 동시 제출)을 막는다.
- 실패 시 로컬 답안은 그대로 두고 재시도 가능 상태로 남긴다.
- 채점은 백엔드 담당이며 응답은 해석 없이 그대로 보관한다.
"""

import logging
from typing import Mapping, Optional

from toeic_cbt.models.exam_models import (
    ExamSubmissionRequest,
    ExamSubmissionResult,
    SubmittedAnswer,
)
from toeic_cbt.models.session_state import ExamSession
from toeic_cbt.services.backend_client import BackendClient, BackendError

logger = logging.getLogger(__name__)

MSG_SUBMIT_FAILED = "답안 제출에 실패했습니다. 다시 시도해 주세요."


def build_request(
    session: ExamSession,
    all_answers: Mapping[int, Mapping[int, str]],
    elapsed_seconds: int,
) -> ExamSubmissionRequest:
    """
    세션 전체 답안 캐시로 제출 요청을 만든다.

    응답하지 않은 문항(빈 값)은 포함하지 않으며, 파트 순서 → question_id 순으로 정렬한다.
    """
    answers = []
    for part_id in session.part_ids:
        part_answers = all_answers.get(part_id, {})
        for question_id in sorted(part_answers):
            letter = part_answers[question_id]
            if letter:
                answers.append(SubmittedAnswer(question_id=question_id, selected_option=letter))
    return ExamSubmissionRequest(
        exam_id=session.exam_id,
        full_test=session.is_full,
        part_ids=list(session.part_ids),
        answers=answers,
        duration_seconds=max(0, int(elapsed_seconds)),
    )


class SubmissionFlow:
    def __init__(self, client: BackendClient) -> None:
        self._client = client
        self.is_submitting = False
        self.result: Optional[ExamSubmissionResult] = None
        self.error: Optional[str] = None
        self.last_request: Optional[ExamSubmissionRequest] = None
        self.attempts = 0

    @property
    def is_done(self) -> bool:
        return self.result is not None

    @property
    def can_retry(self) -> bool:
        return self.error is not None and not self.is_submitting and not self.is_done

    async def submit(self, request: ExamSubmissionRequest) -> Optional[ExamSubmissionResult]:
        """
        제출 요청을 보낸다.

        Returns:
            성공 시 결과. 이미 제출 중이거나 제출이 끝난 경우, 또는 실패 시 None.
        """
        if self.is_submitting or self.is_done:
            logger.info("중복 제출 요청 무시")
            return None

        self.is_submitting = True
        self.error = None
        self.last_request = request
        self.attempts += 1
        try:
            result = await self._client.submit_exam(request)
        except BackendError as e:
            logger.error(f"답안 제출 실패 (시도 {self.attempts}회): {e}")
            self.error = MSG_SUBMIT_FAILED
            return None
        finally:
            self.is_submitting = False

        self.result = result
        logger.info(f"답안 제출 완료: 시험 {request.exam_id}, 답안 {len(request.answers)}개")
        return result
