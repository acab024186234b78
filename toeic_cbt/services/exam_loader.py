"""
services/exam_loader.py

시험 메타데이터와 파트별 문항 데이터 로더.

- load_session: 시험 정보 조회 → 파트 정렬 → parts 선택 해석 → 첫 파트만 즉시 로드
- load_part / load_part_at: 이후 파트는 필요할 때 로드하고 세션 동안 캐시
- 치명적 오류는 사용자 알림 1회(중복 억제) 후 2초 뒤 시험 목록으로 리다이렉트

답안/검토 표시의 세션 전체 캐시({part_id: {...}})도 이 로더가 소유한다.
"""

import logging
from typing import Callable, Optional

from config import CATALOG_PATH, REDIRECT_DELAY, RETRY_TRANSIENT_PART_ERRORS
from toeic_cbt.models.exam_models import ExamInfo, ExamPart, PartData
from toeic_cbt.services.backend_client import BackendClient, BackendError
from toeic_cbt.services.scheduler import Scheduler, TimerHandle

logger = logging.getLogger(__name__)

MSG_MISSING_PARTS = "선택한 파트 정보를 찾을 수 없습니다."
MSG_NO_PARTS = "시험에 파트 데이터가 없습니다."
MSG_PARTS_NOT_FOUND = "요청한 파트를 찾을 수 없습니다."
MSG_LOAD_FAILED = "시험 데이터를 불러오는 중 오류가 발생했습니다. 잠시 후 다시 시도해 주세요."


def msg_part_not_found(part_number) -> str:
    return f"Part {part_number} 데이터를 찾을 수 없습니다."


def msg_part_empty(part_number) -> str:
    return f"Part {part_number}에 문항이 없습니다. 시험 데이터를 확인해 주세요."


def msg_part_failed(part_number) -> str:
    return f"Part {part_number}을(를) 불러오지 못했습니다. 잠시 후 다시 시도해 주세요."


def resolve_parts(exam: ExamInfo, parts_selector: str) -> list[ExamPart]:
    """
    parts 선택값을 정렬된 ExamPart 리스트로 해석한다.

    "all" 이면 전체, 아니면 csv 로 주어진 part_id 중 시험에 존재하는 것만
    part_number 오름차순으로 반환한다.
    """
    parts = exam.sorted_parts()
    if parts_selector.strip() == "all":
        return parts
    requested = {token.strip() for token in parts_selector.split(",") if token.strip()}
    return [p for p in parts if str(p.part_id) in requested]


class ExamDataLoader:
    def __init__(
        self,
        client: BackendClient,
        scheduler: Scheduler,
        on_notice: Optional[Callable[[str], None]] = None,
        on_redirect: Optional[Callable[[str], None]] = None,
        redirect_delay: float = REDIRECT_DELAY,
        catalog_path: str = CATALOG_PATH,
        retry_transient: bool = RETRY_TRANSIENT_PART_ERRORS,
    ) -> None:
        self._client = client
        self._scheduler = scheduler
        self._on_notice = on_notice
        self._on_redirect = on_redirect
        self._redirect_delay = redirect_delay
        self._catalog_path = catalog_path
        self._retry_transient = retry_transient

        self.exam: Optional[ExamInfo] = None
        self.part_ids: list[int] = []
        self.part_numbers: list[int] = []
        self.part_cache: dict[int, PartData] = {}
        self.all_answers: dict[int, dict[int, str]] = {}
        self.all_marked: dict[int, dict[int, bool]] = {}

        self.invalid = False
        self.error: Optional[str] = None
        self._notice_shown = False
        self._redirect_handle: Optional[TimerHandle] = None
        self._request_seq = 0

    # ── 세션 로드 ──────────────────────────────────────────────────────────

    async def load_session(self, exam_id: int, parts_selector: Optional[str]) -> Optional[PartData]:
        """
        시험 정보와 첫 번째 파트를 로드한다.

        Returns:
            첫 파트의 PartData. 치명적 오류면 None (알림/리다이렉트 예약됨).
        """
        if not parts_selector or not parts_selector.strip():
            self.handle_invalid_exam(MSG_MISSING_PARTS)
            return None

        try:
            exam = await self._client.get_public_exam(exam_id)
        except BackendError as e:
            logger.error(f"시험 {exam_id} 정보 조회 실패: {e}")
            self.handle_invalid_exam(MSG_LOAD_FAILED)
            return None

        if not exam.exam_parts:
            self.handle_invalid_exam(MSG_NO_PARTS)
            return None

        self.exam = exam.model_copy(update={"exam_parts": exam.sorted_parts()})
        chosen = resolve_parts(self.exam, parts_selector)
        if not chosen:
            self.handle_invalid_exam(MSG_PARTS_NOT_FOUND)
            return None

        self.part_ids = [p.part_id for p in chosen]
        self.part_numbers = [p.part_number for p in chosen]
        for pid in self.part_ids:
            self.all_answers.setdefault(pid, {})
            self.all_marked.setdefault(pid, {})

        logger.info(f"시험 {exam_id} 세션 준비: 파트 {self.part_numbers}")
        try:
            return await self.load_part(self.part_ids[0])
        except BackendError as e:
            logger.error(f"첫 파트 로드 실패: {e}")
            self.handle_invalid_exam(MSG_LOAD_FAILED)
            return None

    async def load_part(self, part_id: int) -> Optional[PartData]:
        """
        캐시에 있으면 그대로 반환, 없으면 조회 → 검증 → 캐시.

        Raises:
            BackendError: 네트워크/HTTP 오류 (호출 측에서 처리).
        """
        cached = self.part_cache.get(part_id)
        if cached is not None:
            return cached
        parts = await self._client.get_parts([part_id])
        return self._accept_part(part_id, parts)

    def _accept_part(self, part_id: int, parts: list[PartData]) -> Optional[PartData]:
        """응답 검증 후 캐시. 비었거나 문항이 없으면 시험을 무효 처리한다."""
        part_number = self.part_number_of(part_id)
        if not parts:
            self.handle_invalid_exam(msg_part_not_found(part_number))
            return None

        part = parts[0]
        if not part.has_questions():
            self.handle_invalid_exam(msg_part_empty(part_number))
            return None

        self.part_cache[part_id] = part
        return part

    async def load_part_at(self, index: int) -> Optional[PartData]:
        """
        index 번째 파트를 로드한다.

        로드 도중 더 새로운 요청이 들어오면 이 요청의 응답은 무시하고 None 을 반환한다.
        """
        if not 0 <= index < len(self.part_ids):
            raise IndexError(f"파트 인덱스 범위 초과: {index}")

        part_id = self.part_ids[index]
        if part_id in self.part_cache:
            self._request_seq += 1
            return self.part_cache[part_id]

        self._request_seq += 1
        token = self._request_seq
        self.error = None
        try:
            parts = await self._client.get_parts([part_id])
        except BackendError as e:
            if token != self._request_seq:
                return None
            logger.error(f"파트 {part_id} 로드 실패: {e}")
            message = msg_part_failed(self.part_numbers[index])
            if self._retry_transient and e.is_transient:
                self.error = message
                self._notify(message)
            else:
                self.handle_invalid_exam(message)
            return None

        if token != self._request_seq:
            logger.debug(f"파트 {part_id} 응답 무시 (더 새로운 요청 존재)")
            return None
        return self._accept_part(part_id, parts)

    # ── 답안 캐시 ──────────────────────────────────────────────────────────

    def update_answers(self, part_id: int, answers: dict[int, str]) -> None:
        self.all_answers[part_id] = dict(answers)

    def update_marked(self, part_id: int, marked: dict[int, bool]) -> None:
        self.all_marked[part_id] = dict(marked)

    def part_number_of(self, part_id: int) -> Optional[int]:
        try:
            return self.part_numbers[self.part_ids.index(part_id)]
        except ValueError:
            return None

    def loaded_parts(self) -> list[PartData]:
        return [self.part_cache[pid] for pid in self.part_ids if pid in self.part_cache]

    # ── 오류 처리 ──────────────────────────────────────────────────────────

    def handle_invalid_exam(self, message: str) -> None:
        """치명적 오류: 알림은 한 번만 표시하고, 잠시 후 시험 목록으로 이동한다."""
        self.invalid = True
        self.error = message
        if self._notice_shown:
            return
        self._notice_shown = True
        logger.warning(f"잘못된 시험: {message}")
        self._notify(message)
        self._redirect_handle = self._scheduler.call_later(self._redirect_delay, self._redirect)

    def cancel(self) -> None:
        if self._redirect_handle is not None:
            self._redirect_handle.cancel()
            self._redirect_handle = None

    def _redirect(self) -> None:
        self._redirect_handle = None
        if self._on_redirect:
            self._on_redirect(self._catalog_path)

    def _notify(self, message: str) -> None:
        if self._on_notice:
            self._on_notice(message)
