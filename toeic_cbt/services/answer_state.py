"""
services/answer_state.py

현재 파트의 답안/검토 표시 상태.

- 답안은 {question_id: 보기 기호} 단일 값이며 다시 선택하면 덮어쓴다.
- 변경 사항은 200ms 디바운스 후 파트 단위 캐시(ExamDataLoader 소유)로 전달된다.
- 전체 시험의 듣기 파트에서는 검토 표시를 할 수 없다.
"""

import logging
from typing import Callable, Mapping, Optional

from config import ANSWER_SYNC_DELAY
from toeic_cbt.models.exam_models import PartData, QuestionGroup
from toeic_cbt.models.session_state import ExamMode
from toeic_cbt.services.exam_service import is_reading_part
from toeic_cbt.services.scheduler import Debouncer, Scheduler

logger = logging.getLogger(__name__)

AnswersCallback = Callable[[int, dict[int, str]], None]
MarkedCallback = Callable[[int, dict[int, bool]], None]


class ExamAnswerState:
    def __init__(
        self,
        scheduler: Scheduler,
        mode: ExamMode,
        on_answers_change: AnswersCallback,
        on_marked_change: MarkedCallback,
        sync_delay: float = ANSWER_SYNC_DELAY,
    ) -> None:
        self._mode = mode
        self._part: Optional[PartData] = None
        self._answers: dict[int, str] = {}
        self._marked: dict[int, bool] = {}
        self._group_index = 0
        self._answers_sync = Debouncer(scheduler, sync_delay, on_answers_change)
        self._marked_sync = Debouncer(scheduler, sync_delay, on_marked_change)

    # ── 파트 전환 ──────────────────────────────────────────────────────────

    def load_part(
        self,
        part: PartData,
        initial_answers: Optional[Mapping[int, str]] = None,
        initial_marked: Optional[Mapping[int, bool]] = None,
    ) -> None:
        """
        다른 파트로 전환한다.

        이전 파트의 대기 중인 동기화를 먼저 반영한 뒤,
        그룹 인덱스를 0으로 되돌리고 캐시 스냅샷으로 답안/검토 표시를 다시 불러온다.
        """
        self.flush()
        self._part = part
        self._group_index = 0
        self._answers = dict(initial_answers or {})
        self._marked = dict(initial_marked or {})

    @property
    def part(self) -> Optional[PartData]:
        return self._part

    @property
    def can_mark_review(self) -> bool:
        part_number = self._part.part_number if self._part else None
        return is_reading_part(part_number) or self._mode != ExamMode.FULL

    # ── 답안 ──────────────────────────────────────────────────────────────

    @property
    def answers(self) -> dict[int, str]:
        return dict(self._answers)

    @property
    def marked_for_review(self) -> dict[int, bool]:
        return dict(self._marked)

    def set_answer(self, question_id: int, option_letter: str) -> None:
        """
        답안 선택. 빈 문자열이면 해당 문항의 답안을 지운다.

        Raises:
            ValueError: 현재 파트에 없는 문항이거나 보기에 없는 기호인 경우.
        """
        part = self._require_part()
        question = part.find_question(question_id)
        if question is None:
            raise ValueError(f"현재 파트에 문항 {question_id}이(가) 없습니다.")

        letter = (option_letter or "").strip().upper()
        if not letter:
            if self._answers.pop(question_id, None) is not None:
                self._schedule_answers_sync()
            return
        if letter not in question.option_letters():
            raise ValueError(f"문항 {question_id}에 보기 '{letter}'이(가) 없습니다.")

        if self._answers.get(question_id) == letter:
            return
        self._answers[question_id] = letter
        self._schedule_answers_sync()

    def toggle_review(self, question_id: int) -> bool:
        """
        검토 표시 토글.

        Returns:
            상태가 바뀌었으면 True. 전체 시험 듣기 파트에서는 항상 False.
        """
        part = self._require_part()
        if not self.can_mark_review:
            return False
        if part.find_question(question_id) is None:
            raise ValueError(f"현재 파트에 문항 {question_id}이(가) 없습니다.")
        self._marked[question_id] = not self._marked.get(question_id, False)
        self._marked_sync.trigger(part.part_id, dict(self._marked))
        return True

    @property
    def answered_count(self) -> int:
        if self._part is None:
            return 0
        ids = set(self._part.question_ids())
        return sum(1 for qid, letter in self._answers.items() if qid in ids and letter)

    @property
    def total_questions(self) -> int:
        return self._part.total_questions if self._part else 0

    # ── 그룹 이동 ──────────────────────────────────────────────────────────

    @property
    def current_group_index(self) -> int:
        return self._group_index

    @property
    def total_groups(self) -> int:
        return len(self._part.groups) if self._part else 0

    @property
    def current_group(self) -> Optional[QuestionGroup]:
        if self._part is None or not self._part.groups:
            return None
        return self._part.groups[self._group_index]

    def set_group_index(self, index: int) -> int:
        if self.total_groups == 0:
            self._group_index = 0
        else:
            self._group_index = max(0, min(index, self.total_groups - 1))
        return self._group_index

    def next_group(self) -> int:
        return self.set_group_index(self._group_index + 1)

    def previous_group(self) -> int:
        return self.set_group_index(self._group_index - 1)

    # ── 동기화 ────────────────────────────────────────────────────────────

    def flush(self) -> None:
        self._answers_sync.flush()
        self._marked_sync.flush()

    def dispose(self) -> None:
        self._answers_sync.cancel()
        self._marked_sync.cancel()

    def _schedule_answers_sync(self) -> None:
        self._answers_sync.trigger(self._part.part_id, dict(self._answers))

    def _require_part(self) -> PartData:
        if self._part is None:
            raise RuntimeError("로드된 파트가 없습니다.")
        return self._part
