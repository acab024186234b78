"""
services/exam_service.py

파트 분류 및 응시 현황 집계 로직.
순수 Python 함수로 구성 — UI 코드, 전역 상태 변경 없음.
점수 계산은 백엔드 담당이므로 여기서는 하지 않는다.
"""

from typing import Iterable, Mapping, Optional

from config import LISTENING_PARTS, READING_PARTS
from toeic_cbt.models.exam_models import PartData

_PART_NAMES = {
    1: "Photographs",
    2: "Question-Response",
    3: "Conversations",
    4: "Talks",
    5: "Incomplete Sentences",
    6: "Text Completion",
    7: "Reading Comprehension",
}


def is_listening_part(part_number: Optional[int]) -> bool:
    return part_number in LISTENING_PARTS


def is_reading_part(part_number: Optional[int]) -> bool:
    return part_number in READING_PARTS


def get_part_name(part: PartData) -> str:
    """
    파트 표시 이름. 백엔드 description이 있으면 우선 사용한다.
    """
    if part.description:
        return part.description
    return _PART_NAMES.get(part.part_number, "Unknown Part")


def count_answered(all_answers: Mapping[int, Mapping[int, str]]) -> int:
    """
    전체 파트 답안지에서 응답한 문항 수.

    빈 문자열 답안은 응답으로 치지 않는다.
    """
    return sum(
        1
        for part_answers in all_answers.values()
        for letter in part_answers.values()
        if letter
    )


def count_questions(parts: Iterable[PartData]) -> int:
    return sum(p.total_questions for p in parts)


def build_completion_summary(
    all_answers: Mapping[int, Mapping[int, str]],
    loaded_parts: Iterable[PartData],
    time_up: bool = False,
) -> dict[str, object]:
    """
    응시 종료 화면용 요약을 만든다.

    Args:
        all_answers:  {part_id: {question_id: 선택 보기}} 전체 답안 캐시.
        loaded_parts: 로드된 PartData (로드되지 않은 파트는 집계 대상 아님).
        time_up:      시간 초과로 종료되었는지 여부.

    Returns:
        {"answered": int, "total": int, "percent": int, "time_up": bool}
    """
    answered = count_answered(all_answers)
    total = count_questions(loaded_parts)
    percent = round(answered / total * 100) if total else 0
    return {"answered": answered, "total": total, "percent": percent, "time_up": time_up}
