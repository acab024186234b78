"""
models/exam_models.py

TOEIC 시험/파트/문제 데이터 모델.
백엔드 REST 응답(camelCase)을 그대로 검증하며, 파이썬 쪽에서는 snake_case 필드로 사용한다.
Pydantic v2 적용.
"""

import string
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

_CAMEL_CONFIG = {
    "populate_by_name": True,
    "alias_generator": to_camel,
}


class ExamPart(BaseModel):
    """시험 메타데이터에 포함된 파트 요약 정보."""

    part_id: int = Field(..., description="파트 고유 ID")
    part_number: int = Field(..., ge=1, description="TOEIC 파트 번호 (1~7)")
    part_name: str = Field("", description="파트 이름")
    description: Optional[str] = Field(None, description="파트 설명")

    model_config = _CAMEL_CONFIG


class ExamInfo(BaseModel):
    """GET /exams/public/{examId} 응답 모델."""

    exam_id: Optional[int] = Field(None, description="시험 ID")
    exam_name: Optional[str] = Field(None, description="시험 이름")
    exam_parts: list[ExamPart] = Field(default_factory=list, description="시험에 포함된 파트 목록")

    model_config = _CAMEL_CONFIG

    def sorted_parts(self) -> list[ExamPart]:
        """part_number 오름차순(안정 정렬)으로 정렬된 파트 목록."""
        return sorted(self.exam_parts, key=lambda p: p.part_number)


class Option(BaseModel):
    option_id: int = Field(..., description="보기 ID")
    option_letter: str = Field(..., description="보기 기호 (A, B, C, D ...)")
    option_text: Optional[str] = Field(None, description="보기 내용 (Part 1, 2는 없음)")

    model_config = _CAMEL_CONFIG

    @field_validator("option_letter")
    @classmethod
    def normalize_letter(cls, v: str) -> str:
        v = v.strip().upper()
        if len(v) != 1 or v not in string.ascii_uppercase:
            raise ValueError(f"보기 기호('{v}')는 알파벳 한 글자여야 합니다.")
        return v


class Question(BaseModel):
    """
    TOEIC 문항 모델.

    question_number는 시험 전체에서의 순서 키(1~200)이고,
    question_id는 답안지의 키로 사용된다.
    """

    question_id: int = Field(..., description="문항 고유 ID (답안 키)")
    question_number: int = Field(..., description="시험 전체 기준 문항 번호")
    question_text: Optional[str] = Field(None, description="발문 (Part 1, 2는 없음)")
    options: list[Option] = Field(default_factory=list, description="보기 리스트")

    model_config = _CAMEL_CONFIG

    @model_validator(mode="after")
    def validate_option_letters(self) -> "Question":
        """
        보기 기호는 중복 없이 A부터 연속되어야 한다 (A-C, A-D 등).
        """
        letters = [o.option_letter for o in self.options]
        if len(set(letters)) != len(letters):
            raise ValueError(f"문항 {self.question_id}: 보기 기호가 중복되었습니다 ({letters}).")
        expected = list(string.ascii_uppercase[: len(letters)])
        if sorted(letters) != expected:
            raise ValueError(f"문항 {self.question_id}: 보기 기호가 연속되지 않습니다 ({letters}).")
        return self

    def option_letters(self) -> list[str]:
        return [o.option_letter for o in self.options]


class QuestionGroup(BaseModel):
    """오디오/사진/지문을 공유하는 문항 묶음."""

    group_id: int = Field(..., description="문항 그룹 ID")
    image_url: Optional[str] = Field(None, description="사진 URL")
    audio_url: Optional[str] = Field(None, description="음성 URL")
    passage_text: Optional[str] = Field(None, description="독해 지문")
    questions: list[Question] = Field(default_factory=list, description="그룹에 속한 문항")

    model_config = _CAMEL_CONFIG


class PartData(BaseModel):
    """GET /question-groups/by-parts 응답의 파트 단위 데이터."""

    part_id: int = Field(..., description="파트 ID")
    part_number: int = Field(..., ge=1, description="TOEIC 파트 번호 (1~7)")
    part_name: str = Field("", description="파트 이름")
    description: Optional[str] = Field(None, description="파트 설명")
    groups: list[QuestionGroup] = Field(default_factory=list, description="문항 그룹 목록")

    model_config = _CAMEL_CONFIG

    def has_questions(self) -> bool:
        """문항이 하나 이상 있는 그룹이 존재하는지 여부."""
        return any(len(g.questions) > 0 for g in self.groups)

    @property
    def total_questions(self) -> int:
        return sum(len(g.questions) for g in self.groups)

    def question_ids(self) -> list[int]:
        return [q.question_id for g in self.groups for q in g.questions]

    def find_question(self, question_id: int) -> Optional[Question]:
        for g in self.groups:
            for q in g.questions:
                if q.question_id == question_id:
                    return q
        return None


class SubmittedAnswer(BaseModel):
    question_id: int
    selected_option: str

    model_config = _CAMEL_CONFIG


class ExamSubmissionRequest(BaseModel):
    """POST /exams/submit 요청 본문."""

    exam_id: int = Field(..., description="시험 ID")
    full_test: bool = Field(..., description="전체 시험 여부")
    part_ids: list[int] = Field(default_factory=list, description="응시한 파트 ID 목록")
    answers: list[SubmittedAnswer] = Field(default_factory=list, description="전체 파트 답안")
    duration_seconds: int = Field(0, ge=0, description="실제 응시 시간 (초)")

    model_config = _CAMEL_CONFIG


class ExamSubmissionResult(BaseModel):
    """
    채점 결과. 점수 계산은 백엔드 담당이므로 내용을 해석하지 않고 그대로 전달한다.
    알려진 필드 외의 값도 extra로 보존된다.
    """

    attempt_id: Optional[int] = None
    total_score: Optional[int] = None
    listening_score: Optional[int] = None
    reading_score: Optional[int] = None
    correct: Optional[int] = None
    total: Optional[int] = None

    model_config = {**_CAMEL_CONFIG, "extra": "allow"}

    def to_display(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)
