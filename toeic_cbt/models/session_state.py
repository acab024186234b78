"""
models/session_state.py

응시 세션의 상태 모델.
Pydantic BaseModel 기반 — 직렬화 및 타입 안전성 확보.
UI 코드 없음. 세션은 메모리에만 존재하며 새로고침 시 응시는 폐기된다.
"""

import time
from enum import Enum

from pydantic import BaseModel, Field


class ExamMode(str, Enum):
    FULL = "full"           # 전체 시험: 듣기+읽기 연속, 오디오/파트 이동 제한
    PARTIAL = "partial"     # 파트 선택 연습: 제한 완화


class ExamStatus(str, Enum):
    LOADING = "loading"
    READY = "ready"                 # 전체 시험 시작 대기 (사용자 시작 버튼)
    ACTIVE = "active"
    LOADING_PART = "loading_part"
    SUBMITTING = "submitting"
    FINISHED = "finished"
    INVALID = "invalid"


class ExamSession(BaseModel):
    """
    한 번의 응시를 표현하는 모델.

    Attributes:
        exam_id:        시험 ID.
        parts_selector: 쿼리 파라미터 parts 원문 ("all" 또는 파트 ID csv).
        time_param:     쿼리 파라미터 time 원문 (분 또는 "unlimited").
        part_ids:       이번 응시에 포함된 파트 ID (part_number 오름차순).
        part_numbers:   part_ids와 같은 순서의 파트 번호.
        mode:           parts_selector == "all" 이면 FULL.
        started_at:     세션 생성 시각 (Unix timestamp).
    """

    exam_id: int = Field(..., description="시험 ID")
    parts_selector: str = Field("", description="parts 쿼리 파라미터 원문")
    time_param: str = Field("", description="time 쿼리 파라미터 원문")
    part_ids: list[int] = Field(default_factory=list, description="선택된 파트 ID")
    part_numbers: list[int] = Field(default_factory=list, description="선택된 파트 번호")
    mode: ExamMode = Field(ExamMode.PARTIAL, description="응시 모드")
    started_at: float = Field(default_factory=time.time, description="세션 생성 시각")

    @classmethod
    def mode_for(cls, parts_selector: str) -> ExamMode:
        return ExamMode.FULL if (parts_selector or "").strip() == "all" else ExamMode.PARTIAL

    @property
    def is_full(self) -> bool:
        return self.mode == ExamMode.FULL


class AudioStatus(BaseModel):
    is_playing: bool = False
    has_ended: bool = False
    countdown: int = Field(0, ge=0, description="자동 이동까지 표시되는 남은 초")


class TimerState(BaseModel):
    initial_seconds: int = Field(0, ge=0, description="0이면 시간 제한 없음")
    remaining_seconds: int = Field(0, ge=0)
    elapsed_seconds: int = Field(0, ge=0, description="실제 경과 시간 (일시정지 구간 제외)")
