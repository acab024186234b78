"""
services/exam_timer.py

시험 제한 시간 계산 및 카운트다운 타이머.

시간 정책:
  - 전체 시험(full):     항상 7200초 (120분). time 파라미터는 무시.
  - 파트 연습(partial):  time 파라미터(분) * 60, 없거나 "unlimited"/0 이하이면 0 (무제한).

남은 시간이 0이 되면 on_time_up 을 정확히 한 번 호출하고 멈춘다.
"""

import logging
from typing import Callable, Optional, Union

from config import FULL_EXAM_SECONDS, TIME_WARNING_SECONDS
from toeic_cbt.models.session_state import ExamMode, TimerState
from toeic_cbt.services.scheduler import Interval, Scheduler

logger = logging.getLogger(__name__)

_TICK_SECONDS = 1.0


def derive_total_seconds(mode: Union[ExamMode, str], minutes: Union[int, str, None] = None) -> int:
    """
    응시 모드와 time 파라미터로 총 제한 시간(초)을 계산한다.

    Args:
        mode:    ExamMode 또는 "full" / "partial".
        minutes: 분 단위 정수/문자열, None 또는 "unlimited".

    Returns:
        제한 시간(초). 0이면 시간 제한 없음.
    """
    if ExamMode(mode) == ExamMode.FULL:
        return FULL_EXAM_SECONDS
    if minutes is None or isinstance(minutes, bool):
        return 0
    if isinstance(minutes, str):
        text = minutes.strip()
        if not text or text == "unlimited":
            return 0
        try:
            minutes = int(text)
        except ValueError:
            return 0
    if not isinstance(minutes, int) or minutes <= 0:
        return 0
    return minutes * 60


def format_time(seconds: int) -> str:
    """남은 시간 표시 문자열. 1시간 이상이면 H:MM:SS, 아니면 M:SS."""
    seconds = max(0, int(seconds))
    hours, rest = divmod(seconds, 3600)
    mins, secs = divmod(rest, 60)
    if hours > 0:
        return f"{hours}:{mins:02d}:{secs:02d}"
    return f"{mins}:{secs:02d}"


class ExamTimer:
    """
    1초 단위로 감소하는 시험 타이머.

    initial_seconds == 0 이면 카운트다운 없이 경과 시간만 센다.
    pause()는 인터벌만 멈추고 상태는 그대로 둔다.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        initial_seconds: int,
        on_time_up: Callable[[], None],
        on_warning: Optional[Callable[[int], None]] = None,
        warning_at: int = TIME_WARNING_SECONDS,
    ) -> None:
        self._state = TimerState(
            initial_seconds=max(0, initial_seconds),
            remaining_seconds=max(0, initial_seconds),
        )
        self._on_time_up = on_time_up
        self._on_warning = on_warning
        self._warning_at = warning_at
        self._warned = False
        self._paused = False
        self._finished = False
        self._started = False
        self._interval = Interval(scheduler, _TICK_SECONDS, self._tick)

    # ── 상태 조회 ──────────────────────────────────────────────────────────

    @property
    def initial_seconds(self) -> int:
        return self._state.initial_seconds

    @property
    def remaining_seconds(self) -> int:
        return self._state.remaining_seconds

    @property
    def elapsed_seconds(self) -> int:
        return self._state.elapsed_seconds

    @property
    def is_unlimited(self) -> bool:
        return self._state.initial_seconds == 0

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def is_finished(self) -> bool:
        return self._finished

    @property
    def is_running(self) -> bool:
        return self._interval.running

    @property
    def time_up(self) -> bool:
        return not self.is_unlimited and self._state.remaining_seconds == 0

    def state(self) -> TimerState:
        return self._state.model_copy()

    # ── 제어 ──────────────────────────────────────────────────────────────

    def start(self) -> None:
        if self._started or self._finished:
            return
        self._started = True
        logger.info(
            f"시험 타이머 시작: {'무제한' if self.is_unlimited else format_time(self.initial_seconds)}"
        )
        self._check_warning()
        self._sync()

    def pause(self) -> None:
        self._paused = True
        self._sync()

    def resume(self) -> None:
        self._paused = False
        self._sync()

    def finish(self) -> None:
        self._finished = True
        self._interval.stop()

    def _sync(self) -> None:
        should_run = self._started and not self._paused and not self._finished
        if should_run and (self.is_unlimited or self._state.remaining_seconds > 0):
            self._interval.start()
        else:
            self._interval.stop()

    def _tick(self) -> None:
        self._state.elapsed_seconds += 1
        if self.is_unlimited:
            return

        self._state.remaining_seconds = max(0, self._state.remaining_seconds - 1)
        remaining = self._state.remaining_seconds

        if remaining == 0:
            self._interval.stop()
            self._finished = True
            logger.info("시험 시간 종료")
            self._on_time_up()
            return

        self._check_warning()

    def _check_warning(self) -> None:
        remaining = self._state.remaining_seconds
        if self.is_unlimited or self._warned or remaining != self._warning_at:
            return
        self._warned = True
        if self._on_warning:
            self._on_warning(remaining)
