"""
services/audio_guard.py

듣기 파트 오디오 재생 제한.

전체 시험(full) 모드의 듣기 파트(Part 1~4)에서만 동작한다:
  - 일시정지 불가: 재생 종료가 아닌 pause는 즉시 재생으로 되돌린다.
  - 배속 변경 불가: 매 틱마다 playback_rate를 1.0으로 되돌린다.
  - 탐색 불가: 마지막으로 기록된 위치에서 0.5초 이상 이동하면 되돌리고 300ms 잠금.
  - 재생 종료 후: 3초 표시용 카운트다운 + 별도의 5초 타이머로 다음 그룹/파트 이동.

표시 카운트다운(3초)과 실제 이동(5초)은 서로 독립적으로 동작한다.
"""

import logging
from typing import Callable, Optional, Protocol

from config import (
    AUTO_ADVANCE_COUNTDOWN,
    AUTO_ADVANCE_DELAY,
    SEEK_LOCK_SECONDS,
    SEEK_TOLERANCE,
)
from toeic_cbt.models.session_state import AudioStatus, ExamMode
from toeic_cbt.services.exam_service import is_listening_part
from toeic_cbt.services.scheduler import Interval, Scheduler, TimerHandle

logger = logging.getLogger(__name__)


class MediaElement(Protocol):
    """브라우저 <audio> 요소와 같은 인터페이스."""

    muted: bool
    current_time: float
    playback_rate: float
    paused: bool
    ended: bool

    def play(self) -> None: ...

    def pause(self) -> None: ...


class RemoteMedia:
    """
    브라우저가 보고한 <audio> 상태.

    가드가 바꾼 값(음소거, 위치, 속도)과 play/pause 요청은 report() 로 브라우저에 돌려준다.
    """

    def __init__(self) -> None:
        self.muted = False
        self.current_time = 0.0
        self.playback_rate = 1.0
        self.paused = True
        self.ended = False
        self.commands: list[str] = []

    def play(self) -> None:
        self.paused = False
        self.commands.append("play")

    def pause(self) -> None:
        self.paused = True
        self.commands.append("pause")

    def report(self) -> dict[str, object]:
        commands, self.commands = self.commands, []
        return {
            "muted": self.muted,
            "current_time": self.current_time,
            "playback_rate": self.playback_rate,
            "paused": self.paused,
            "commands": commands,
        }


class AudioPlaybackGuard:
    def __init__(
        self,
        scheduler: Scheduler,
        on_group_change: Callable[[int], None],
        on_part_complete: Optional[Callable[[], None]] = None,
        on_status_change: Optional[Callable[[AudioStatus], None]] = None,
        countdown_seconds: int = AUTO_ADVANCE_COUNTDOWN,
        advance_delay: float = AUTO_ADVANCE_DELAY,
        seek_tolerance: float = SEEK_TOLERANCE,
        seek_lock_seconds: float = SEEK_LOCK_SECONDS,
    ) -> None:
        self._scheduler = scheduler
        self._on_group_change = on_group_change
        self._on_part_complete = on_part_complete
        self._on_status_change = on_status_change
        self._countdown_seconds = countdown_seconds
        self._advance_delay = advance_delay
        self._seek_tolerance = seek_tolerance
        self._seek_lock_seconds = seek_lock_seconds

        self._mode = ExamMode.PARTIAL
        self._part_number: Optional[int] = None
        self._group_index = 0
        self._total_groups = 0

        self._media: Optional[MediaElement] = None
        self._status = AudioStatus()
        self._last_time = 0.0
        self._seek_locked = False
        self._autoplay_muted = False

        self._countdown = Interval(scheduler, 1.0, self._countdown_tick)
        self._advance_handle: Optional[TimerHandle] = None
        self._seek_unlock_handle: Optional[TimerHandle] = None

    # ── 상태 ──────────────────────────────────────────────────────────────

    @property
    def restricted(self) -> bool:
        return self._mode == ExamMode.FULL and is_listening_part(self._part_number)

    @property
    def allow_seek(self) -> bool:
        return not self.restricted

    @property
    def status(self) -> AudioStatus:
        return self._status.model_copy()

    @property
    def seek_locked(self) -> bool:
        return self._seek_locked

    @property
    def last_known_time(self) -> float:
        return self._last_time

    @property
    def navigation_locked(self) -> bool:
        """오디오가 끝나지 않았거나 카운트다운 중이면 수동 이동 불가."""
        return self.restricted and (not self._status.has_ended or self._status.countdown > 0)

    # ── 그룹/파트 전환 ─────────────────────────────────────────────────────

    def configure(self, mode: ExamMode, part_number: int, group_index: int, total_groups: int) -> None:
        """파트가 바뀔 때 호출. 모든 타이머를 취소하고 상태를 초기화한다."""
        self._mode = mode
        self._part_number = part_number
        self._group_index = group_index
        self._total_groups = total_groups
        self.reset()

    def change_group(self, group_index: int, total_groups: Optional[int] = None) -> None:
        self._group_index = group_index
        if total_groups is not None:
            self._total_groups = total_groups
        self.reset()

    def reset(self) -> None:
        self._cancel_timers()
        self._last_time = 0.0
        self._seek_locked = False
        self._set_status(is_playing=False, has_ended=False, countdown=0)

    def attach(self, media: MediaElement) -> None:
        """
        새 오디오 요소 마운트. 제한 모드에서는 음소거 → 0초로 이동 → 자동 재생을 시도하고,
        재생이 시작되면(handle_play) 음소거를 해제한다.
        """
        self._media = media
        self._last_time = 0.0
        if not self.restricted:
            return
        media.muted = True
        self._autoplay_muted = True
        media.current_time = 0.0
        try:
            media.play()
        except Exception as e:
            # 브라우저 자동 재생 정책으로 차단될 수 있음
            logger.warning(f"오디오 자동 재생 실패: {e}")

    def detach(self) -> None:
        self._media = None
        self._autoplay_muted = False

    def dispose(self) -> None:
        self._cancel_timers()
        self.detach()

    # ── 미디어 이벤트 ──────────────────────────────────────────────────────

    def handle_play(self) -> None:
        self._cancel_auto_advance()
        if self._media is not None and self._autoplay_muted:
            self._media.muted = False
            self._autoplay_muted = False
        self._set_status(is_playing=True, has_ended=False, countdown=0)

    def handle_pause(self) -> None:
        media = self._media
        if self.restricted and media is not None and not media.ended:
            logger.debug("제한 모드: 일시정지 되돌림")
            try:
                media.play()
            except Exception as e:
                logger.warning(f"오디오 재생 재개 실패: {e}")
            return
        self._set_status(is_playing=False)

    def enforce_rate(self) -> None:
        media = self._media
        if self.restricted and media is not None and media.playback_rate != 1.0:
            logger.debug(f"제한 모드: 재생 속도 {media.playback_rate} → 1.0")
            media.playback_rate = 1.0

    def handle_time_update(self) -> None:
        if self._media is None or self._seek_locked:
            return
        self._last_time = self._media.current_time
        self.enforce_rate()

    def handle_seeking(self) -> bool:
        """
        탐색 이벤트 처리.

        Returns:
            위치를 되돌렸으면 True.
        """
        media = self._media
        if media is None or self.allow_seek or self._seek_locked:
            return False
        if abs(media.current_time - self._last_time) <= self._seek_tolerance:
            return False

        logger.debug(f"제한 모드: 탐색 {media.current_time:.2f}s → {self._last_time:.2f}s 되돌림")
        self._seek_locked = True
        media.current_time = self._last_time
        self._seek_unlock_handle = self._scheduler.call_later(self._seek_lock_seconds, self._unlock_seek)
        return True

    def handle_ended(self) -> None:
        self._set_status(is_playing=False, has_ended=True)
        if not self.restricted:
            return

        self._cancel_auto_advance()
        self._set_status(countdown=self._countdown_seconds)
        self._countdown.start()
        self._advance_handle = self._scheduler.call_later(self._advance_delay, self._auto_advance)

    # ── 내부 ──────────────────────────────────────────────────────────────

    def _countdown_tick(self) -> None:
        remaining = max(0, self._status.countdown - 1)
        self._set_status(countdown=remaining)
        if remaining <= 0:
            self._countdown.stop()

    def _auto_advance(self) -> None:
        self._advance_handle = None
        self._countdown.stop()
        self._set_status(countdown=0)

        if self._group_index < self._total_groups - 1:
            logger.info(f"자동 이동: 그룹 {self._group_index} → {self._group_index + 1}")
            self._on_group_change(self._group_index + 1)
        elif self._on_part_complete:
            logger.info("자동 이동: 파트 완료")
            self._on_part_complete()

    def _unlock_seek(self) -> None:
        self._seek_unlock_handle = None
        self._seek_locked = False

    def _cancel_auto_advance(self) -> None:
        self._countdown.stop()
        if self._advance_handle is not None:
            self._advance_handle.cancel()
            self._advance_handle = None

    def _cancel_timers(self) -> None:
        self._cancel_auto_advance()
        if self._seek_unlock_handle is not None:
            self._seek_unlock_handle.cancel()
            self._seek_unlock_handle = None
            self._seek_locked = False

    def _set_status(self, **changes) -> None:
        updated = self._status.model_copy(update=changes)
        if updated == self._status:
            return
        self._status = updated
        if self._on_status_change:
            self._on_status_change(updated.model_copy())
