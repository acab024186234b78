"""
services/scheduler.py

타이머 유틸리티 (일회성 타이머, 반복 인터벌, 디바운서).

시험 화면의 모든 타이머(카운트다운, 답안 동기화, 오디오 자동 이동, 리다이렉트)는
이 모듈을 통해서만 예약된다. 시계(Scheduler)를 주입받으므로 테스트에서는
수동으로 시간을 흘려보낼 수 있다.

모든 타이머는 종료 경로(파트 변경, 정리, 제출 완료)에서 반드시 cancel 되어야 한다.
"""

import asyncio
import logging
from typing import Any, Callable, Optional, Protocol

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...

    def now(self) -> float: ...


class AsyncioScheduler:
    """asyncio 이벤트 루프 기반 Scheduler."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return self.loop.call_later(max(0.0, delay), self._run, callback)

    def now(self) -> float:
        return self.loop.time()

    @staticmethod
    def _run(callback: Callable[[], None]) -> None:
        try:
            callback()
        except Exception:
            logger.exception("타이머 콜백 실행 중 오류")


class Interval:
    """period 초마다 callback을 호출하는 반복 타이머."""

    def __init__(self, scheduler: Scheduler, period: float, callback: Callable[[], None]) -> None:
        self._scheduler = scheduler
        self._period = period
        self._callback = callback
        self._handle: Optional[TimerHandle] = None

    @property
    def running(self) -> bool:
        return self._handle is not None

    def start(self) -> None:
        if self._handle is None:
            self._handle = self._scheduler.call_later(self._period, self._fire)

    def stop(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        if self._handle is None:
            return
        # 콜백 안에서 stop()을 호출할 수 있도록 다음 틱을 먼저 예약한다.
        self._handle = self._scheduler.call_later(self._period, self._fire)
        self._callback()


class Debouncer:
    """
    마지막 trigger 이후 delay 초 동안 추가 호출이 없을 때 한 번만 callback을 실행한다.

    연속 입력은 하나의 호출로 합쳐지며, 가장 마지막 인자가 사용된다.
    """

    def __init__(self, scheduler: Scheduler, delay: float, callback: Callable[..., None]) -> None:
        self._scheduler = scheduler
        self._delay = delay
        self._callback = callback
        self._handle: Optional[TimerHandle] = None
        self._args: Optional[tuple[Any, ...]] = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self, *args: Any) -> None:
        self.cancel()
        self._args = args
        self._handle = self._scheduler.call_later(self._delay, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._args = None

    def flush(self) -> None:
        """대기 중인 호출이 있으면 즉시 실행한다."""
        if self._handle is not None:
            self._handle.cancel()
            self._fire()

    def _fire(self) -> None:
        args = self._args or ()
        self._handle = None
        self._args = None
        self._callback(*args)
