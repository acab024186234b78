"""
services/navigation_guard.py

응시 중 이탈 방지 가드.

모든 이동 시도(앱 내부 push/replace, 링크 클릭, 브라우저 뒤로/앞으로, 탭 닫기)는
NavigationIntent 로 표현되어 NavigationMediator 한 곳을 통과한다.
가드는 mediator 에 인터셉터로 등록되며, teardown 시 등록을 해제한다.

허용 여부 판단(decide)은 (intent, is_active) 에 대한 순수 함수다.
이 가드는 사용자 경험을 위한 장치일 뿐이며, 제출 데이터의 정합성을 보장하지 않는다.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)

LEAVE_WARNING = (
    "시험을 그만두시겠습니까? 지금까지의 응시 내용은 모두 사라지며 복구할 수 없습니다."
)
UNLOAD_WARNING = "페이지를 떠나시겠습니까? 응시 내용이 사라집니다."


class NavigationKind(str, Enum):
    PUSH = "push"
    REPLACE = "replace"
    BACK = "back"
    FORWARD = "forward"
    LINK = "link"
    UNLOAD = "unload"


class Decision(str, Enum):
    ALLOW = "allow"
    CONFIRM = "confirm"


@dataclass(frozen=True)
class NavigationIntent:
    """
    Attributes:
        kind:      이동 종류.
        target:    이동 대상 경로/URL (BACK/FORWARD/UNLOAD 는 없음).
        confirmed: 호출 측에서 이미 사용자 확인을 받았으면 True/False, 아직이면 None.
    """

    kind: NavigationKind
    target: Optional[str] = None
    confirmed: Optional[bool] = None


def is_internal_target(target: Optional[str], origin: str = "") -> bool:
    """앱 내부 링크인지 여부 (/, #, ? 로 시작하거나 같은 origin)."""
    if not target:
        return False
    if target.startswith(("/", "#", "?")):
        return True
    return bool(origin) and target.startswith(origin)


def decide(intent: NavigationIntent, is_active: bool, origin: str = "") -> Decision:
    if not is_active:
        return Decision.ALLOW
    if intent.kind == NavigationKind.LINK and not is_internal_target(intent.target, origin):
        return Decision.ALLOW
    return Decision.CONFIRM


# ── 히스토리 / 중재자 ─────────────────────────────────────────────────────────

class HistoryStack:
    """브라우저 세션 히스토리의 메모리 모델."""

    def __init__(self, initial: str = "/") -> None:
        self.entries: list[str] = [initial]
        self.index = 0

    @property
    def current(self) -> str:
        return self.entries[self.index]

    def push(self, url: str) -> None:
        del self.entries[self.index + 1:]
        self.entries.append(url)
        self.index += 1

    def replace(self, url: str) -> None:
        self.entries[self.index] = url

    def go(self, delta: int) -> bool:
        target = self.index + delta
        if not 0 <= target < len(self.entries):
            return False
        self.index = target
        return True


Interceptor = Callable[[NavigationIntent], bool]
Listener = Callable[[NavigationIntent, str], None]


class NavigationMediator:
    """
    모든 이동 요청이 지나가는 단일 창구.

    인터셉터 중 하나라도 False 를 반환하면 이동은 취소된다.
    뒤로/앞으로는 브라우저처럼 히스토리가 먼저 움직이므로, 취소 시 원래 위치로 되돌린다.
    """

    def __init__(self, history: Optional[HistoryStack] = None) -> None:
        self.history = history or HistoryStack()
        self._interceptors: list[Interceptor] = []
        self._listeners: list[Listener] = []
        self.unloaded = False

    def add_interceptor(self, interceptor: Interceptor) -> Callable[[], None]:
        self._interceptors.append(interceptor)

        def remove() -> None:
            if interceptor in self._interceptors:
                self._interceptors.remove(interceptor)

        return remove

    @property
    def interceptor_count(self) -> int:
        return len(self._interceptors)

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def navigate(self, intent: NavigationIntent) -> bool:
        if intent.kind in (NavigationKind.BACK, NavigationKind.FORWARD):
            return self._pop_state(intent)

        if not self._intercept(intent):
            return False

        if intent.kind == NavigationKind.REPLACE:
            self.history.replace(intent.target or self.history.current)
        elif intent.kind in (NavigationKind.PUSH, NavigationKind.LINK):
            self.history.push(intent.target or self.history.current)
        elif intent.kind == NavigationKind.UNLOAD:
            self.unloaded = True
        self._notify(intent)
        return True

    def _pop_state(self, intent: NavigationIntent) -> bool:
        delta = -1 if intent.kind == NavigationKind.BACK else 1
        if not self.history.go(delta):
            return False
        if not self._intercept(intent):
            # 사용자가 취소: 이전 히스토리 위치 복원
            self.history.go(-delta)
            return False
        self._notify(intent)
        return True

    def _intercept(self, intent: NavigationIntent) -> bool:
        return all(interceptor(intent) for interceptor in list(self._interceptors))

    def _notify(self, intent: NavigationIntent) -> None:
        for listener in list(self._listeners):
            listener(intent, self.history.current)


# ── 가드 ─────────────────────────────────────────────────────────────────────

class NavigationGuard:
    def __init__(
        self,
        confirm: Optional[Callable[[str], bool]] = None,
        message: str = LEAVE_WARNING,
        origin: str = "",
    ) -> None:
        self._confirm = confirm
        self._message = message
        self._origin = origin
        self._active = False
        self._mediator: Optional[NavigationMediator] = None
        self._remove: Optional[Callable[[], None]] = None

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def message(self) -> str:
        return self._message

    def activate(self, is_test_active: bool) -> None:
        self._active = bool(is_test_active)

    def disable(self) -> None:
        self._active = False

    def install(self, mediator: NavigationMediator) -> None:
        if self._mediator is mediator:
            return
        self.teardown()
        self._mediator = mediator
        self._remove = mediator.add_interceptor(self.intercept)

    def teardown(self) -> None:
        """등록한 인터셉터를 모두 해제한다."""
        if self._remove is not None:
            self._remove()
        self._remove = None
        self._mediator = None

    def intercept(self, intent: NavigationIntent) -> bool:
        if decide(intent, self._active, self._origin) == Decision.ALLOW:
            return True

        approved = intent.confirmed
        if approved is None:
            message = UNLOAD_WARNING if intent.kind == NavigationKind.UNLOAD else self._message
            approved = bool(self._confirm(message)) if self._confirm else False

        if approved:
            # 승인한 이동에 대해 다시 묻지 않도록 먼저 비활성화
            self._active = False
            logger.info(f"응시 중 이동 승인: {intent.kind.value} {intent.target or ''}")
            return True
        logger.debug(f"응시 중 이동 취소: {intent.kind.value} {intent.target or ''}")
        return False

    def safe_navigate(self, target: str, confirmed: Optional[bool] = None) -> bool:
        if self._mediator is None:
            raise RuntimeError("NavigationGuard가 설치되지 않았습니다.")
        return self._mediator.navigate(
            NavigationIntent(NavigationKind.PUSH, target, confirmed=confirmed)
        )

    def unload_message(self) -> Optional[str]:
        """탭 닫기/새로고침 시 표시할 경고. 비활성 상태면 None."""
        return UNLOAD_WARNING if self._active else None
