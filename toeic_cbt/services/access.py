"""
services/access.py

인증 컨텍스트와 라우트 가드 체인.

AuthContext 상태 전이: uninitialized → hydrating → ready
ready 이전에는 사용자 정보/토큰을 읽지 않는다.

GuardChain 은 화면(라우트)을 만들기 전에 RouteRequirement 를 평가하여
허용 또는 리다이렉트를 결정한다.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel, Field

from config import LOGIN_PATH

logger = logging.getLogger(__name__)


class AuthPhase(str, Enum):
    UNINITIALIZED = "uninitialized"
    HYDRATING = "hydrating"
    READY = "ready"


class UserIdentity(BaseModel):
    user_id: Optional[int] = None
    username: str = ""
    role_name: str = Field("", description="USER, ADMIN, ADMINISTRATOR ...")


class AuthContext:
    def __init__(self) -> None:
        self._phase = AuthPhase.UNINITIALIZED
        self._token: Optional[str] = None
        self._user: Optional[UserIdentity] = None

    @property
    def phase(self) -> AuthPhase:
        return self._phase

    @property
    def is_ready(self) -> bool:
        return self._phase == AuthPhase.READY

    @property
    def access_token(self) -> Optional[str]:
        self._require_ready()
        return self._token

    @property
    def user(self) -> Optional[UserIdentity]:
        self._require_ready()
        return self._user

    def begin_hydration(self) -> None:
        self._phase = AuthPhase.HYDRATING

    def complete_hydration(self, token: Optional[str], user: Optional[UserIdentity] = None) -> None:
        self._token = token or None
        self._user = user
        self._phase = AuthPhase.READY

    def hydrate(self, token: Optional[str], user: Optional[UserIdentity] = None) -> None:
        self.begin_hydration()
        self.complete_hydration(token, user)

    def clear(self) -> None:
        self._token = None
        self._user = None
        self._phase = AuthPhase.READY

    def _require_ready(self) -> None:
        if self._phase != AuthPhase.READY:
            raise RuntimeError(f"인증 정보가 아직 준비되지 않았습니다 ({self._phase.value}).")


# ── 라우트 가드 ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class RouteRequirement:
    requires_auth: bool = False
    required_role: Optional[str] = None


@dataclass(frozen=True)
class GuardOutcome:
    allowed: bool
    redirect_to: Optional[str] = None
    notice: Optional[str] = None
    pending: bool = False       # 인증 정보 준비 중 (로딩 화면 유지)

    @classmethod
    def allow(cls) -> "GuardOutcome":
        return cls(allowed=True)


RouteGuard = Callable[[AuthContext, RouteRequirement], Optional[GuardOutcome]]


def hydration_guard(auth: AuthContext, req: RouteRequirement) -> Optional[GuardOutcome]:
    if (req.requires_auth or req.required_role) and not auth.is_ready:
        return GuardOutcome(allowed=False, pending=True)
    return None


def authentication_guard(auth: AuthContext, req: RouteRequirement) -> Optional[GuardOutcome]:
    if (req.requires_auth or req.required_role) and not auth.access_token:
        return GuardOutcome(allowed=False, redirect_to=LOGIN_PATH)
    return None


def role_guard(auth: AuthContext, req: RouteRequirement) -> Optional[GuardOutcome]:
    if not req.required_role:
        return None
    if has_role(auth.user, req.required_role):
        return None
    return GuardOutcome(allowed=False, redirect_to="/", notice="이 페이지에 접근할 권한이 없습니다.")


def has_role(user: Optional[UserIdentity], required: str) -> bool:
    if user is None or not user.role_name:
        return False
    have = user.role_name.strip().upper()
    need = required.strip().upper()
    return have == need or (have == "ADMINISTRATOR" and need == "ADMIN")


@dataclass
class GuardChain:
    guards: list[RouteGuard] = field(
        default_factory=lambda: [hydration_guard, authentication_guard, role_guard]
    )

    def evaluate(self, auth: AuthContext, req: RouteRequirement) -> GuardOutcome:
        """첫 번째로 거부한 가드의 결과를 반환하고, 모두 통과하면 허용."""
        for guard in self.guards:
            outcome = guard(auth, req)
            if outcome is not None:
                logger.debug(f"라우트 가드 {guard.__name__}: {outcome}")
                return outcome
        return GuardOutcome.allow()
