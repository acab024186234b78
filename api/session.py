"""
api/session.py — 멀티유저 인메모리 세션 (쿠키 기반)

각 사용자에게 UUID 세션 ID를 발급하고, 세션별로 독립된 응시 상태를 유지.
세션 상태: 인증 컨텍스트(AuthContext), 응시 컨트롤러(ExamController), 백엔드 클라이언트.
TTL(기본 1시간) 경과 시 자동 만료되며, 만료/초기화 시 컨트롤러의 타이머를 모두 정리한다.
"""

import logging
import threading
import time
import uuid
from typing import Any

from api.config import SESSION_TTL
from toeic_cbt.services.access import AuthContext

logger = logging.getLogger(__name__)

_lock = threading.Lock()
_sessions: dict[str, dict[str, Any]] = {}
_timestamps: dict[str, float] = {}


def _new_state() -> dict[str, Any]:
    return {
        "auth": AuthContext(),
        "controller": None,
        "client": None,
    }


def create_session() -> str:
    """새 세션을 생성하고 세션 ID를 반환."""
    sid = uuid.uuid4().hex
    with _lock:
        _sessions[sid] = _new_state()
        _timestamps[sid] = time.time()
    return sid


def get_session(sid: str) -> dict[str, Any] | None:
    """
    세션 ID로 세션 데이터를 가져옴. 만료되었거나 없으면 None.
    만료 세션의 정리는 cleanup_expired 가 담당한다.
    """
    with _lock:
        if sid not in _sessions:
            return None
        if time.time() - _timestamps[sid] > SESSION_TTL:
            return None
        _timestamps[sid] = time.time()  # 접근 시 갱신
        return _sessions[sid]


def get(sid: str, key: str, default=None):
    """세션에서 값 읽기."""
    session = get_session(sid)
    if session is None:
        return default
    return session.get(key, default)


def put(sid: str, key: str, value) -> None:
    """세션에 값 쓰기."""
    with _lock:
        if sid in _sessions:
            _sessions[sid][key] = value
            _timestamps[sid] = time.time()


def reset(sid: str) -> dict[str, Any] | None:
    """
    응시 상태 초기화 (인증 정보는 유지).

    Returns:
        이전 상태. 호출 측에서 백엔드 클라이언트를 닫는다.
    """
    with _lock:
        if sid not in _sessions:
            return None
        previous = _sessions[sid]
        _sessions[sid] = _new_state()
        _sessions[sid]["auth"] = previous["auth"]
        _timestamps[sid] = time.time()
    _dispose(previous)
    return previous


def cleanup_expired() -> list[dict[str, Any]]:
    """만료된 세션을 정리하고 제거된 세션 상태 목록을 반환."""
    now = time.time()
    removed = []
    with _lock:
        expired = [sid for sid, ts in _timestamps.items() if now - ts > SESSION_TTL]
        for sid in expired:
            removed.append(_sessions.pop(sid))
            del _timestamps[sid]
    if removed:
        logger.info(f"만료 세션 {len(removed)}개 정리")
    for state in removed:
        _dispose(state)
    return removed


def clear_all() -> list[dict[str, Any]]:
    """모든 세션을 정리하고 제거된 세션 상태 목록을 반환 (서버 종료 시)."""
    with _lock:
        states = list(_sessions.values())
        _sessions.clear()
        _timestamps.clear()
    for state in states:
        _dispose(state)
    return states


def _dispose(state: dict[str, Any] | None) -> None:
    if not state:
        return
    controller = state.get("controller")
    if controller is not None:
        logger.debug("응시 세션 정리")
        controller.teardown()
