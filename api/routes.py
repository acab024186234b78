"""
api/routes.py — FastAPI 엔드포인트

세션마다 하나의 ExamController 를 두고 응시 조작을 HTTP 로 노출한다.
응시 관련 엔드포인트는 모두 라우트 가드 체인(로그인 필요)을 통과해야 한다.
"""

import logging
from contextlib import contextmanager
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

import api.session as session
from config import LOGIN_PATH
from toeic_cbt.services.access import AuthContext, GuardChain, RouteRequirement
from toeic_cbt.services.exam_controller import ExamController, ExamLockedError
from toeic_cbt.services.navigation_guard import (
    Decision,
    NavigationIntent,
    NavigationKind,
    decide,
)

logger = logging.getLogger(__name__)

router = APIRouter()

EXAM_ROUTE = RouteRequirement(requires_auth=True)
_guards = GuardChain()

# ── Pydantic request bodies ──────────────────────────────────────────────────

class PartBody(BaseModel):
    index: int


class GroupBody(BaseModel):
    index: int


class SaveAnswerBody(BaseModel):
    question_id: int
    answer: str = ""


class ToggleReviewBody(BaseModel):
    question_id: int


class AudioEventBody(BaseModel):
    event: str
    current_time: float | None = None
    playback_rate: float | None = None
    ended: bool | None = None


class NavigateBody(BaseModel):
    kind: NavigationKind
    target: str | None = None
    confirmed: bool | None = None


# ── 헬퍼 ─────────────────────────────────────────────────────────────────────

def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def require_exam_access(request: Request) -> AuthContext:
    """Authorization 헤더로 세션 인증 정보를 준비한 뒤 라우트 가드 체인을 평가한다."""
    auth: AuthContext = session.get(request.state.session_id, "auth")
    if auth is None:
        raise HTTPException(status_code=404, detail="세션이 없습니다.")

    token = _bearer_token(request)
    if token or not auth.is_ready:
        auth.begin_hydration()
        auth.complete_hydration(token)

    outcome = _guards.evaluate(auth, EXAM_ROUTE)
    if outcome.allowed:
        return auth
    if outcome.pending:
        raise HTTPException(status_code=503, detail="인증 정보를 확인하는 중입니다.")
    detail = {"message": outcome.notice or "로그인이 필요합니다.", "redirect_to": outcome.redirect_to}
    if outcome.redirect_to == LOGIN_PATH:
        raise HTTPException(status_code=401, detail=detail)
    raise HTTPException(status_code=403, detail=detail)


def get_controller(request: Request, auth: AuthContext = Depends(require_exam_access)) -> ExamController:
    controller = session.get(request.state.session_id, "controller")
    if controller is None:
        raise HTTPException(status_code=404, detail="시험 세션이 없습니다.")
    return controller


@contextmanager
def _exam_errors():
    try:
        yield
    except ExamLockedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except (ValueError, IndexError) as e:
        raise HTTPException(status_code=422, detail=str(e))


async def _close_client(state: dict[str, Any] | None) -> None:
    client = state.get("client") if state else None
    if client is not None:
        await client.aclose()


# ── 엔드포인트 ───────────────────────────────────────────────────────────────

@router.post("/api/exams/{exam_id}/start")
async def start_exam(
    exam_id: int,
    request: Request,
    parts: str | None = None,
    time: str | None = None,
    auth: AuthContext = Depends(require_exam_access),
):
    sid = request.state.session_id
    await _close_client(session.reset(sid))
    logger.info(f"세션 {sid[:8]}: 시험 {exam_id} 시작 (parts={parts}, time={time})")

    client = request.app.state.backend_factory(auth)
    controller = ExamController(client, exam_id, parts, time)
    session.put(sid, "client", client)
    session.put(sid, "controller", controller)

    await controller.start()
    data = controller.snapshot()
    data["notices"] = controller.drain_notices()
    return data


@router.post("/api/begin")
async def begin_exam(controller: ExamController = Depends(get_controller)):
    with _exam_errors():
        controller.begin()
    return {"ok": True, "status": controller.status.value}


@router.get("/api/exam-state")
async def get_exam_state(controller: ExamController = Depends(get_controller)):
    return controller.snapshot()


@router.post("/api/part")
async def go_to_part(body: PartBody, controller: ExamController = Depends(get_controller)):
    with _exam_errors():
        part = await controller.go_to_part(body.index)
    return {"ok": part is not None, "state": controller.snapshot()}


@router.post("/api/next-part")
async def next_part(controller: ExamController = Depends(get_controller)):
    with _exam_errors():
        part = await controller.next_part()
    return {"ok": part is not None, "state": controller.snapshot()}


@router.post("/api/retry-part")
async def retry_part(controller: ExamController = Depends(get_controller)):
    with _exam_errors():
        part = await controller.retry_part()
    return {"ok": part is not None, "state": controller.snapshot()}


@router.post("/api/group")
async def set_group(body: GroupBody, controller: ExamController = Depends(get_controller)):
    with _exam_errors():
        index = controller.set_group(body.index)
    return {"ok": True, "index": index}


@router.post("/api/save-answer")
async def save_answer(body: SaveAnswerBody, controller: ExamController = Depends(get_controller)):
    with _exam_errors():
        answered = controller.answer(body.question_id, body.answer)
    return {"ok": True, "answered_count": answered}


@router.post("/api/toggle-review")
async def toggle_review(body: ToggleReviewBody, controller: ExamController = Depends(get_controller)):
    with _exam_errors():
        changed = controller.toggle_review(body.question_id)
    marked = controller.answers.marked_for_review.get(body.question_id, False)
    return {"ok": changed, "marked": marked}


@router.post("/api/audio-event")
async def audio_event(body: AudioEventBody, controller: ExamController = Depends(get_controller)):
    with _exam_errors():
        media = controller.audio_event(
            body.event,
            current_time=body.current_time,
            playback_rate=body.playback_rate,
            ended=body.ended,
        )
    return {
        "media": media,
        "audio": controller.snapshot()["audio"],
        "current_group_index": controller.answers.current_group_index,
    }


@router.post("/api/navigate")
async def navigate(body: NavigateBody, controller: ExamController = Depends(get_controller)):
    intent = NavigationIntent(body.kind, body.target, confirmed=body.confirmed)
    if body.confirmed is None and decide(intent, controller.is_test_active) == Decision.CONFIRM:
        # 브라우저에서 확인 대화상자를 띄운 뒤 confirmed 값을 담아 다시 요청한다.
        return {"ok": False, "confirm": controller.guard.message, "location": controller.mediator.history.current}

    allowed = controller.navigate(intent)
    return {"ok": allowed, "location": controller.mediator.history.current}


@router.post("/api/submit-exam")
async def submit_exam(controller: ExamController = Depends(get_controller)):
    with _exam_errors():
        result = await controller.submit()
    if result is None:
        if controller.submission.error:
            raise HTTPException(status_code=502, detail=controller.submission.error)
        raise HTTPException(status_code=409, detail="이미 제출 중입니다.")
    return {"ok": True, "result": result.to_display(), "summary": controller.summary()}


@router.post("/api/retry-submit")
async def retry_submit(controller: ExamController = Depends(get_controller)):
    with _exam_errors():
        result = await controller.retry_submit()
    if result is None:
        raise HTTPException(status_code=502, detail=controller.submission.error or "답안 제출에 실패했습니다.")
    return {"ok": True, "result": result.to_display(), "summary": controller.summary()}


@router.get("/api/notices")
async def get_notices(controller: ExamController = Depends(get_controller)):
    return {"notices": controller.drain_notices(), "redirect_to": controller.pending_redirect}


@router.post("/api/reset")
async def reset_session(request: Request):
    await _close_client(session.reset(request.state.session_id))
    return {"ok": True}
