"""
services/exam_controller.py

응시 화면 컨트롤러.

데이터 로더 → 답안/검토 상태 + 오디오 가드 → 타이머/이탈 방지 가드 → 제출 흐름을
하나의 세션 객체로 묶는다. UI 프레임워크와 무관하며, api/routes.py 가 HTTP 로 노출한다.

상태 전이:
  loading → ready(전체 시험 시작 대기) → active ⇄ loading_part → submitting → finished
  (치명적 오류 시 invalid)
"""

import asyncio
import logging
from typing import Any, Callable, Optional

from config import CATALOG_PATH, RETRY_TRANSIENT_PART_ERRORS
from toeic_cbt.models.exam_models import ExamSubmissionResult, PartData
from toeic_cbt.models.session_state import AudioStatus, ExamSession, ExamStatus
from toeic_cbt.services.answer_state import ExamAnswerState
from toeic_cbt.services.audio_guard import AudioPlaybackGuard, RemoteMedia
from toeic_cbt.services.backend_client import BackendClient
from toeic_cbt.services.exam_loader import ExamDataLoader
from toeic_cbt.services.exam_service import (
    build_completion_summary,
    get_part_name,
    is_listening_part,
    is_reading_part,
)
from toeic_cbt.services.exam_timer import ExamTimer, derive_total_seconds, format_time
from toeic_cbt.services.navigation_guard import (
    HistoryStack,
    NavigationGuard,
    NavigationIntent,
    NavigationKind,
    NavigationMediator,
)
from toeic_cbt.services.scheduler import AsyncioScheduler, Scheduler
from toeic_cbt.services.submission import SubmissionFlow, build_request

logger = logging.getLogger(__name__)

MSG_TIME_WARNING = "남은 시간이 1분입니다! 답안을 마무리해 주세요."
MSG_TIME_UP = "시험 시간이 종료되었습니다. 답안을 제출합니다."

_AUDIO_EVENTS = ("mount", "play", "pause", "ended", "timeupdate", "seeking", "ratechange")

_background_tasks: set = set()


def _spawn_background(coro) -> asyncio.Task:
    task = asyncio.ensure_future(coro)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


class ExamLockedError(RuntimeError):
    """현재 상태에서 허용되지 않는 이동/조작."""


def _practice_history(exam_id: int) -> HistoryStack:
    """시험 설정 페이지에서 응시 페이지로 들어온 히스토리."""
    history = HistoryStack(f"{CATALOG_PATH}/{exam_id}")
    history.push(f"{CATALOG_PATH}/{exam_id}/practice")
    return history


class ExamController:
    def __init__(
        self,
        client: BackendClient,
        exam_id: int,
        parts_selector: Optional[str],
        time_param: Optional[str] = None,
        scheduler: Optional[Scheduler] = None,
        mediator: Optional[NavigationMediator] = None,
        confirm: Optional[Callable[[str], bool]] = None,
        spawn: Optional[Callable[[Any], Any]] = None,
        retry_transient: bool = RETRY_TRANSIENT_PART_ERRORS,
    ) -> None:
        self.scheduler = scheduler or AsyncioScheduler()
        self._spawn = spawn or _spawn_background

        selector = (parts_selector or "").strip()
        self.session = ExamSession(
            exam_id=exam_id,
            parts_selector=selector,
            time_param=(time_param or "").strip(),
            mode=ExamSession.mode_for(selector),
        )
        self.status = ExamStatus.LOADING
        self.current_part_index = 0
        self.current_part: Optional[PartData] = None
        self._failed_part_index: Optional[int] = None
        self.time_up = False
        self.notices: list[str] = []
        self.pending_redirect: Optional[str] = None
        self._media: Optional[RemoteMedia] = None
        self._torn_down = False

        self.loader = ExamDataLoader(
            client,
            self.scheduler,
            on_notice=self._push_notice,
            on_redirect=self._redirect,
            retry_transient=retry_transient,
        )
        self.timer = ExamTimer(
            self.scheduler,
            derive_total_seconds(self.session.mode, self.session.time_param or None),
            on_time_up=self._on_time_up,
            on_warning=self._on_time_warning,
        )
        self.answers = ExamAnswerState(
            self.scheduler,
            self.session.mode,
            on_answers_change=self.loader.update_answers,
            on_marked_change=self.loader.update_marked,
        )
        self.audio = AudioPlaybackGuard(
            self.scheduler,
            on_group_change=self._on_audio_group_change,
            on_part_complete=self._on_audio_part_complete,
        )
        self.submission = SubmissionFlow(client)

        self.mediator = mediator or NavigationMediator(_practice_history(exam_id))
        self.guard = NavigationGuard(confirm=confirm)
        self.guard.install(self.mediator)
        self._remove_listener = self.mediator.add_listener(self._on_navigated)

    # ── 상태 조회 ──────────────────────────────────────────────────────────

    @property
    def is_full(self) -> bool:
        return self.session.is_full

    @property
    def is_last_part(self) -> bool:
        return self.current_part_index >= len(self.session.part_ids) - 1

    @property
    def is_test_active(self) -> bool:
        return self.guard.is_active

    def drain_notices(self) -> list[str]:
        notices, self.notices = self.notices, []
        return notices

    # ── 시작 ──────────────────────────────────────────────────────────────

    async def start(self) -> ExamStatus:
        """시험 정보와 첫 파트를 로드한다. 파트 연습은 바로 시작, 전체 시험은 begin() 대기."""
        part = await self.loader.load_session(self.session.exam_id, self.session.parts_selector)
        if self._torn_down:
            return self.status
        if part is None:
            self._mark_invalid()
            return self.status

        self.session.part_ids = list(self.loader.part_ids)
        self.session.part_numbers = list(self.loader.part_numbers)
        self._show_part(0, part)
        self.guard.activate(True)

        self.status = ExamStatus.READY
        if not self.is_full:
            self.begin()
        return self.status

    def begin(self) -> None:
        """전체 시험 시작 버튼. 오디오 자동 재생은 이 사용자 동작 이후에 시작된다."""
        if self.status == ExamStatus.ACTIVE:
            return
        if self.status != ExamStatus.READY:
            raise ExamLockedError("시험을 시작할 수 없는 상태입니다.")
        self.status = ExamStatus.ACTIVE
        self.timer.start()
        logger.info(f"시험 {self.session.exam_id} 응시 시작 ({self.session.mode.value})")

    # ── 파트 / 그룹 이동 ──────────────────────────────────────────────────

    async def go_to_part(self, index: int, forced: bool = False) -> Optional[PartData]:
        """
        index 번째 파트로 이동한다. 캐시에 없으면 로드하는 동안 타이머를 멈춘다.

        Args:
            forced: 오디오 자동 이동/파트 완료처럼 내부 전환인 경우 True (파트 잠금 무시).

        Raises:
            ExamLockedError: 전체 시험의 파트 이동 제한에 걸린 경우.
            IndexError:      범위를 벗어난 인덱스.
        """
        self._require_status(ExamStatus.ACTIVE, ExamStatus.LOADING_PART)
        if not 0 <= index < len(self.session.part_ids):
            raise IndexError(f"파트 인덱스 범위 초과: {index}")
        if index == self.current_part_index and self.status == ExamStatus.ACTIVE:
            return self.current_part
        if not forced:
            self._check_part_lock(index)

        self.answers.flush()
        part_id = self.session.part_ids[index]
        cached = self.loader.part_cache.get(part_id)
        if cached is not None:
            # 진행 중인 다른 파트 요청은 무효화
            part = await self.loader.load_part_at(index)
            self._resume_after_part_load()
            self._show_part(index, part)
            return part

        self.status = ExamStatus.LOADING_PART
        self.timer.pause()
        part = await self.loader.load_part_at(index)
        if self._torn_down:
            return None

        if part is None:
            if self.loader.invalid:
                self._mark_invalid()
            elif self.loader.error:
                # 재시도 가능 오류: 현재 파트에 머문다
                self._failed_part_index = index
                self._resume_after_part_load()
            return None

        self._resume_after_part_load()
        self._show_part(index, part)
        return part

    async def retry_part(self) -> Optional[PartData]:
        """재시도 가능 오류로 멈춘 파트 로드를 다시 시도한다."""
        if not self.loader.error or self.loader.invalid:
            return None
        target = self._failed_part_index if self._failed_part_index is not None else self.current_part_index
        return await self.go_to_part(target, forced=True)

    async def next_part(self) -> Optional[PartData]:
        """파트 완료 버튼. 마지막 파트면 아무 것도 하지 않는다."""
        self._require_status(ExamStatus.ACTIVE)
        if self.audio.navigation_locked:
            raise ExamLockedError("음성이 끝난 후 다음 파트로 이동할 수 있습니다.")
        if self.is_last_part:
            return None
        return await self.go_to_part(self.current_part_index + 1, forced=True)

    def set_group(self, index: int) -> int:
        self._require_status(ExamStatus.ACTIVE)
        if self.audio.restricted:
            if self.audio.navigation_locked:
                raise ExamLockedError("음성이 끝날 때까지 다른 문항으로 이동할 수 없습니다.")
            if abs(index - self.answers.current_group_index) != 1:
                raise ExamLockedError("전체 시험 듣기 파트에서는 문항 목록으로 이동할 수 없습니다.")
        new_index = self.answers.set_group_index(index)
        self.audio.change_group(new_index, self.answers.total_groups)
        return new_index

    def _check_part_lock(self, index: int) -> None:
        if not self.is_full:
            return
        target_number = self.session.part_numbers[index]
        if is_listening_part(target_number) and index != self.current_part_index:
            raise ExamLockedError("전체 시험에서는 다른 듣기 파트로 이동할 수 없습니다.")
        if is_reading_part(target_number) and self.audio.navigation_locked:
            raise ExamLockedError("듣기 파트를 마친 후 읽기 파트로 이동할 수 있습니다.")

    def _show_part(self, index: int, part: PartData) -> None:
        self.current_part_index = index
        self.current_part = part
        self._failed_part_index = None
        self.answers.load_part(
            part,
            self.loader.all_answers.get(part.part_id),
            self.loader.all_marked.get(part.part_id),
        )
        self.audio.configure(self.session.mode, part.part_number, 0, len(part.groups))
        self._media = None

    def _resume_after_part_load(self) -> None:
        if self.status == ExamStatus.LOADING_PART:
            self.status = ExamStatus.ACTIVE
        self.timer.resume()

    # ── 답안 ──────────────────────────────────────────────────────────────

    def answer(self, question_id: int, option_letter: str) -> int:
        self._require_answerable()
        self.answers.set_answer(question_id, option_letter)
        return self.answers.answered_count

    def toggle_review(self, question_id: int) -> bool:
        self._require_answerable()
        return self.answers.toggle_review(question_id)

    def _require_answerable(self) -> None:
        self._require_status(ExamStatus.ACTIVE)
        if self.time_up:
            raise ExamLockedError("시험 시간이 종료되었습니다.")

    # ── 오디오 ────────────────────────────────────────────────────────────

    def audio_event(
        self,
        event: str,
        current_time: Optional[float] = None,
        playback_rate: Optional[float] = None,
        ended: Optional[bool] = None,
    ) -> dict[str, Any]:
        """
        브라우저 <audio> 이벤트를 오디오 가드에 전달하고,
        브라우저가 적용해야 할 미디어 상태/명령을 반환한다.

        event: mount, play, pause, ended, timeupdate, seeking, ratechange
        """
        self._require_status(ExamStatus.ACTIVE)
        if event not in _AUDIO_EVENTS:
            raise ValueError(f"알 수 없는 오디오 이벤트: {event}")
        if event == "mount" or self._media is None:
            self._media = RemoteMedia()
            self.audio.attach(self._media)
            if event == "mount":
                return self._media.report()

        media = self._media
        if current_time is not None:
            media.current_time = float(current_time)
        if playback_rate is not None:
            media.playback_rate = float(playback_rate)
        if ended is not None:
            media.ended = bool(ended)

        if event == "play":
            media.paused = False
            media.ended = False
            self.audio.handle_play()
        elif event == "pause":
            media.paused = True
            self.audio.handle_pause()
        elif event == "ended":
            media.paused = True
            media.ended = True
            self.audio.handle_ended()
        elif event == "timeupdate":
            self.audio.handle_time_update()
        elif event == "seeking":
            self.audio.handle_seeking()
        elif event == "ratechange":
            self.audio.enforce_rate()
        return media.report()

    def _on_audio_group_change(self, index: int) -> None:
        new_index = self.answers.set_group_index(index)
        self.audio.change_group(new_index, self.answers.total_groups)
        self._media = None

    def _on_audio_part_complete(self) -> None:
        if self.is_last_part or self.status != ExamStatus.ACTIVE:
            return
        self._spawn(self._advance_part())

    async def _advance_part(self) -> None:
        try:
            await self.go_to_part(self.current_part_index + 1, forced=True)
        except ExamLockedError as e:
            logger.info(f"자동 파트 이동 생략: {e}")

    # ── 제출 ──────────────────────────────────────────────────────────────

    async def submit(self) -> Optional[ExamSubmissionResult]:
        """
        전체 답안을 제출한다. 제출 중이면 무시하고, 이미 끝났으면 기존 결과를 반환한다.
        """
        if self.status == ExamStatus.FINISHED:
            return self.submission.result
        if self.submission.is_submitting:
            return None
        self._require_status(ExamStatus.ACTIVE, ExamStatus.LOADING_PART)

        self.answers.flush()
        previous = self.status
        self.status = ExamStatus.SUBMITTING
        self.timer.pause()
        request = build_request(self.session, self.loader.all_answers, self.timer.elapsed_seconds)

        result = await self.submission.submit(request)
        if self._torn_down:
            return result
        if result is None:
            self.status = previous if previous != ExamStatus.LOADING_PART else ExamStatus.ACTIVE
            if not self.timer.is_finished:
                self.timer.resume()
            if self.submission.error:
                self._push_notice(self.submission.error)
            return None

        self._finish()
        return result

    async def retry_submit(self) -> Optional[ExamSubmissionResult]:
        if not self.submission.can_retry:
            raise ExamLockedError("재시도할 제출 요청이 없습니다.")
        return await self.submit()

    def _on_time_up(self) -> None:
        self.time_up = True
        self._push_notice(MSG_TIME_UP)
        if self.submission.is_submitting or self.submission.is_done:
            return
        self._spawn(self.submit())

    def _on_time_warning(self, remaining: int) -> None:
        self._push_notice(MSG_TIME_WARNING)

    def _finish(self) -> None:
        self.status = ExamStatus.FINISHED
        self.timer.finish()
        self.guard.disable()
        self.audio.dispose()
        self.answers.dispose()
        self.loader.cancel()
        logger.info(f"시험 {self.session.exam_id} 응시 종료")

    def summary(self) -> dict[str, object]:
        return build_completion_summary(
            self.loader.all_answers, self.loader.loaded_parts(), time_up=self.time_up
        )

    # ── 이동 / 정리 ────────────────────────────────────────────────────────

    def navigate(self, intent: NavigationIntent) -> bool:
        return self.mediator.navigate(intent)

    def _on_navigated(self, intent: NavigationIntent, url: str) -> None:
        # 응시 페이지를 떠나면 세션 종료
        logger.info(f"응시 페이지 이탈: {intent.kind.value} → {url}")
        self.teardown()

    def _redirect(self, path: str) -> None:
        self.pending_redirect = path
        self.guard.disable()
        self.mediator.navigate(NavigationIntent(NavigationKind.REPLACE, path))

    def _mark_invalid(self) -> None:
        self.status = ExamStatus.INVALID
        self.guard.disable()
        self.timer.finish()
        self.audio.dispose()

    def teardown(self) -> None:
        """모든 타이머와 가드를 해제한다. 여러 번 호출해도 안전하다."""
        if self._torn_down:
            return
        self._torn_down = True
        self.timer.finish()
        self.answers.dispose()
        self.audio.dispose()
        self.loader.cancel()
        self.guard.disable()
        self.guard.teardown()
        self._remove_listener()

    def _push_notice(self, message: str) -> None:
        self.notices.append(message)

    def _require_status(self, *allowed: ExamStatus) -> None:
        if self._torn_down:
            raise ExamLockedError("종료된 응시 세션입니다.")
        if self.status not in allowed:
            raise ExamLockedError(f"현재 상태({self.status.value})에서는 할 수 없는 작업입니다.")

    # ── 직렬화 ────────────────────────────────────────────────────────────

    def snapshot(self) -> dict[str, Any]:
        part = self.current_part
        timer = self.timer
        audio: AudioStatus = self.audio.status
        exam = self.loader.exam
        data: dict[str, Any] = {
            "status": self.status.value,
            "mode": self.session.mode.value,
            "exam_id": self.session.exam_id,
            "exam_name": exam.exam_name if exam else None,
            "part_ids": list(self.session.part_ids),
            "part_numbers": list(self.session.part_numbers),
            "current_part_index": self.current_part_index,
            "is_last_part": self.is_last_part,
            "part": part.model_dump(by_alias=True) if part else None,
            "part_name": get_part_name(part) if part else None,
            "current_group_index": self.answers.current_group_index,
            "answers": {str(k): v for k, v in self.answers.answers.items()},
            "marked_for_review": {str(k): v for k, v in self.answers.marked_for_review.items() if v},
            "answered_count": self.answers.answered_count,
            "total_questions": self.answers.total_questions,
            "can_mark_review": self.answers.can_mark_review,
            "timer": {
                "initial_seconds": timer.initial_seconds,
                "remaining_seconds": timer.remaining_seconds,
                "elapsed_seconds": timer.elapsed_seconds,
                "unlimited": timer.is_unlimited,
                "display": None if timer.is_unlimited else format_time(timer.remaining_seconds),
                "time_up": self.time_up,
            },
            "audio": {
                **audio.model_dump(),
                "restricted": self.audio.restricted,
                "navigation_locked": self.audio.navigation_locked,
            },
            "is_test_active": self.is_test_active,
            "error": self.loader.error,
            "submission": {
                "is_submitting": self.submission.is_submitting,
                "error": self.submission.error,
                "can_retry": self.submission.can_retry,
                "result": self.submission.result.to_display() if self.submission.result else None,
            },
        }
        if self.status == ExamStatus.FINISHED:
            data["summary"] = self.summary()
        return data
