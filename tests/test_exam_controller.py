import asyncio

import pytest

from conftest import FakeBackend, make_part
from toeic_cbt.models.exam_models import PartData
from toeic_cbt.models.session_state import ExamStatus
from toeic_cbt.services.exam_controller import (
    MSG_TIME_UP,
    ExamController,
    ExamLockedError,
)
from toeic_cbt.services.exam_loader import MSG_MISSING_PARTS, msg_part_empty
from toeic_cbt.services.navigation_guard import (
    HistoryStack,
    NavigationIntent,
    NavigationKind,
    NavigationMediator,
)
from toeic_cbt.services.submission import MSG_SUBMIT_FAILED


def _controller(backend, scheduler, parts="all", time=None, **kwargs):
    spawned = []
    controller = ExamController(
        backend.client(),
        backend.exam_id,
        parts,
        time,
        scheduler=scheduler,
        spawn=spawned.append,
        **kwargs,
    )
    return controller, spawned


def _full_backend(*parts):
    return FakeBackend(1, list(parts) or [make_part(11, 1), make_part(12, 2), make_part(15, 5)])


# ── 시작 ──────────────────────────────────────────────────────────────────────

def test_partial_exam_starts_immediately(scheduler):
    backend = _full_backend()
    controller, _ = _controller(backend, scheduler, parts="15,11", time="30")

    async def scenario():
        return await controller.start()

    assert asyncio.run(scenario()) == ExamStatus.ACTIVE
    assert controller.session.part_ids == [11, 15]
    assert controller.timer.initial_seconds == 1800
    assert controller.timer.is_running
    assert controller.is_test_active
    assert controller.snapshot()["timer"]["display"] == "30:00"


def test_full_exam_waits_for_begin(scheduler):
    backend = _full_backend()
    controller, _ = _controller(backend, scheduler, time="30")

    asyncio.run(controller.start())
    assert controller.status == ExamStatus.READY
    assert not controller.timer.is_running
    with pytest.raises(ExamLockedError):
        controller.answer(1100, "A")

    controller.begin()
    assert controller.status == ExamStatus.ACTIVE
    assert controller.timer.initial_seconds == 7200
    assert controller.timer.is_running


def test_missing_parts_redirects_to_catalog(scheduler):
    backend = _full_backend()
    controller, _ = _controller(backend, scheduler, parts=None)

    asyncio.run(controller.start())
    assert controller.status == ExamStatus.INVALID
    assert controller.drain_notices() == [MSG_MISSING_PARTS]
    assert not controller.is_test_active

    scheduler.advance(2)
    assert controller.pending_redirect == "/practice-tests"
    assert controller.mediator.history.current == "/practice-tests"
    assert controller.mediator.interceptor_count == 0


def test_part_without_questions_is_fatal(scheduler):
    backend = FakeBackend(1, [PartData(part_id=12, part_number=2, groups=[])])
    controller, _ = _controller(backend, scheduler, parts="12")

    asyncio.run(controller.start())
    assert controller.status == ExamStatus.INVALID
    assert controller.drain_notices() == [msg_part_empty(2)]
    scheduler.advance(2)
    assert controller.pending_redirect == "/practice-tests"


# ── 파트 이동 ─────────────────────────────────────────────────────────────────

def test_answers_survive_part_switch(scheduler):
    backend = _full_backend()
    controller, _ = _controller(backend, scheduler, parts="11,15")

    async def scenario():
        await controller.start()
        controller.answer(1100, "B")
        await controller.go_to_part(1)
        controller.answer(1500, "C")
        await controller.go_to_part(0)

    asyncio.run(scenario())
    assert controller.answers.answers == {1100: "B"}
    assert controller.loader.all_answers[15] == {1500: "C"}
    assert backend.part_requests() == ["11", "15"]


def test_timer_paused_while_part_loads(scheduler):
    backend = _full_backend()
    controller, _ = _controller(backend, scheduler, parts="11,15", time="30")

    async def scenario():
        await controller.start()
        backend.gates[15] = asyncio.Event()
        task = asyncio.ensure_future(controller.go_to_part(1))
        while len(backend.part_requests()) < 2:
            await asyncio.sleep(0)

        assert controller.status == ExamStatus.LOADING_PART
        assert not controller.timer.is_running
        scheduler.advance(10)
        assert controller.timer.remaining_seconds == 1800

        backend.gates[15].set()
        await task

    asyncio.run(scenario())
    assert controller.status == ExamStatus.ACTIVE
    assert controller.timer.is_running
    assert controller.current_part.part_id == 15


def test_stale_part_response_does_not_replace_newer_part(scheduler):
    backend = FakeBackend(1, [make_part(11, 5), make_part(12, 6), make_part(13, 7)])
    controller, _ = _controller(backend, scheduler, parts="11,12,13")

    async def scenario():
        await controller.start()
        backend.gates[12] = asyncio.Event()
        slow = asyncio.ensure_future(controller.go_to_part(1))
        while len(backend.part_requests()) < 2:
            await asyncio.sleep(0)
        await controller.go_to_part(2)
        backend.gates[12].set()
        return await slow

    assert asyncio.run(scenario()) is None
    assert controller.current_part_index == 2
    assert controller.current_part.part_id == 13
    assert controller.status == ExamStatus.ACTIVE


def test_stale_empty_part_does_not_invalidate_exam(scheduler):
    empty = PartData(part_id=12, part_number=6, groups=[])
    backend = FakeBackend(1, [make_part(11, 5), empty, make_part(13, 7)])
    controller, _ = _controller(backend, scheduler, parts="11,12,13")

    async def scenario():
        await controller.start()
        backend.gates[12] = asyncio.Event()
        slow = asyncio.ensure_future(controller.go_to_part(1))
        while len(backend.part_requests()) < 2:
            await asyncio.sleep(0)
        await controller.go_to_part(2)
        backend.gates[12].set()
        return await slow

    assert asyncio.run(scenario()) is None
    assert controller.status == ExamStatus.ACTIVE
    assert controller.current_part.part_id == 13
    assert controller.drain_notices() == []
    assert controller.pending_redirect is None
    assert scheduler.pending > 0
    assert 12 not in controller.loader.part_cache


def test_transient_part_error_can_be_retried(scheduler):
    backend = _full_backend()
    backend.part_status[15] = 503
    controller, _ = _controller(backend, scheduler, parts="11,15", retry_transient=True)

    async def scenario():
        await controller.start()
        failed = await controller.go_to_part(1)
        assert failed is None
        assert controller.status == ExamStatus.ACTIVE
        assert controller.current_part_index == 0
        assert controller.loader.error
        del backend.part_status[15]
        return await controller.retry_part()

    part = asyncio.run(scenario())
    assert part.part_id == 15
    assert controller.current_part_index == 1
    assert controller.snapshot()["error"] is None


def test_full_exam_blocks_other_listening_parts_and_early_reading(scheduler):
    backend = _full_backend()
    controller, _ = _controller(backend, scheduler)

    async def scenario():
        await controller.start()
        controller.begin()
        with pytest.raises(ExamLockedError):
            await controller.go_to_part(1)
        with pytest.raises(ExamLockedError):
            await controller.go_to_part(2)
        with pytest.raises(ExamLockedError):
            await controller.next_part()

    asyncio.run(scenario())
    assert controller.current_part_index == 0


def test_reading_unlocked_after_audio_and_countdown(scheduler):
    backend = _full_backend(make_part(11, 1, groups=1), make_part(15, 5))
    controller, spawned = _controller(backend, scheduler)

    async def scenario():
        await controller.start()
        controller.begin()
        controller.audio_event("mount")
        controller.audio_event("play")
        controller.audio_event("ended", ended=True)
        assert controller.audio.navigation_locked
        scheduler.advance(3)
        assert not controller.audio.navigation_locked
        await controller.go_to_part(1)

    asyncio.run(scenario())
    assert controller.current_part.part_number == 5
    assert not controller.audio.restricted
    scheduler.advance(5)
    assert spawned == []


def test_audio_end_of_last_group_advances_part(scheduler):
    backend = _full_backend(make_part(11, 1, groups=1), make_part(12, 2, groups=1))
    controller, spawned = _controller(backend, scheduler)

    async def scenario():
        await controller.start()
        controller.begin()
        controller.audio_event("mount")
        controller.audio_event("ended", ended=True)
        scheduler.advance(5)
        assert len(spawned) == 1
        await spawned[0]

    asyncio.run(scenario())
    assert controller.current_part_index == 1
    assert controller.current_part.part_number == 2


def test_audio_end_moves_to_next_group(scheduler):
    backend = _full_backend(make_part(11, 1, groups=2))
    controller, spawned = _controller(backend, scheduler)

    async def scenario():
        await controller.start()
        controller.begin()
        controller.audio_event("mount")
        controller.audio_event("ended", ended=True)

    asyncio.run(scenario())
    scheduler.advance(5)
    assert controller.answers.current_group_index == 1
    assert controller.snapshot()["current_group_index"] == 1
    assert spawned == []


def test_group_navigation_in_restricted_listening(scheduler):
    backend = _full_backend(make_part(11, 1, groups=3))
    controller, _ = _controller(backend, scheduler)

    async def scenario():
        await controller.start()
        controller.begin()
        controller.audio_event("mount")

    asyncio.run(scenario())
    with pytest.raises(ExamLockedError):
        controller.set_group(1)

    controller.audio_event("ended", ended=True)
    scheduler.advance(3)
    with pytest.raises(ExamLockedError):
        controller.set_group(2)
    assert controller.set_group(1) == 1


def test_group_navigation_free_in_partial_mode(scheduler):
    backend = _full_backend(make_part(11, 1, groups=3))
    controller, _ = _controller(backend, scheduler, parts="11")
    asyncio.run(controller.start())
    assert controller.set_group(2) == 2
    assert controller.set_group(9) == 2


def test_audio_events_report_guard_commands(scheduler):
    backend = _full_backend()
    controller, _ = _controller(backend, scheduler)

    async def scenario():
        await controller.start()
        controller.begin()

    asyncio.run(scenario())
    mounted = controller.audio_event("mount")
    assert mounted["muted"] is True
    assert mounted["commands"] == ["play"]

    assert controller.audio_event("play")["muted"] is False
    assert controller.audio_event("pause", ended=False)["commands"] == ["play"]

    controller.audio_event("timeupdate", current_time=10.0)
    report = controller.audio_event("seeking", current_time=12.0)
    assert report["current_time"] == 10.0

    assert controller.audio_event("ratechange", playback_rate=2.0)["playback_rate"] == 1.0
    with pytest.raises(ValueError):
        controller.audio_event("scrub")


def test_review_marking_blocked_for_full_listening(scheduler):
    backend = _full_backend()
    controller, _ = _controller(backend, scheduler)

    async def scenario():
        await controller.start()
        controller.begin()

    asyncio.run(scenario())
    assert controller.toggle_review(1100) is False
    assert controller.snapshot()["can_mark_review"] is False


# ── 제출 ──────────────────────────────────────────────────────────────────────

def test_submit_finishes_exam(scheduler):
    backend = _full_backend()
    controller, _ = _controller(backend, scheduler, parts="11,15")

    async def scenario():
        await controller.start()
        controller.answer(1100, "A")
        first = await controller.submit()
        second = await controller.submit()
        return first, second

    first, second = asyncio.run(scenario())
    assert first is second
    assert controller.status == ExamStatus.FINISHED
    assert not controller.is_test_active
    assert not controller.timer.is_running
    assert len(backend.submissions) == 1

    payload = backend.submissions[0]
    assert payload["fullTest"] is False
    assert payload["partIds"] == [11, 15]
    assert payload["answers"] == [{"questionId": 1100, "selectedOption": "A"}]
    assert controller.summary() == {"answered": 1, "total": 4, "percent": 25, "time_up": False}
    assert controller.snapshot()["summary"]["answered"] == 1


def test_failed_submit_keeps_answers_and_can_retry(scheduler):
    backend = _full_backend()
    backend.submit_statuses = [500]
    controller, _ = _controller(backend, scheduler, parts="11", time="30")

    async def scenario():
        await controller.start()
        controller.answer(1100, "D")
        failed = await controller.submit()
        assert failed is None
        assert controller.status == ExamStatus.ACTIVE
        assert controller.timer.is_running
        assert controller.submission.can_retry
        assert controller.answers.answers == {1100: "D"}
        return await controller.retry_submit()

    result = asyncio.run(scenario())
    assert result.total_score == 495
    assert MSG_SUBMIT_FAILED in controller.drain_notices()
    assert controller.status == ExamStatus.FINISHED


def test_retry_without_failure_is_rejected(scheduler):
    backend = _full_backend()
    controller, _ = _controller(backend, scheduler, parts="11")

    async def scenario():
        await controller.start()
        await controller.retry_submit()

    with pytest.raises(ExamLockedError):
        asyncio.run(scenario())


def test_time_up_forces_single_submission(scheduler):
    backend = _full_backend()
    controller, spawned = _controller(backend, scheduler, parts="11", time="1")

    async def scenario():
        await controller.start()
        controller.answer(1101, "C")
        scheduler.advance(60)
        assert controller.time_up
        assert len(spawned) == 1
        with pytest.raises(ExamLockedError):
            controller.answer(1100, "A")
        await spawned[0]

    asyncio.run(scenario())
    assert controller.status == ExamStatus.FINISHED
    assert MSG_TIME_UP in controller.drain_notices()
    assert len(backend.submissions) == 1
    assert backend.submissions[0]["durationSeconds"] == 60
    assert controller.summary()["time_up"] is True


# ── 이탈 방지 / 정리 ───────────────────────────────────────────────────────────

def _mediator():
    history = HistoryStack("/practice-tests")
    history.push("/practice-tests/1/practice")
    return NavigationMediator(history)


def test_declined_back_keeps_exam_running(scheduler):
    backend = _full_backend()
    controller, _ = _controller(
        backend, scheduler, parts="11", mediator=_mediator(), confirm=lambda message: False
    )
    asyncio.run(controller.start())

    assert controller.navigate(NavigationIntent(NavigationKind.BACK)) is False
    assert controller.mediator.history.current == "/practice-tests/1/practice"
    assert controller.is_test_active
    assert controller.status == ExamStatus.ACTIVE


def test_confirmed_leave_tears_down_session(scheduler):
    backend = _full_backend()
    controller, _ = _controller(
        backend, scheduler, parts="11", mediator=_mediator(), confirm=lambda message: True
    )
    asyncio.run(controller.start())

    assert controller.navigate(NavigationIntent(NavigationKind.BACK)) is True
    assert controller.mediator.history.current == "/practice-tests"
    assert controller.mediator.interceptor_count == 0
    with pytest.raises(ExamLockedError):
        controller.answer(1100, "A")


def test_default_history_lets_confirmed_back_leave(scheduler):
    backend = _full_backend()
    controller, _ = _controller(backend, scheduler, parts="11", confirm=lambda message: True)
    asyncio.run(controller.start())
    assert controller.mediator.history.current == "/practice-tests/1/practice"
    assert scheduler.pending > 0

    assert controller.navigate(NavigationIntent(NavigationKind.BACK)) is True
    assert controller.mediator.history.current == "/practice-tests/1"
    assert not controller.is_test_active
    assert scheduler.pending == 0


def test_teardown_cancels_every_timer(scheduler):
    backend = _full_backend()
    controller, _ = _controller(backend, scheduler)

    async def scenario():
        await controller.start()
        controller.begin()
        controller.audio_event("mount")
        controller.audio_event("ended", ended=True)
        controller.answer(1100, "A")

    asyncio.run(scenario())
    assert scheduler.pending > 0
    controller.teardown()
    controller.teardown()
    assert scheduler.pending == 0
