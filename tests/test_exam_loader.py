import asyncio

from conftest import FakeBackend, make_part
from toeic_cbt.models.exam_models import ExamInfo, PartData
from toeic_cbt.services.exam_loader import (
    MSG_MISSING_PARTS,
    MSG_PARTS_NOT_FOUND,
    ExamDataLoader,
    msg_part_empty,
    msg_part_failed,
    resolve_parts,
)


def _loader(backend, scheduler, **kwargs):
    notices, redirects = [], []
    loader = ExamDataLoader(
        backend.client(),
        scheduler,
        on_notice=notices.append,
        on_redirect=redirects.append,
        **kwargs,
    )
    return loader, notices, redirects


def test_resolve_parts_sorts_and_filters():
    exam = ExamInfo.model_validate({
        "examParts": [
            {"partId": 15, "partNumber": 5},
            {"partId": 11, "partNumber": 1},
            {"partId": 13, "partNumber": 3},
        ]
    })
    assert [p.part_id for p in resolve_parts(exam, "all")] == [11, 13, 15]
    assert [p.part_id for p in resolve_parts(exam, "15, 11,99")] == [11, 15]
    assert resolve_parts(exam, "99") == []


def test_load_session_fetches_only_first_part(scheduler):
    backend = FakeBackend(1, [make_part(11, 1), make_part(15, 5)])
    loader, notices, _ = _loader(backend, scheduler)

    part = asyncio.run(loader.load_session(1, "all"))

    assert part.part_id == 11
    assert loader.part_ids == [11, 15]
    assert loader.part_numbers == [1, 5]
    assert backend.part_requests() == ["11"]
    assert loader.all_answers == {11: {}, 15: {}}
    assert notices == []


def test_parts_are_cached(scheduler):
    backend = FakeBackend(1, [make_part(11, 1), make_part(15, 5)])
    loader, _, _ = _loader(backend, scheduler)

    async def scenario():
        await loader.load_session(1, "all")
        await loader.load_part_at(1)
        await loader.load_part_at(0)
        await loader.load_part_at(1)

    asyncio.run(scenario())
    assert backend.part_requests() == ["11", "15"]


def test_missing_parts_parameter_is_fatal(scheduler):
    backend = FakeBackend(1, [make_part(11, 1)])
    loader, notices, redirects = _loader(backend, scheduler)

    assert asyncio.run(loader.load_session(1, "")) is None
    assert loader.invalid
    assert notices == [MSG_MISSING_PARTS]
    assert backend.requests == []

    scheduler.advance(1.9)
    assert redirects == []
    scheduler.advance(0.1)
    assert redirects == ["/practice-tests"]


def test_unknown_part_ids_are_fatal(scheduler):
    backend = FakeBackend(1, [make_part(11, 1)])
    loader, notices, _ = _loader(backend, scheduler)
    assert asyncio.run(loader.load_session(1, "42")) is None
    assert notices == [MSG_PARTS_NOT_FOUND]


def test_part_without_groups_is_fatal(scheduler):
    empty = PartData(part_id=12, part_number=2, groups=[])
    backend = FakeBackend(1, [empty])
    loader, notices, redirects = _loader(backend, scheduler)

    assert asyncio.run(loader.load_session(1, "12")) is None
    assert loader.invalid
    assert notices == [msg_part_empty(2)]
    scheduler.advance(2)
    assert redirects == ["/practice-tests"]


def test_fatal_notice_shown_once(scheduler):
    backend = FakeBackend(1, [make_part(11, 1)])
    loader, notices, redirects = _loader(backend, scheduler)
    loader.handle_invalid_exam("first")
    loader.handle_invalid_exam("second")
    scheduler.advance(5)
    assert notices == ["first"]
    assert redirects == ["/practice-tests"]


def test_cancel_stops_pending_redirect(scheduler):
    backend = FakeBackend(1, [make_part(11, 1)])
    loader, _, redirects = _loader(backend, scheduler)
    loader.handle_invalid_exam("boom")
    loader.cancel()
    scheduler.advance(5)
    assert redirects == []


def test_later_part_failure_is_fatal_by_default(scheduler):
    backend = FakeBackend(1, [make_part(11, 1), make_part(15, 5)])
    backend.part_status[15] = 503
    loader, notices, _ = _loader(backend, scheduler)

    async def scenario():
        await loader.load_session(1, "all")
        return await loader.load_part_at(1)

    assert asyncio.run(scenario()) is None
    assert loader.invalid
    assert notices == [msg_part_failed(5)]


def test_transient_failure_can_be_retried_when_enabled(scheduler):
    backend = FakeBackend(1, [make_part(11, 1), make_part(15, 5)])
    backend.part_status[15] = 503
    loader, notices, redirects = _loader(backend, scheduler, retry_transient=True)

    async def scenario():
        await loader.load_session(1, "all")
        first = await loader.load_part_at(1)
        del backend.part_status[15]
        second = await loader.load_part_at(1)
        return first, second

    first, second = asyncio.run(scenario())
    assert first is None
    assert second.part_id == 15
    assert not loader.invalid
    assert loader.error is None
    assert notices == [msg_part_failed(5)]
    scheduler.advance(5)
    assert redirects == []


def test_stale_part_response_is_ignored(scheduler):
    backend = FakeBackend(1, [make_part(11, 1), make_part(12, 2), make_part(13, 3)])
    loader, _, _ = _loader(backend, scheduler)

    async def scenario():
        await loader.load_session(1, "all")
        backend.gates[12] = asyncio.Event()
        slow = asyncio.ensure_future(loader.load_part_at(1))
        while len(backend.part_requests()) < 2:
            await asyncio.sleep(0)
        fast = await loader.load_part_at(2)
        backend.gates[12].set()
        return await slow, fast

    slow, fast = asyncio.run(scenario())
    assert slow is None
    assert fast.part_id == 13
    assert not loader.invalid
