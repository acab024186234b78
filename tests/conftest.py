import asyncio
import json
from typing import Optional

import httpx
import pytest

from toeic_cbt.models.exam_models import Option, PartData, Question, QuestionGroup
from toeic_cbt.services.backend_client import BackendClient

BASE_URL = "http://backend.test/api"


class FakeHandle:
    def __init__(self, when: float, seq: int, callback):
        self.when = when
        self.seq = seq
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    """수동으로 시간을 흘려보내는 Scheduler."""

    def __init__(self):
        self._now = 0.0
        self._seq = 0
        self._queue: list[FakeHandle] = []

    def now(self) -> float:
        return self._now

    def call_later(self, delay, callback) -> FakeHandle:
        self._seq += 1
        handle = FakeHandle(self._now + max(0.0, delay), self._seq, callback)
        self._queue.append(handle)
        return handle

    @property
    def pending(self) -> int:
        return sum(1 for h in self._queue if not h.cancelled)

    def advance(self, seconds: float) -> None:
        target = self._now + seconds
        while True:
            due = [h for h in self._queue if not h.cancelled and h.when <= target + 1e-9]
            if not due:
                break
            handle = min(due, key=lambda h: (h.when, h.seq))
            self._queue.remove(handle)
            self._now = handle.when
            handle.callback()
        self._now = target
        self._queue = [h for h in self._queue if not h.cancelled]


class FakeMedia:
    def __init__(self):
        self.muted = False
        self.current_time = 0.0
        self.playback_rate = 1.0
        self.paused = True
        self.ended = False
        self.play_calls = 0

    def play(self):
        self.paused = False
        self.play_calls += 1

    def pause(self):
        self.paused = True


# ── 데이터 빌더 ────────────────────────────────────────────────────────────────

def make_question(question_id: int, number: int, letters: str = "ABCD") -> Question:
    return Question(
        question_id=question_id,
        question_number=number,
        options=[
            Option(option_id=question_id * 10 + i, option_letter=letter)
            for i, letter in enumerate(letters)
        ],
    )


def make_part(
    part_id: int,
    part_number: int,
    groups: int = 2,
    per_group: int = 2,
    first_question_id: Optional[int] = None,
) -> PartData:
    qid = first_question_id if first_question_id is not None else part_id * 100
    letters = "ABC" if part_number == 2 else "ABCD"
    built = []
    for g in range(groups):
        questions = []
        for _ in range(per_group):
            questions.append(make_question(qid, qid, letters))
            qid += 1
        built.append(
            QuestionGroup(
                group_id=part_id * 10 + g,
                audio_url=f"https://cdn.test/{part_id}/{g}.mp3" if part_number <= 4 else None,
                questions=questions,
            )
        )
    return PartData(part_id=part_id, part_number=part_number, groups=built)


class FakeBackend:
    """
    httpx.MockTransport 용 가짜 REST 백엔드.

    Attributes:
        part_status: {part_id: HTTP 상태 코드} 로 특정 파트 요청을 실패시킨다.
        gates:       {part_id: asyncio.Event} 로 특정 파트 응답을 지연시킨다.
        submit_statuses: 제출 요청마다 차례로 사용할 상태 코드.
    """

    def __init__(self, exam_id: int, parts: list[PartData], exam_parts: Optional[list[dict]] = None):
        self.exam_id = exam_id
        self.parts: dict[int, PartData] = {p.part_id: p for p in parts}
        self.exam_parts = exam_parts if exam_parts is not None else [
            {"partId": p.part_id, "partNumber": p.part_number, "partName": f"Part {p.part_number}"}
            for p in parts
        ]
        self.part_status: dict[int, int] = {}
        self.gates: dict[int, asyncio.Event] = {}
        self.submit_statuses: list[int] = []
        self.requests: list[httpx.Request] = []
        self.submissions: list[dict] = []

    def part_requests(self) -> list[str]:
        return [r.url.params["partIds"] for r in self.requests if r.url.path.endswith("/by-parts")]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == f"/api/exams/public/{self.exam_id}":
            return httpx.Response(200, json={"data": {"examId": self.exam_id, "examName": "Test 1", "examParts": self.exam_parts}})

        if path == "/api/question-groups/by-parts":
            part_id = int(request.url.params["partIds"])
            gate = self.gates.get(part_id)
            if gate is not None:
                await gate.wait()
            status = self.part_status.get(part_id)
            if status:
                return httpx.Response(status, json={"message": "boom"})
            part = self.parts.get(part_id)
            items = [part.model_dump(mode="json", by_alias=True)] if part else []
            return httpx.Response(200, json={"data": items})

        if path == "/api/exams/submit":
            status = self.submit_statuses.pop(0) if self.submit_statuses else 200
            if status != 200:
                return httpx.Response(status, json={"message": "submit failed"})
            self.submissions.append(json.loads(request.content))
            return httpx.Response(200, json={"data": {"attemptId": 77, "totalScore": 495, "listeningScore": 250}})

        return httpx.Response(404, json={"message": "not found"})

    def client(self, auth=None) -> BackendClient:
        return BackendClient(base_url=BASE_URL, auth=auth, transport=httpx.MockTransport(self.handler))


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def media():
    return FakeMedia()
