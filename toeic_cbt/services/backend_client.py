"""
services/backend_client.py

원격 REST 백엔드 클라이언트 (httpx.AsyncClient).

Public API:
  - get_public_exam(exam_id) -> ExamInfo                 : GET  /exams/public/{examId}
  - get_parts(part_ids) -> list[PartData]                : GET  /question-groups/by-parts
  - submit_exam(request) -> ExamSubmissionResult         : POST /exams/submit

모든 네트워크/HTTP/응답 형식 오류는 BackendError 로 변환된다.
응답이 {"data": ...} 봉투로 감싸져 있으면 벗겨서 사용한다.
"""

import logging
from typing import Any, Iterable, Optional

import httpx
from pydantic import ValidationError

from config import API_BASE_URL, API_TIMEOUT
from toeic_cbt.models.exam_models import (
    ExamInfo,
    ExamSubmissionRequest,
    ExamSubmissionResult,
    PartData,
)
from toeic_cbt.services.access import AuthContext

logger = logging.getLogger(__name__)


class BackendError(RuntimeError):
    """
    백엔드 호출 실패.

    Attributes:
        kind:        "transport" (연결/타임아웃), "http" (비정상 상태 코드), "payload" (응답 형식 오류)
        status_code: HTTP 상태 코드 (transport 오류는 None)
    """

    def __init__(self, message: str, kind: str = "http", status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code

    @property
    def is_transient(self) -> bool:
        if self.kind == "transport":
            return True
        return self.kind == "http" and self.status_code is not None and self.status_code >= 500


class BackendClient:
    def __init__(
        self,
        base_url: str = API_BASE_URL,
        timeout: float = API_TIMEOUT,
        auth: Optional[AuthContext] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._auth = auth
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "BackendClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # ── 엔드포인트 ────────────────────────────────────────────────────────

    async def get_public_exam(self, exam_id: int) -> ExamInfo:
        data = await self._request("GET", f"/exams/public/{exam_id}")
        return self._parse(ExamInfo, data, f"시험 {exam_id}")

    async def get_parts(self, part_ids: Iterable[int]) -> list[PartData]:
        csv = ",".join(str(pid) for pid in part_ids)
        data = await self._request("GET", "/question-groups/by-parts", params={"partIds": csv})
        if data is None:
            return []
        if not isinstance(data, list):
            raise BackendError("파트 응답 형식이 올바르지 않습니다.", kind="payload")
        return [self._parse(PartData, item, f"파트 {csv}") for item in data]

    async def submit_exam(self, request: ExamSubmissionRequest) -> ExamSubmissionResult:
        payload = request.model_dump(mode="json", by_alias=True)
        data = await self._request("POST", "/exams/submit", json=payload)
        return self._parse(ExamSubmissionResult, data or {}, "제출 결과")

    # ── 내부 ──────────────────────────────────────────────────────────────

    def _headers(self) -> dict:
        token = self._auth.access_token if self._auth and self._auth.is_ready else None
        return {"Authorization": f"Bearer {token}"} if token else {}

    async def _request(self, method: str, url: str, **kwargs) -> Any:
        try:
            response = await self._client.request(method, url, headers=self._headers(), **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.warning(f"API {method} {url} 실패: HTTP {status}")
            raise BackendError(_error_message(e.response), kind="http", status_code=status) from e
        except httpx.HTTPError as e:
            logger.warning(f"API {method} {url} 연결 실패: {e}")
            raise BackendError("서버에 연결할 수 없습니다.", kind="transport") from e

        if not response.content:
            return None
        try:
            body = response.json()
        except ValueError as e:
            raise BackendError("응답을 해석할 수 없습니다.", kind="payload", status_code=response.status_code) from e
        if isinstance(body, dict) and "data" in body:
            return body["data"]
        return body

    @staticmethod
    def _parse(model, data: Any, label: str):
        try:
            return model.model_validate(data)
        except ValidationError as e:
            logger.warning(f"{label} 응답 검증 실패: {e}")
            raise BackendError(f"{label} 데이터 형식이 올바르지 않습니다.", kind="payload") from e


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return f"요청이 실패했습니다 (HTTP {response.status_code})."
