from typing import Any, Dict, List, Optional

import httpx

from .config import PORTAL_API_URL, PORTAL_API_TIMEOUT_SECONDS
from .errors import (
    AttemptNotFound,
    ExamNotFound,
    InvalidRequest,
    PersistenceFailure,
    PortalError,
)

_ERRORS_BY_STATUS = {
    400: InvalidRequest,
    422: InvalidRequest,
}


class PortalClient:
    """Async HTTP client for the coursework API, used by the attempt session."""

    def __init__(
        self,
        access_token: str,
        base_url: str = PORTAL_API_URL,
        timeout: float = PORTAL_API_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport
        self.headers = {"Authorization": f"Bearer {access_token}"}

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=self.headers,
            timeout=self.timeout,
            transport=self.transport,
        )

    async def _request(self, method: str, path: str, not_found=ExamNotFound, **kwargs) -> Dict[str, Any]:
        try:
            async with self._client() as client:
                res = await client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise PersistenceFailure(f"Request to {path} failed: {e}") from e

        if res.status_code < 400:
            try:
                return res.json()
            except ValueError as e:
                raise PersistenceFailure(f"Unreadable response from {path}: {e}") from e

        try:
            body = res.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        message = body.get("error") or body.get("detail") or res.text or "Request failed"
        if not isinstance(message, str):
            message = str(message)

        if res.status_code == 404:
            raise not_found(message)

        error_class = _ERRORS_BY_STATUS.get(res.status_code)
        if error_class is None:
            error_class = PersistenceFailure if res.status_code >= 500 else PortalError
        raise error_class(message)

    async def load_paper(self, exam_id: int) -> Dict[str, Any]:
        return await self._request("GET", f"/exams/{exam_id}")

    async def load_responses(self, exam_id: int) -> List[Dict[str, Any]]:
        data = await self._request("GET", f"/exams/{exam_id}/responses")
        return data.get("responses", [])

    async def save_response(self, exam_id: int, question_id: int, selected_option: Optional[str]):
        await self._request(
            "PUT",
            f"/exams/{exam_id}/responses/{question_id}",
            json={"selected_option": selected_option},
        )

    async def save_responses(self, exam_id: int, answers: Dict[int, Optional[str]]):
        await self._request(
            "PUT",
            f"/exams/{exam_id}/responses",
            json={
                "responses": [
                    {"question_id": qid, "selected_option": option}
                    for qid, option in answers.items()
                ]
            },
        )

    async def submit_test(self, exam_id: int, responses: List[Dict[str, Any]], started_at: str) -> Dict[str, Any]:
        return await self._request(
            "POST",
            "/submit_test",
            json={
                "exam_id": exam_id,
                "responses": responses,
                "started_at": started_at,
            },
        )

    async def get_result(self, exam_id: int) -> Dict[str, Any]:
        return await self._request("GET", f"/exams/{exam_id}/result", not_found=AttemptNotFound)
