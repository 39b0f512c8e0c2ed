import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
from pydantic.alias_generators import to_camel

from .errors import ApiError

logger = logging.getLogger(__name__)

API_PREFIX = "/api"


def _jsonable(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v.isoformat() if isinstance(v, datetime) else v for k, v in payload.items()}


class ProctoringClient:
    """Thin synchronous wrapper over the proctoring REST API.

    It is also an event sink for :class:`~proctoring_api.detection.DetectionLoop`.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:4000",
        timeout: float = 5.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._http = httpx.Client(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "ProctoringClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        response = self._http.request(method, f"{API_PREFIX}{path}", **kwargs)
        try:
            data = response.json()
        except ValueError:
            data = {}
        if response.is_error:
            message = data.get("error") or f"HTTP error! status: {response.status_code}"
            raise ApiError(response.status_code, message, data.get("detail"))
        return data

    def start_session(
        self,
        candidate_name: str,
        exam_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        body: Dict[str, Any] = {"candidateName": candidate_name}
        if exam_id:
            body["examId"] = exam_id
        if metadata:
            body["metadata"] = metadata
        data = self._request("POST", "/session/start", json=body)
        logger.info("Session started with ID: %s", data["sessionId"])
        return data["sessionId"]

    def end_session(
        self,
        session_id: str,
        end_reason: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"sessionId": session_id}
        if end_reason:
            body["endReason"] = end_reason
        if metadata:
            body["metadata"] = metadata
        return self._request("POST", "/session/end", json=body)

    def get_session(self, session_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/session/{session_id}")

    def log_event(self, session_id: str, payload: Dict[str, Any]) -> str:
        body = _jsonable(payload)
        body["sessionId"] = session_id
        return self._request("POST", "/events", json=body)["eventId"]

    def log_events(self, session_id: str, payloads: List[Dict[str, Any]]) -> List[str]:
        body = {"sessionId": session_id, "events": [_jsonable(p) for p in payloads]}
        return self._request("POST", "/events/batch", json=body)["eventIds"]

    def session_events(self, session_id: str, **filters: Any) -> Dict[str, Any]:
        params = _jsonable({to_camel(k): v for k, v in filters.items() if v is not None})
        return self._request("GET", f"/events/session/{session_id}", params=params)
