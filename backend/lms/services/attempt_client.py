"""HTTP client for the attempts API (singleton).

This is the persistence collaborator a ``TestSession`` talks to: transport
failures, 5xx responses and unreadable bodies become ``PersistenceError``
(retryable), a 409 becomes ``AttemptTerminalError``, and 401 / 403 / 404
become ``AttemptAccessError``.
"""

import logging
from typing import Any

import httpx
from pydantic import BaseModel, ValidationError

from lms.config import settings
from lms.core.exceptions import (
    AnswerValidationError,
    AttemptAccessError,
    AttemptIntegrityError,
    AttemptLimitError,
    AttemptTerminalError,
    PersistenceError,
)
from lms.schemas.attempt import (
    AttemptRead,
    AttemptResult,
    AttemptSession,
    AutoSaveAck,
    SubmissionPayload,
)
from lms.schemas.test import TestRead

logger = logging.getLogger(__name__)


def _detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict):
        return str(body.get("detail", body))
    return str(body)


def _parse(model: type[BaseModel], data: Any):
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise PersistenceError(
            f"Unexpected {model.__name__} response ({exc.error_count()} error(s))"
        ) from exc


class AttemptClient:
    """Thin wrapper around the attempts HTTP API."""

    def __init__(
        self,
        base_url: str = settings.ATTEMPT_SERVICE_URL,
        token: str | None = None,
        *,
        timeout: float = settings.ATTEMPT_SERVICE_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._base = base_url.rstrip("/")
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._http = httpx.Client(
            base_url=self._base, headers=headers, timeout=timeout, transport=transport
        )

    def _request(
        self, method: str, url: str, *, attempt_id: str | None = None, **kwargs: Any
    ) -> Any:
        try:
            r = self._http.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise PersistenceError(f"{method} {url} failed: {exc}") from exc

        if r.status_code == 409:
            logger.info("Attempt %s rejected as terminal: %s", attempt_id, _detail(r))
            raise AttemptTerminalError(attempt_id or "?")
        if r.status_code == 422:
            raise AnswerValidationError(_detail(r))
        if r.status_code == 400:
            raise AttemptIntegrityError(_detail(r))
        if r.status_code == 403 and url.rstrip("/") == "/api/attempts":
            raise AttemptLimitError(_detail(r))
        if r.status_code in (401, 403, 404):
            logger.warning("%s %s refused (%d): %s", method, url, r.status_code, _detail(r))
            raise AttemptAccessError(_detail(r))
        try:
            r.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise PersistenceError(f"{method} {url} returned {r.status_code}") from exc
        try:
            return r.json()
        except ValueError as exc:
            raise PersistenceError(f"{method} {url} returned a non-JSON body") from exc

    # ── health ────────────────────────────────────────────────────────────

    def healthy(self) -> bool:
        try:
            return self._http.get("/health").status_code == 200
        except httpx.HTTPError:
            return False

    # ── catalog ───────────────────────────────────────────────────────────

    def get_test(self, test_id: str) -> TestRead:
        return _parse(TestRead, self._request("GET", f"/api/tests/{test_id}"))

    # ── attempts ──────────────────────────────────────────────────────────

    def start_attempt(self, test_id: str) -> AttemptSession:
        data = self._request("POST", "/api/attempts/", json={"test_id": str(test_id)})
        return _parse(AttemptSession, data)

    def save_attempt_snapshot(
        self, attempt_id: str, snapshot: dict[str, Any], current_index: int = 0
    ) -> AutoSaveAck:
        data = self._request(
            "PUT",
            f"/api/attempts/{attempt_id}/autosave",
            attempt_id=attempt_id,
            json={"snapshot": snapshot, "current_index": current_index},
        )
        return _parse(AutoSaveAck, data)

    def submit_attempt(self, attempt_id: str, payload: SubmissionPayload) -> AttemptResult:
        data = self._request(
            "POST",
            f"/api/attempts/{attempt_id}/submit",
            attempt_id=attempt_id,
            json=payload.model_dump(mode="json"),
        )
        return _parse(AttemptResult, data)

    def abandon_attempt(self, attempt_id: str) -> AttemptRead:
        data = self._request(
            "POST", f"/api/attempts/{attempt_id}/abandon", attempt_id=attempt_id
        )
        return _parse(AttemptRead, data)

    def get_report(self, attempt_id: str) -> AttemptResult:
        data = self._request(
            "GET", f"/api/attempts/{attempt_id}/report", attempt_id=attempt_id
        )
        return _parse(AttemptResult, data)

    def close(self) -> None:
        self._http.close()


# ── singleton accessor ────────────────────────────────────────────────────────

_instance: AttemptClient | None = None


def get_attempt_client(token: str | None = None) -> AttemptClient:
    global _instance
    if _instance is None:
        _instance = AttemptClient(token=token)
        logger.info("Attempt client initialised → %s", _instance._base)
    return _instance
