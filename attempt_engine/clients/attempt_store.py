"""Remote attempt store client. Every failure surfaces as AttemptStoreError."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Protocol

import httpx
from pydantic import ValidationError

from attempt_engine.core.app_exceptions import AttemptStoreError
from attempt_engine.core.config import settings
from attempt_engine.schemas.attempt import (
    AnswerSyncPayload,
    AttemptPayload,
    AttemptResult,
    StartedAttempt,
)

logger = logging.getLogger(__name__)


class AttemptStore(Protocol):
    """Remote persistence for attempts, answers, submissions and results."""

    async def load_attempt(self, attempt_id: str) -> AttemptPayload: ...

    async def start_attempt(self, attempt_id: str) -> datetime: ...

    async def save_answer(self, attempt_id: str, payload: AnswerSyncPayload) -> None: ...

    async def submit_attempt(self, attempt_id: str) -> None: ...

    async def fetch_results(self, attempt_id: str) -> AttemptResult | None: ...


class HttpAttemptStore:
    """
    JSON-over-HTTP attempt store.

    Endpoints (relative to ATTEMPT_STORE_URL):
        GET  /attempts/{id}
        POST /attempts/{id}/start
        PUT  /attempts/{id}/answers/{question_id}
        POST /attempts/{id}/submit
        GET  /attempts/{id}/result
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if client is None:
            base = (base_url or settings.ATTEMPT_STORE_URL).rstrip("/")
            client = httpx.AsyncClient(
                base_url=base,
                timeout=timeout if timeout is not None else settings.ATTEMPT_STORE_TIMEOUT_SECONDS,
            )
        self._client = client

    async def aclose(self) -> None:
        await self._client.aclose()

    async def load_attempt(self, attempt_id: str) -> AttemptPayload:
        data = await self._request("GET", f"/attempts/{attempt_id}")
        try:
            return AttemptPayload.model_validate(data)
        except ValidationError as e:
            raise AttemptStoreError(
                "Attempt payload is malformed",
                details={"attempt_id": attempt_id, "errors": e.errors(include_url=False)},
            ) from e

    async def start_attempt(self, attempt_id: str) -> datetime:
        data = await self._request("POST", f"/attempts/{attempt_id}/start")
        try:
            return StartedAttempt.model_validate(data).started_at
        except ValidationError as e:
            raise AttemptStoreError("Start response has no startedAt", details={"attempt_id": attempt_id}) from e

    async def save_answer(self, attempt_id: str, payload: AnswerSyncPayload) -> None:
        await self._request(
            "PUT",
            f"/attempts/{attempt_id}/answers/{payload.question_id}",
            json=payload.model_dump(by_alias=True, exclude_none=True),
        )

    async def submit_attempt(self, attempt_id: str) -> None:
        # 409 means the store already holds a submission for this attempt.
        await self._request("POST", f"/attempts/{attempt_id}/submit", accept=(409,))

    async def fetch_results(self, attempt_id: str) -> AttemptResult | None:
        """Return the result, or None while scoring is pending (202 or status=pending)."""
        data = await self._request("GET", f"/attempts/{attempt_id}/result", accept=(202,))
        if not data or data.get("status") == "pending":
            return None
        try:
            return AttemptResult.model_validate(data)
        except ValidationError as e:
            raise AttemptStoreError("Result payload is malformed", details={"attempt_id": attempt_id}) from e

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        accept: tuple[int, ...] = (),
    ) -> dict[str, Any] | None:
        try:
            resp = await self._client.request(method, path, json=json)
        except httpx.HTTPError as e:
            logger.warning("Attempt store %s %s failed: %s", method, path, e)
            raise AttemptStoreError(f"Attempt store unreachable: {e}") from e

        if resp.status_code in accept:
            logger.debug("Attempt store %s %s returned %d", method, path, resp.status_code)
            return None
        if resp.is_error:
            logger.warning("Attempt store %s %s returned %d", method, path, resp.status_code)
            raise AttemptStoreError(
                f"Attempt store returned {resp.status_code}",
                details={"method": method, "path": path, "status": resp.status_code},
            )
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise AttemptStoreError("Attempt store returned invalid JSON") from e
