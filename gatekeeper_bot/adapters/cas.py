from __future__ import annotations

from typing import Optional

import httpx
import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..models import GatekeeperError
from .base import ReputationChecker

logger = structlog.get_logger(__name__)


class ReputationError(GatekeeperError):
    pass


class CASReputationChecker(ReputationChecker):
    """
    Combot Anti-Spam lookup.

    `GET /check?user_id=<id>` answers `{"ok": true, "result": {...}}` for banned
    users and `{"ok": false, "description": "Record not found."}` otherwise.
    """

    def __init__(
        self,
        *,
        base_url: str = "https://api.cas.chat",
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout)
        self._owns_client = client is None

    async def is_banned(self, user_id: int) -> bool:
        retry = AsyncRetrying(
            wait=wait_exponential(multiplier=0.2, min=0.2, max=2.0),
            stop=stop_after_attempt(3),
            retry=retry_if_exception_type((httpx.TimeoutException, httpx.TransportError)),
            reraise=True,
        )
        async for attempt in retry:
            with attempt:
                logger.debug("cas_request", user_id=user_id, attempt=attempt.retry_state.attempt_number)
                response = await self._client.get("/check", params={"user_id": user_id})
                if response.status_code >= 400:
                    raise ReputationError(f"CAS error: {response.status_code} {response.text}")
                data = response.json()
                banned = bool(data.get("ok"))
                if banned:
                    logger.info("cas_user_banned", user_id=user_id, offenses=(data.get("result") or {}).get("offenses"))
                return banned
        raise ReputationError("Retry exhausted")

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
