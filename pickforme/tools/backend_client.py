from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from pickforme.config import settings
from pickforme.log import get_logger

logger = get_logger(__name__)


class BackendClient:
    """
    Thin transport for the recommendation backend.

    One POST per call; status handling and retries live in the dispatcher.
    Pass ``transport`` (e.g. ``httpx.MockTransport``) to stub the backend.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url or settings.backend_url
        self.timeout = timeout if timeout is not None else settings.request_timeout
        self._transport = transport

    async def post_chat(self, payload: Dict[str, Any], *, timeout: Optional[float] = None) -> httpx.Response:
        effective_timeout = timeout if timeout is not None else self.timeout
        async with httpx.AsyncClient(timeout=effective_timeout, transport=self._transport) as client:
            logger.debug("POST %s (timeout %.1fs)", self.base_url, effective_timeout)
            return await client.post(
                self.base_url,
                json=payload,
                headers={"Content-Type": "application/json", "User-Agent": "pickforme/1.0"},
            )
