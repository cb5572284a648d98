from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from ..core.errors import UpstreamUnavailableError


logger = logging.getLogger(__name__)


class ChatRelay:
    """Forwards chat completion payloads to the configured provider as-is."""

    def __init__(
        self,
        url: str,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url = url
        self._api_key = api_key
        self.timeout = timeout
        self._transport = transport

    async def complete(self, payload: dict[str, Any]) -> Any:
        """Return the provider's JSON body.

        Any response below 500 with a JSON body counts as a reply, including
        provider-side 4xx errors; callers always see it as a success.
        """
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(self.url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("ai.relay.failed", extra={"reason": type(exc).__name__})
            raise UpstreamUnavailableError("Failed to connect to AI service") from exc

        if response.status_code >= 500:
            logger.warning(
                "ai.relay.failed",
                extra={"reason": "upstream_error", "status_code": response.status_code},
            )
            raise UpstreamUnavailableError("Failed to connect to AI service")

        try:
            data = response.json()
        except ValueError as exc:
            logger.warning("ai.relay.failed", extra={"reason": "invalid_json"})
            raise UpstreamUnavailableError("Failed to connect to AI service") from exc

        if response.status_code >= 400:
            logger.info("ai.relay.upstream_rejected", extra={"status_code": response.status_code})
        return data
