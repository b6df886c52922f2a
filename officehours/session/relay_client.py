"""HTTP client that posts the local SDP offer to the signaling relay."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Optional

import aiohttp

from ..config import Config
from ..errors import NegotiationTransportError

logger = logging.getLogger(__name__)


def _error_text(body: str) -> str:
    """Pull ``error`` out of the relay's JSON error body, or return the body as-is."""
    try:
        payload = json.loads(body)
    except ValueError:
        return body
    if isinstance(payload, dict) and isinstance(payload.get("error"), str):
        return payload["error"]
    return body


class RelayClient:
    """Posts a raw SDP offer and returns the raw SDP answer."""

    def __init__(
        self,
        *,
        url: str = Config.RELAY_URL,
        api_key: Optional[str] = Config.RELAY_API_KEY,
        timeout: float = Config.UPSTREAM_TIMEOUT,
    ) -> None:
        self.url = url
        self.api_key = api_key
        self.timeout = timeout

    async def exchange(self, offer_sdp: str) -> str:
        """Return the answer SDP for ``offer_sdp``.

        Raises:
            NegotiationTransportError: the relay is unreachable, answered non-2xx, or sent an empty body.
        """
        headers = {"Content-Type": "application/sdp"}
        if self.api_key:
            headers["apikey"] = self.api_key

        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout)) as session:
                async with session.post(self.url, data=offer_sdp, headers=headers) as resp:
                    body = await resp.text()
                    if not resp.ok:
                        logger.warning("Relay rejected offer (%d): %s", resp.status, body)
                        raise NegotiationTransportError(_error_text(body) or f"Relay returned HTTP {resp.status}")
        except aiohttp.ClientError as error:
            raise NegotiationTransportError(f"Relay unreachable: {error}") from error
        except asyncio.TimeoutError as error:
            raise NegotiationTransportError("Relay timed out") from error

        if not body.strip():
            raise NegotiationTransportError("Relay returned an empty answer")
        return body
