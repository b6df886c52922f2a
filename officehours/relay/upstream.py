"""Client for the vendor's realtime session and WebRTC negotiation endpoints."""

from __future__ import annotations

import logging
from typing import Optional

import aiohttp
from pydantic import BaseModel, ValidationError

from ..config import Config
from ..errors import UpstreamNegotiationError, UpstreamSessionError

logger = logging.getLogger(__name__)


class ClientSecret(BaseModel):
    value: Optional[str] = None
    expires_at: Optional[int] = None


class RealtimeSessionGrant(BaseModel):
    """Subset of the vendor's ``/realtime/sessions`` response we rely on."""

    id: Optional[str] = None
    model: Optional[str] = None
    client_secret: Optional[ClientSecret] = None

    @property
    def ephemeral_key(self) -> Optional[str]:
        if self.client_secret is None:
            return None
        return self.client_secret.value or None


class RealtimeUpstream:
    """Exchanges one SDP offer for one SDP answer with the realtime vendor.

    The long-lived ``api_key`` is only ever sent to the session-mint endpoint;
    the SDP exchange uses the ephemeral key returned by that call.
    """

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = Config.OPENAI_BASE_URL,
        model: str = Config.REALTIME_MODEL,
        voice: str = Config.REALTIME_VOICE,
        timeout: float = Config.UPSTREAM_TIMEOUT,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.voice = voice
        self.timeout = timeout

    async def negotiate(self, offer_sdp: str) -> str:
        """Mint an ephemeral credential and use it to trade ``offer_sdp`` for an answer."""
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout)) as session:
            ephemeral_key = await self.create_ephemeral_key(session)
            return await self.exchange_sdp(session, ephemeral_key, offer_sdp)

    async def create_ephemeral_key(self, session: aiohttp.ClientSession) -> str:
        url = f"{self.base_url}/realtime/sessions"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        async with session.post(url, headers=headers, json={"model": self.model, "voice": self.voice}) as resp:
            if not resp.ok:
                body = await resp.text()
                logger.error("OpenAI session error (%d): %s", resp.status, body)
                raise UpstreamSessionError("Failed to create OpenAI session", detail=body)
            try:
                grant = RealtimeSessionGrant.model_validate(await resp.json(content_type=None))
            except (ValueError, ValidationError) as error:
                logger.error("OpenAI session response was not usable: %s", error)
                raise UpstreamSessionError("Failed to create OpenAI session") from error

        ephemeral_key = grant.ephemeral_key
        if not ephemeral_key:
            raise UpstreamSessionError("No ephemeral key returned")
        logger.debug("Minted ephemeral realtime session %s", grant.id)
        return ephemeral_key

    async def exchange_sdp(self, session: aiohttp.ClientSession, ephemeral_key: str, offer_sdp: str) -> str:
        url = f"{self.base_url}/realtime"
        headers = {
            "Authorization": f"Bearer {ephemeral_key}",
            "Content-Type": "application/sdp",
        }
        async with session.post(url, params={"model": self.model}, headers=headers, data=offer_sdp) as resp:
            body = await resp.text()
            if not resp.ok:
                logger.error("OpenAI RTC error (%d): %s", resp.status, body)
                raise UpstreamNegotiationError("WebRTC negotiation failed", detail=body)

        if not body.strip():
            raise UpstreamNegotiationError("WebRTC negotiation returned an empty answer")
        return body
