"""FastAPI router exposing the SDP offer/answer relay."""

from __future__ import annotations

import logging
import secrets
from typing import Callable

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..config import Config
from ..errors import ConfigurationError, RelayAuthError, RelayError
from .upstream import RealtimeUpstream

logger = logging.getLogger(__name__)
router = APIRouter(tags=["signaling"])

SDP_MEDIA_TYPE = "application/sdp"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": (
        "authorization, x-client-info, apikey, content-type, "
        "x-supabase-client-platform, x-supabase-client-platform-version, "
        "x-supabase-client-runtime, x-supabase-client-runtime-version"
    ),
    "Access-Control-Allow-Methods": "POST, OPTIONS",
}

UpstreamFactory = Callable[..., RealtimeUpstream]


class ErrorResponse(BaseModel):
    """JSON body returned for every failed negotiation."""

    error: str


def get_upstream_factory() -> UpstreamFactory:
    """Dependency returning the callable that builds the vendor client for one request."""
    return RealtimeUpstream


def _error_response(message: str, status_code: int) -> JSONResponse:
    return JSONResponse(
        ErrorResponse(error=message).model_dump(),
        status_code=status_code,
        headers=CORS_HEADERS,
    )


def _check_client_key(request: Request) -> None:
    expected = Config.RELAY_API_KEY
    if not expected:
        return
    provided = request.headers.get("apikey", "")
    if not secrets.compare_digest(provided.encode(), expected.encode()):
        raise RelayAuthError("Invalid or missing apikey header")


@router.options(Config.RELAY_PATH)
async def preflight() -> Response:
    """Answer CORS preflight without touching the vendor."""
    return Response(status_code=200, headers=CORS_HEADERS)


@router.post(Config.RELAY_PATH)
async def negotiate(
    request: Request,
    upstream_factory: UpstreamFactory = Depends(get_upstream_factory),
) -> Response:
    """Trade the raw SDP offer in the body for the vendor's raw SDP answer."""
    try:
        _check_client_key(request)

        api_key = Config.upstream_api_key()
        if not api_key:
            raise ConfigurationError("OpenAI API key not configured")

        offer_sdp = (await request.body()).decode("utf-8")
        upstream = upstream_factory(api_key=api_key)
        answer_sdp = await upstream.negotiate(offer_sdp)
        logger.info("Relayed SDP answer (%d bytes)", len(answer_sdp))
        return Response(content=answer_sdp, media_type=SDP_MEDIA_TYPE, headers=CORS_HEADERS)
    except RelayError as error:
        logger.error("Negotiation failed (%d): %s", error.status_code, error.message)
        return _error_response(error.message, error.status_code)
    except Exception as error:
        logger.error("Session error: %s", error, exc_info=True)
        return _error_response(str(error) or "Internal server error", 500)
