"""Standalone FastAPI app that serves the signaling relay."""

from __future__ import annotations

import logging

from fastapi import FastAPI

from ..config import Config
from .router import router

logging.basicConfig(level=logging.INFO, format="%(levelname)-8s | %(message)s")

app = FastAPI(title=f"{Config.SITE_NAME} Signaling Relay")
app.include_router(router)


@app.get("/healthz")
async def health() -> dict[str, object]:
    return {"status": "ok", "upstream_configured": Config.upstream_api_key() is not None}
