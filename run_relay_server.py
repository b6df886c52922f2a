"""Entry point for the signaling relay."""

from __future__ import annotations

import uvicorn

from officehours.config import Config

if __name__ == "__main__":
    uvicorn.run("officehours.relay.app:app", host=Config.RELAY_HOST, port=Config.RELAY_PORT, reload=False)
