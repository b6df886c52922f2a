"""Stateless signaling relay.

Each POST carries one raw SDP offer. The relay mints an ephemeral realtime
credential with the server-held API key, forwards the offer with that
credential, and returns the vendor's SDP answer unchanged.
"""

__all__ = [
    "app",
    "router",
    "upstream",
]
