"""Realtime session client.

The negotiator acquires the microphone, trades an SDP offer for an answer
through the signaling relay, and then drives a turn-based conversation over
the ``oai-events`` data channel. Protocol handling is a pure reducer in
``state`` so it can be exercised without a network.
"""

__all__ = [
    "events",
    "media",
    "negotiator",
    "relay_client",
    "state",
]
