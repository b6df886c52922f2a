"""Shared fakes for session tests.

The fakes mimic the slice of aiortc's API the session touches: pyee-style
``on()`` decorators, ``readyState`` on the data channel and the
offer/answer coroutines on the peer connection.
"""

from __future__ import annotations

import json
from typing import Any, Callable, Dict, List, Optional

import pytest
from aiortc import RTCSessionDescription
from aiortc.exceptions import InvalidStateError

from officehours.errors import MediaAccessError, NegotiationTransportError
from officehours.session.media import AudioConstraints
from officehours.session.negotiator import Session
from officehours.session.state import SessionSettings
from officehours.whiteboard import Whiteboard

OFFER_SDP = "v=0\r\no=- 1 1 IN IP4 127.0.0.1\r\ns=offer\r\nt=0 0\r\n"
ANSWER_SDP = "v=0\r\no=- 2 2 IN IP4 127.0.0.1\r\ns=answer\r\nt=0 0\r\n"


class FakeEmitter:
    def __init__(self) -> None:
        self._handlers: Dict[str, List[Callable[..., Any]]] = {}

    def on(self, event: str, handler: Optional[Callable[..., Any]] = None):
        def register(fn: Callable[..., Any]) -> Callable[..., Any]:
            self._handlers.setdefault(event, []).append(fn)
            return fn

        return register if handler is None else register(handler)

    def emit(self, event: str, *args: Any) -> None:
        for handler in self._handlers.get(event, []):
            handler(*args)


class FakeDataChannel(FakeEmitter):
    def __init__(self, label: str) -> None:
        super().__init__()
        self.label = label
        self.readyState = "connecting"
        self.sent: List[Dict[str, Any]] = []

    def send(self, data: str) -> None:
        if self.readyState != "open":
            raise InvalidStateError("channel not open")
        self.sent.append(json.loads(data))

    def close(self) -> None:
        self.readyState = "closed"

    def open(self) -> None:
        self.readyState = "open"
        self.emit("open")

    def deliver(self, payload: Any) -> None:
        self.emit("message", payload if isinstance(payload, (str, bytes)) else json.dumps(payload))

    @property
    def sent_types(self) -> List[str]:
        return [event["type"] for event in self.sent]


class FakePeerConnection(FakeEmitter):
    def __init__(self) -> None:
        super().__init__()
        self.tracks: List[Any] = []
        self.channel: Optional[FakeDataChannel] = None
        self.localDescription: Optional[RTCSessionDescription] = None
        self.remoteDescription: Optional[RTCSessionDescription] = None
        self.connectionState = "new"
        self.closed = False

    def addTrack(self, track: Any) -> None:
        self.tracks.append(track)

    def createDataChannel(self, label: str) -> FakeDataChannel:
        self.channel = FakeDataChannel(label)
        return self.channel

    async def createOffer(self) -> RTCSessionDescription:
        return RTCSessionDescription(sdp=OFFER_SDP, type="offer")

    async def setLocalDescription(self, description: RTCSessionDescription) -> None:
        self.localDescription = description

    async def setRemoteDescription(self, description: RTCSessionDescription) -> None:
        if self.closed:
            raise InvalidStateError("RTCPeerConnection is closed")
        self.remoteDescription = description

    async def close(self) -> None:
        self.closed = True
        if self.channel is not None:
            self.channel.close()


class FakeTrack:
    kind = "audio"

    def __init__(self) -> None:
        self.enabled = True
        self.stopped = False

    def stop(self) -> None:
        self.stopped = True


class FakeMicrophone:
    def __init__(self) -> None:
        self.track = FakeTrack()

    def stop(self) -> None:
        self.track.stop()


class FakeSink:
    def __init__(self) -> None:
        self.tracks: List[Any] = []
        self.started = False
        self.stopped = False

    def addTrack(self, track: Any) -> None:
        self.tracks.append(track)

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.stopped = True


class FakeRelay:
    def __init__(self, answer: str = ANSWER_SDP, error: Optional[Exception] = None) -> None:
        self.answer = answer
        self.error = error
        self.offers: List[str] = []

    async def exchange(self, offer_sdp: str) -> str:
        self.offers.append(offer_sdp)
        if self.error is not None:
            raise self.error
        return self.answer


class Harness:
    """Builds a Session wired to fakes and keeps handles on what it created."""

    def __init__(self, *, whiteboard: Optional[Whiteboard] = None, settings: Optional[SessionSettings] = None) -> None:
        self.relay = FakeRelay()
        self.peer_connections: List[FakePeerConnection] = []
        self.microphones: List[FakeMicrophone] = []
        self.sinks: List[FakeSink] = []
        self.constraints: List[AudioConstraints] = []
        self.turns: List[tuple] = []
        self.microphone_error: Optional[MediaAccessError] = None
        self.errors: List[Exception] = []
        self.session = Session(
            relay=self.relay,
            whiteboard=whiteboard,
            settings=settings or SessionSettings(instructions=None),
            submit_turn=lambda transcript, snapshot: self.turns.append((transcript, snapshot)),
            on_error=self.errors.append,
            microphone_factory=self._open_microphone,
            peer_connection_factory=self._new_peer_connection,
            audio_sink_factory=self._new_sink,
        )

    async def _open_microphone(self, constraints: AudioConstraints) -> FakeMicrophone:
        self.constraints.append(constraints)
        if self.microphone_error is not None:
            raise self.microphone_error
        microphone = FakeMicrophone()
        self.microphones.append(microphone)
        return microphone

    def _new_peer_connection(self) -> FakePeerConnection:
        pc = FakePeerConnection()
        self.peer_connections.append(pc)
        return pc

    def _new_sink(self) -> FakeSink:
        sink = FakeSink()
        self.sinks.append(sink)
        return sink

    @property
    def pc(self) -> FakePeerConnection:
        return self.peer_connections[-1]

    @property
    def channel(self) -> FakeDataChannel:
        return self.pc.channel

    def fail_relay(self, message: str = "WebRTC negotiation failed") -> None:
        self.relay.error = NegotiationTransportError(message)

    async def connect(self) -> Session:
        await self.session.start()
        self.channel.open()
        return self.session


@pytest.fixture
def harness() -> Harness:
    return Harness(whiteboard=Whiteboard())


@pytest.fixture
def bare_harness() -> Harness:
    """Harness without a whiteboard, so turns carry no snapshot."""
    return Harness()


@pytest.fixture
def make_harness() -> Callable[..., Harness]:
    return Harness
