"""Realtime session client: WebRTC negotiation plus the control-channel conversation."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import replace
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from aiortc import RTCPeerConnection, RTCSessionDescription
from aiortc.exceptions import InvalidStateError

from ..errors import (
    MalformedEventError,
    MediaAccessError,
    NegotiationTransportError,
    OfficeHoursError,
    TranscriptionFailure,
)
from ..whiteboard import Whiteboard
from . import events as ev
from .media import AudioConstraints, Microphone, open_audio_sink, open_microphone
from .relay_client import RelayClient
from .state import (
    AnswerApplied,
    ChannelOpened,
    DisplayCleared,
    InputMode,
    InputModeChanged,
    MediaGranted,
    MuteToggled,
    Phase,
    ScheduleClear,
    SendEvent,
    SessionSettings,
    SessionState,
    SetMicrophoneEnabled,
    StartFailed,
    StartRequested,
    StopRequested,
    SubmitTurn,
    TalkToggled,
    TextSubmitted,
    reduce,
)

logger = logging.getLogger(__name__)

DATA_CHANNEL_LABEL = "oai-events"

TurnSink = Callable[[str, Optional[str]], Union[None, Awaitable[None]]]
StateListener = Callable[[SessionState], None]
ErrorListener = Callable[[OfficeHoursError], None]


class Session:
    """One realtime conversation, from microphone acquisition to teardown.

    All connection resources (peer connection, data channel, microphone,
    audio sink) live on the instance. Protocol decisions are made by
    :func:`officehours.session.state.reduce`; this class only performs the
    effects it returns. A stopped session cannot be restarted.
    """

    def __init__(
        self,
        *,
        relay: Optional[RelayClient] = None,
        whiteboard: Optional[Whiteboard] = None,
        settings: Optional[SessionSettings] = None,
        constraints: AudioConstraints = AudioConstraints(),
        submit_turn: Optional[TurnSink] = None,
        on_change: Optional[StateListener] = None,
        on_error: Optional[ErrorListener] = None,
        microphone_factory: Callable[[AudioConstraints], Awaitable[Microphone]] = open_microphone,
        peer_connection_factory: Callable[[], RTCPeerConnection] = RTCPeerConnection,
        audio_sink_factory: Callable[[], Any] = open_audio_sink,
    ) -> None:
        self.relay = relay or RelayClient()
        self.whiteboard = whiteboard
        self.constraints = constraints
        self.submit_turn = submit_turn
        self.on_change = on_change
        self.on_error = on_error
        self._microphone_factory = microphone_factory
        self._peer_connection_factory = peer_connection_factory
        self._audio_sink_factory = audio_sink_factory

        self._state = SessionState(settings=settings or SessionSettings.from_config())
        self._pc: Optional[RTCPeerConnection] = None
        self._channel = None
        self._microphone: Optional[Microphone] = None
        self._audio_sink = None
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._pending: set[asyncio.Task] = set()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def microphone(self) -> Optional[Microphone]:
        return self._microphone

    # Lifecycle

    async def start(self) -> None:
        """Acquire the microphone and negotiate the realtime connection.

        Failures never escape: they move the session to ``Phase.ERROR`` with a
        readable status, after which ``start()`` may be called again.
        """
        if self._state.phase is Phase.ENDED:
            raise RuntimeError("Session has ended; create a new Session to reconnect")
        if self._state.phase not in (Phase.IDLE, Phase.ERROR):
            logger.debug("start() ignored in phase %s", self._state.phase.value)
            return

        self._dispatch(StartRequested())
        try:
            self._microphone = await self._microphone_factory(self.constraints)
        except MediaAccessError as error:
            logger.warning("Microphone unavailable: %s", error)
            await self._fail(error)
            return
        if self._state.phase is not Phase.ACQUIRING_MEDIA:
            # Stopped while the device was opening.
            await self._teardown()
            return
        self._dispatch(MediaGranted())

        try:
            await self._negotiate()
        except NegotiationTransportError as error:
            logger.warning("Relay negotiation failed: %s", error)
            await self._fail(error)
            return
        except Exception as error:
            logger.error("Session setup failed: %s", error, exc_info=True)
            await self._fail(NegotiationTransportError(str(error) or type(error).__name__))
            return

        if self._state.phase is Phase.NEGOTIATING:
            self._dispatch(AnswerApplied())
            logger.info("Realtime session connected")

    async def stop(self) -> None:
        """Cancel any reply in flight and release every transport resource. Safe to repeat."""
        self._dispatch(StopRequested())
        await self._teardown()

    # UI intents

    def toggle_mute(self) -> None:
        self._dispatch(MuteToggled())

    def toggle_talking(self) -> None:
        capture = self._state.phase is Phase.LISTENING
        self._dispatch(TalkToggled(snapshot=self.capture_snapshot() if capture else None))

    def send_text_message(self, text: str) -> None:
        if not text.strip():
            return
        self._dispatch(TextSubmitted(text=text, snapshot=self.capture_snapshot()))

    def set_input_mode(self, mode: Union[InputMode, str]) -> None:
        self._dispatch(InputModeChanged(InputMode(mode)))

    def capture_snapshot(self) -> Optional[str]:
        if self.whiteboard is None:
            return None
        try:
            return self.whiteboard.snapshot()
        except (OSError, ValueError) as error:
            logger.warning("Whiteboard snapshot failed: %s", error)
            return None

    # Negotiation

    async def _negotiate(self) -> None:
        pc = self._peer_connection_factory()
        self._pc = pc
        self._audio_sink = self._audio_sink_factory()

        @pc.on("track")
        def on_track(track) -> None:
            if track.kind != "audio" or self._audio_sink is None:
                return
            logger.info("Receiving remote audio track")
            self._audio_sink.addTrack(track)
            self._spawn(self._audio_sink.start())

        @pc.on("connectionstatechange")
        async def on_connectionstatechange() -> None:
            logger.info("Connection state: %s", pc.connectionState)

        pc.addTrack(self._microphone.track)

        channel = pc.createDataChannel(DATA_CHANNEL_LABEL)
        self._channel = channel

        @channel.on("open")
        def on_open() -> None:
            logger.info("Control channel open")
            self._dispatch(ChannelOpened())

        @channel.on("message")
        def on_message(message: Union[str, bytes]) -> None:
            self._handle_message(message)

        offer = await pc.createOffer()
        await pc.setLocalDescription(offer)

        answer_sdp = await self.relay.exchange(pc.localDescription.sdp)
        await pc.setRemoteDescription(RTCSessionDescription(sdp=answer_sdp, type="answer"))

    async def _fail(self, error: OfficeHoursError) -> None:
        self._dispatch(StartFailed(str(error)))
        self._report(error)
        await self._teardown()

    def _report(self, error: OfficeHoursError) -> None:
        if self.on_error is None:
            return
        try:
            self.on_error(error)
        except Exception:
            logger.warning("Error listener failed", exc_info=True)

    def _handle_message(self, message: Union[str, bytes]) -> None:
        try:
            event = ev.decode_event(message)
        except MalformedEventError as error:
            logger.debug("Dropping control message: %s", error)
            return
        if isinstance(event, ev.SpeechStopped) and self._state.phase is Phase.LISTENING:
            event = replace(event, snapshot=self.capture_snapshot())
        elif isinstance(event, ev.TranscriptFailed):
            logger.warning("Transcription failed: %s", event.message)
            self._report(TranscriptionFailure(event.message))
        elif isinstance(event, ev.VendorError):
            logger.warning("Realtime error: %s", event.message)
        self._dispatch(event)

    # Effects

    def _dispatch(self, event: Any) -> None:
        self._state, effects = reduce(self._state, event)
        for effect in effects:
            if isinstance(effect, SendEvent):
                self._send(effect.payload)
            elif isinstance(effect, SetMicrophoneEnabled):
                if self._microphone is not None:
                    self._microphone.track.enabled = effect.enabled
            elif isinstance(effect, SubmitTurn):
                self._submit(effect.transcript, effect.snapshot)
            elif isinstance(effect, ScheduleClear):
                self._schedule_clear(effect.target, effect.delay)
        if self.on_change is not None:
            try:
                self.on_change(self._state)
            except Exception:
                logger.warning("State listener failed", exc_info=True)

    def _send(self, payload: Dict[str, Any]) -> None:
        channel = self._channel
        if channel is None or channel.readyState != "open":
            logger.debug("Control channel not open; dropping %s", payload.get("type"))
            return
        try:
            channel.send(json.dumps(payload))
        except InvalidStateError:
            logger.debug("Control channel closed while sending %s", payload.get("type"))

    def _submit(self, transcript: str, snapshot: Optional[str]) -> None:
        if self.submit_turn is None:
            logger.debug("Turn finalized: %r (snapshot=%s)", transcript, snapshot is not None)
            return
        try:
            result = self.submit_turn(transcript, snapshot)
        except Exception as error:
            logger.warning("Turn consumer failed: %s", error, exc_info=True)
            return
        if asyncio.iscoroutine(result):
            self._spawn(result)

    def _schedule_clear(self, target: str, delay: float) -> None:
        # One pending clear per target; a newer display restarts the countdown.
        previous = self._timers.pop(target, None)
        if previous is not None:
            previous.cancel()
        loop = asyncio.get_running_loop()
        self._timers[target] = loop.call_later(delay, self._clear_display, target)

    def _clear_display(self, target: str) -> None:
        self._timers.pop(target, None)
        self._dispatch(DisplayCleared(target))

    def _spawn(self, awaitable: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(awaitable)
        self._pending.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Background session task failed: %s", task.exception())

    async def _teardown(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()

        channel, self._channel = self._channel, None
        pc, self._pc = self._pc, None
        microphone, self._microphone = self._microphone, None
        sink, self._audio_sink = self._audio_sink, None

        if channel is not None:
            try:
                channel.close()
            except Exception:
                logger.debug("Error closing control channel", exc_info=True)
        if pc is not None:
            try:
                await pc.close()
            except Exception:
                logger.debug("Error closing peer connection", exc_info=True)
        if microphone is not None:
            try:
                microphone.stop()
            except Exception:
                logger.debug("Error stopping microphone", exc_info=True)
        if sink is not None:
            try:
                await sink.stop()
            except Exception:
                logger.debug("Error stopping audio sink", exc_info=True)

        for task in list(self._pending):
            task.cancel()
