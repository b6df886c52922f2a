"""Session state machine.

``reduce(state, event)`` is a pure function returning the next state and the
list of side effects the caller must perform. It never touches the network,
the microphone or the whiteboard; the ``Session`` object does that by
interpreting the returned effects.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from ..config import Config
from . import events as ev

CONNECTED_STATUS = "Connected - press Talk"
READY_STATUS = "Ready - press Talk"


class Phase(str, Enum):
    IDLE = "idle"
    ACQUIRING_MEDIA = "acquiring_media"
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    LISTENING = "listening"
    AWAITING_RESPONSE = "awaiting_response"
    ERROR = "error"
    ENDED = "ended"


LIVE_PHASES = frozenset({Phase.CONNECTED, Phase.LISTENING, Phase.AWAITING_RESPONSE})


class InputMode(str, Enum):
    AUDIO = "audio"
    TEXT = "text"


@dataclass(frozen=True)
class SessionSettings:
    transcription_model: str = "gpt-4o-transcribe"
    transcription_language: Optional[str] = "en"
    voice: str = "ash"
    turn_detection: str = "manual"
    vad_threshold: float = 0.5
    vad_prefix_padding_ms: int = 300
    vad_silence_duration_ms: int = 500
    instructions: Optional[str] = None
    subtitle_clear_delay: float = 1.2
    transcript_display_seconds: float = 4.0

    @classmethod
    def from_config(cls) -> "SessionSettings":
        return cls(
            transcription_model=Config.TRANSCRIPTION_MODEL,
            transcription_language=Config.TRANSCRIPTION_LANGUAGE or None,
            voice=Config.REALTIME_VOICE,
            turn_detection=Config.TURN_DETECTION,
            vad_threshold=Config.VAD_THRESHOLD,
            vad_prefix_padding_ms=Config.VAD_PREFIX_PADDING_MS,
            vad_silence_duration_ms=Config.VAD_SILENCE_DURATION_MS,
            instructions=Config.instructions(),
            subtitle_clear_delay=Config.SUBTITLE_CLEAR_DELAY,
            transcript_display_seconds=Config.TRANSCRIPT_DISPLAY_SECONDS,
        )

    @property
    def manual(self) -> bool:
        return self.turn_detection != "server_vad"

    def session_update(self) -> Dict[str, Any]:
        return ev.session_update(
            transcription_model=self.transcription_model,
            transcription_language=self.transcription_language,
            voice=self.voice,
            turn_detection=self.turn_detection,
            vad_threshold=self.vad_threshold,
            vad_prefix_padding_ms=self.vad_prefix_padding_ms,
            vad_silence_duration_ms=self.vad_silence_duration_ms,
            instructions=self.instructions,
        )


@dataclass(frozen=True)
class Turn:
    """One user utterance or message and the reply it produces.

    ``transcript`` is the partial buffer fed by deltas while recording;
    ``final_transcript`` is set when the vendor reports the authoritative text
    before the turn ends. The turn is finalized when it ends, and
    ``completed`` flips exactly once, when the finalize events are emitted.
    """

    transcript: str = ""
    final_transcript: Optional[str] = None
    snapshot: Optional[str] = None
    reply_fragments: Tuple[str, ...] = ()
    recording: bool = True
    completed: bool = False


@dataclass(frozen=True)
class SessionState:
    settings: SessionSettings = field(default_factory=SessionSettings)
    phase: Phase = Phase.IDLE
    status: str = "Ready to start"
    muted: bool = False
    input_mode: InputMode = InputMode.AUDIO
    turn: Optional[Turn] = None
    subtitles: str = ""
    user_transcript: str = ""
    last_snapshot: Optional[str] = None
    log: Tuple[str, ...] = ()
    error: Optional[str] = None

    @property
    def live(self) -> bool:
        return self.phase in LIVE_PHASES

    @property
    def reply_streaming(self) -> bool:
        return self.phase is Phase.AWAITING_RESPONSE and (self.turn is None or self.turn.completed)


# Local intents


@dataclass(frozen=True)
class StartRequested:
    pass


@dataclass(frozen=True)
class MediaGranted:
    pass


@dataclass(frozen=True)
class AnswerApplied:
    pass


@dataclass(frozen=True)
class StartFailed:
    message: str


@dataclass(frozen=True)
class ChannelOpened:
    pass


@dataclass(frozen=True)
class TalkToggled:
    snapshot: Optional[str] = None


@dataclass(frozen=True)
class TextSubmitted:
    text: str
    snapshot: Optional[str] = None


@dataclass(frozen=True)
class MuteToggled:
    pass


@dataclass(frozen=True)
class InputModeChanged:
    mode: InputMode


@dataclass(frozen=True)
class StopRequested:
    pass


@dataclass(frozen=True)
class DisplayCleared:
    target: str


Intent = Union[
    StartRequested,
    MediaGranted,
    AnswerApplied,
    StartFailed,
    ChannelOpened,
    TalkToggled,
    TextSubmitted,
    MuteToggled,
    InputModeChanged,
    StopRequested,
    DisplayCleared,
]


# Effects


@dataclass(frozen=True)
class SendEvent:
    payload: Dict[str, Any]


@dataclass(frozen=True)
class SetMicrophoneEnabled:
    enabled: bool


@dataclass(frozen=True)
class SubmitTurn:
    transcript: str
    snapshot: Optional[str]


@dataclass(frozen=True)
class ScheduleClear:
    target: str
    delay: float


Effect = Union[SendEvent, SetMicrophoneEnabled, SubmitTurn, ScheduleClear]
Transition = Tuple[SessionState, List[Effect]]


def _append_log(state: SessionState, line: str) -> SessionState:
    return replace(state, log=state.log + (line,))


def _show_user_transcript(state: SessionState, text: str) -> Transition:
    if not text:
        return state, []
    state = _append_log(state, "YOU: " + text)
    state = replace(state, user_transcript=text)
    return state, [ScheduleClear("user_transcript", state.settings.transcript_display_seconds)]


def _finalize(state: SessionState, text: str) -> Transition:
    """Emit the create-item / create-response pair for the current turn, at most once."""
    turn = state.turn
    if turn is None or turn.completed:
        return state, []

    text = text.strip()
    snapshot = turn.snapshot
    if not text and not snapshot:
        return replace(state, turn=None, phase=Phase.CONNECTED, status=CONNECTED_STATUS), []

    turn = replace(turn, transcript="", final_transcript=text, recording=False, completed=True)
    state = replace(state, turn=turn, phase=Phase.AWAITING_RESPONSE, status="Processing...")
    return state, [
        SendEvent(ev.conversation_item_create(text, snapshot)),
        SendEvent(ev.response_create()),
        SubmitTurn(text, snapshot),
    ]


def _start_turn(state: SessionState, *, manual: bool) -> Transition:
    effects: List[Effect] = []
    if manual:
        if state.reply_streaming:
            effects += [SendEvent(ev.response_cancel()), SendEvent(ev.output_audio_buffer_clear())]
        effects.append(SendEvent(ev.input_audio_buffer_clear()))
    state = replace(state, turn=Turn(), phase=Phase.LISTENING, status="Listening...", subtitles="")
    return state, effects


def _end_turn(state: SessionState, snapshot: Optional[str], *, commit: bool) -> Transition:
    """Close the recording and finalize it right away.

    The text is the vendor's final transcript when it already arrived,
    otherwise whatever partial text the deltas accumulated.
    """
    turn = replace(state.turn, recording=False, snapshot=snapshot)
    state = replace(state, turn=turn, last_snapshot=snapshot)
    effects: List[Effect] = [SendEvent(ev.input_audio_buffer_commit())] if commit else []
    text = turn.final_transcript if turn.final_transcript is not None else turn.transcript
    state, more = _finalize(state, text)
    return state, effects + more


def _recording(state: SessionState) -> Optional[Turn]:
    turn = state.turn
    if state.phase is Phase.LISTENING and turn is not None and turn.recording:
        return turn
    return None


def _on_talk_toggled(state: SessionState, event: TalkToggled) -> Transition:
    if not state.live or not state.settings.manual:
        return state, []
    if _recording(state) is not None:
        return _end_turn(state, event.snapshot, commit=True)
    if state.muted or state.input_mode is not InputMode.AUDIO:
        return state, []
    return _start_turn(state, manual=True)


def _on_text_submitted(state: SessionState, event: TextSubmitted) -> Transition:
    text = event.text.strip()
    if not text or not state.live or state.input_mode is not InputMode.TEXT:
        return state, []
    if _recording(state) is not None:
        return state, []
    state, effects = _show_user_transcript(state, text)
    state = replace(state, turn=Turn(recording=False, snapshot=event.snapshot), last_snapshot=event.snapshot)
    state, more = _finalize(state, text)
    return state, effects + more


def _on_transcript_delta(state: SessionState, event: ev.TranscriptDelta) -> Transition:
    turn = _recording(state)
    if turn is None:
        return state, []
    return replace(state, turn=replace(turn, transcript=turn.transcript + event.delta)), []


def _on_transcript_completed(state: SessionState, event: ev.TranscriptCompleted) -> Transition:
    turn = _recording(state)
    partial = turn.transcript if turn is not None else ""
    final = (event.transcript or partial).strip()
    state, effects = _show_user_transcript(state, final)
    if turn is not None:
        state = replace(state, turn=replace(turn, transcript="", final_transcript=final))
    return state, effects


def _on_transcript_failed(state: SessionState, event: ev.TranscriptFailed) -> Transition:
    return _append_log(state, "TRANSCRIPTION FAILED: " + event.message), []


def _on_reply_delta(state: SessionState, event: ev.ReplyDelta) -> Transition:
    if not event.delta:
        return state, []
    turn = state.turn
    if turn is not None and turn.completed:
        turn = replace(turn, reply_fragments=turn.reply_fragments + (event.delta,))
    return replace(state, subtitles=state.subtitles + event.delta, turn=turn), []


def _on_reply_done(state: SessionState, event: ev.ReplyDone) -> Transition:
    reply = state.subtitles or (event.text or "")
    if reply:
        state = _append_log(state, "TA: " + reply)
    if state.turn is not None and state.turn.completed:
        state = replace(state, turn=None)
    if state.phase is Phase.AWAITING_RESPONSE and state.turn is None:
        state = replace(state, phase=Phase.CONNECTED, status=CONNECTED_STATUS)
    return state, [ScheduleClear("subtitles", state.settings.subtitle_clear_delay)]


def _on_speech_started(state: SessionState) -> Transition:
    if not state.live or state.settings.manual or _recording(state) is not None:
        return state, []
    return _start_turn(state, manual=False)


def _on_speech_stopped(state: SessionState, event: ev.SpeechStopped) -> Transition:
    if state.settings.manual or _recording(state) is None:
        return state, []
    return _end_turn(state, event.snapshot, commit=False)


def _on_mute_toggled(state: SessionState) -> Transition:
    if state.phase not in LIVE_PHASES | {Phase.NEGOTIATING}:
        return state, []
    muted = not state.muted
    state = replace(state, muted=muted, status="Muted" if muted else READY_STATUS)
    return state, [SetMicrophoneEnabled(not muted)]


def _on_stop(state: SessionState) -> Transition:
    if state.phase is Phase.ENDED:
        return state, []
    effects: List[Effect] = []
    if state.live:
        effects = [SendEvent(ev.response_cancel()), SendEvent(ev.output_audio_buffer_clear())]
    state = replace(
        state,
        phase=Phase.ENDED,
        status="Session ended",
        muted=False,
        turn=None,
        subtitles="",
        user_transcript="",
    )
    return state, effects


def reduce(state: SessionState, event: Union[Intent, ev.InboundEvent]) -> Transition:
    """Apply one intent or inbound control event to ``state``."""
    if isinstance(event, StartRequested):
        if state.phase not in (Phase.IDLE, Phase.ERROR):
            return state, []
        return replace(state, phase=Phase.ACQUIRING_MEDIA, status="Requesting microphone...", error=None), []
    if isinstance(event, MediaGranted):
        if state.phase is not Phase.ACQUIRING_MEDIA:
            return state, []
        return replace(state, phase=Phase.NEGOTIATING, status="Connecting..."), []
    if isinstance(event, AnswerApplied):
        if state.phase is not Phase.NEGOTIATING:
            return state, []
        return replace(state, phase=Phase.CONNECTED, status=CONNECTED_STATUS), []
    if isinstance(event, StartFailed):
        if state.phase not in (Phase.ACQUIRING_MEDIA, Phase.NEGOTIATING):
            return state, []
        return replace(
            state,
            phase=Phase.ERROR,
            status=f"Error: {event.message}",
            error=event.message,
            muted=False,
            turn=None,
        ), []
    if isinstance(event, ChannelOpened):
        if state.phase not in LIVE_PHASES | {Phase.NEGOTIATING}:
            return state, []
        if state.phase is Phase.CONNECTED:
            state = replace(state, status=CONNECTED_STATUS)
        return state, [SendEvent(state.settings.session_update())]
    if isinstance(event, TalkToggled):
        return _on_talk_toggled(state, event)
    if isinstance(event, TextSubmitted):
        return _on_text_submitted(state, event)
    if isinstance(event, MuteToggled):
        return _on_mute_toggled(state)
    if isinstance(event, InputModeChanged):
        return replace(state, input_mode=event.mode), []
    if isinstance(event, StopRequested):
        return _on_stop(state)
    if isinstance(event, DisplayCleared):
        if event.target not in ("subtitles", "user_transcript"):
            return state, []
        return replace(state, **{event.target: ""}), []

    if isinstance(event, ev.TranscriptDelta):
        return _on_transcript_delta(state, event)
    if isinstance(event, ev.TranscriptCompleted):
        return _on_transcript_completed(state, event)
    if isinstance(event, ev.TranscriptFailed):
        return _on_transcript_failed(state, event)
    if isinstance(event, ev.ReplyDelta):
        return _on_reply_delta(state, event)
    if isinstance(event, ev.ReplyDone):
        return _on_reply_done(state, event)
    if isinstance(event, ev.SpeechStarted):
        return _on_speech_started(state)
    if isinstance(event, ev.SpeechStopped):
        return _on_speech_stopped(state, event)
    if isinstance(event, ev.VendorError):
        return _append_log(state, "ERROR: " + event.message), []
    return state, []
