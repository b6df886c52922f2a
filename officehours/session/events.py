"""Realtime control-channel events.

Inbound messages are decoded into one small dataclass per event kind so the
session reducer can pattern-match on type instead of poking at dicts.
Outbound events are plain dicts built by the helpers at the bottom of this
module, ready for ``json.dumps``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from ..errors import MalformedEventError

TRANSCRIPTION_DELTA = "conversation.item.input_audio_transcription.delta"
TRANSCRIPTION_COMPLETED = "conversation.item.input_audio_transcription.completed"
TRANSCRIPTION_FAILED = "conversation.item.input_audio_transcription.failed"
SPEECH_STARTED = "input_audio_buffer.speech_started"
SPEECH_STOPPED = "input_audio_buffer.speech_stopped"

REPLY_DELTA_TYPES = frozenset({
    "response.audio_transcript.delta",
    "response.output_text.delta",
    "response.text.delta",
})
REPLY_DONE_TYPES = frozenset({
    "response.audio_transcript.done",
    "response.output_text.done",
    "response.text.done",
})


@dataclass(frozen=True)
class TranscriptDelta:
    delta: str
    item_id: Optional[str] = None


@dataclass(frozen=True)
class TranscriptCompleted:
    transcript: str
    item_id: Optional[str] = None


@dataclass(frozen=True)
class TranscriptFailed:
    message: str
    item_id: Optional[str] = None


@dataclass(frozen=True)
class ReplyDelta:
    delta: str
    kind: str


@dataclass(frozen=True)
class ReplyDone:
    kind: str
    text: Optional[str] = None


@dataclass(frozen=True)
class SpeechStarted:
    item_id: Optional[str] = None


@dataclass(frozen=True)
class SpeechStopped:
    """Server VAD decided the user stopped talking.

    ``snapshot`` is never set by the decoder; the session fills it with the
    whiteboard capture before handing the event to the reducer.
    """

    item_id: Optional[str] = None
    snapshot: Optional[str] = None


@dataclass(frozen=True)
class VendorError:
    message: str
    code: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class UnknownEvent:
    kind: str
    payload: Dict[str, Any] = field(default_factory=dict)


InboundEvent = Union[
    TranscriptDelta,
    TranscriptCompleted,
    TranscriptFailed,
    ReplyDelta,
    ReplyDone,
    SpeechStarted,
    SpeechStopped,
    VendorError,
    UnknownEvent,
]


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _error_message(payload: Dict[str, Any]) -> tuple[str, Optional[str]]:
    error = payload.get("error")
    if isinstance(error, dict):
        return _text(error.get("message")) or json.dumps(error), error.get("code")
    if isinstance(error, str):
        return error, None
    return json.dumps(payload), None


def decode_event(raw: Union[str, bytes]) -> InboundEvent:
    """Decode one data-channel message.

    Raises:
        MalformedEventError: when the message is not a JSON object with a string ``type``.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as error:
            raise MalformedEventError("Control message is not UTF-8") from error

    try:
        payload = json.loads(raw)
    except (TypeError, ValueError) as error:
        raise MalformedEventError("Control message is not valid JSON") from error

    if not isinstance(payload, dict):
        raise MalformedEventError("Control message is not a JSON object")
    kind = payload.get("type")
    if not isinstance(kind, str) or not kind:
        raise MalformedEventError("Control message has no type")

    item_id = payload.get("item_id")
    if kind == TRANSCRIPTION_DELTA:
        return TranscriptDelta(delta=_text(payload.get("delta")), item_id=item_id)
    if kind == TRANSCRIPTION_COMPLETED:
        return TranscriptCompleted(transcript=_text(payload.get("transcript")), item_id=item_id)
    if kind == TRANSCRIPTION_FAILED:
        message, _ = _error_message(payload)
        return TranscriptFailed(message=message, item_id=item_id)
    if kind in REPLY_DELTA_TYPES:
        return ReplyDelta(delta=_text(payload.get("delta")), kind=kind)
    if kind in REPLY_DONE_TYPES:
        text = payload.get("transcript", payload.get("text"))
        return ReplyDone(kind=kind, text=text if isinstance(text, str) else None)
    if kind == SPEECH_STARTED:
        return SpeechStarted(item_id=item_id)
    if kind == SPEECH_STOPPED:
        return SpeechStopped(item_id=item_id)
    if kind == "error":
        message, code = _error_message(payload)
        return VendorError(message=message, code=code, payload=payload)
    return UnknownEvent(kind=kind, payload=payload)


# Outbound events


def session_update(
    *,
    transcription_model: str,
    transcription_language: Optional[str],
    voice: str,
    turn_detection: str = "manual",
    vad_threshold: float = 0.5,
    vad_prefix_padding_ms: int = 300,
    vad_silence_duration_ms: int = 500,
    instructions: Optional[str] = None,
    modalities: tuple[str, ...] = ("text", "audio"),
) -> Dict[str, Any]:
    """Build the ``session.update`` sent once the data channel opens."""
    transcription: Dict[str, Any] = {"model": transcription_model}
    if transcription_language:
        transcription["language"] = transcription_language

    if turn_detection == "server_vad":
        detection: Optional[Dict[str, Any]] = {
            "type": "server_vad",
            "threshold": vad_threshold,
            "prefix_padding_ms": vad_prefix_padding_ms,
            "silence_duration_ms": vad_silence_duration_ms,
            "create_response": False,
            "interrupt_response": True,
        }
    else:
        detection = None

    session: Dict[str, Any] = {
        "input_audio_transcription": transcription,
        "modalities": list(modalities),
        "turn_detection": detection,
        "voice": voice,
    }
    if instructions:
        session["instructions"] = instructions
    return {"type": "session.update", "session": session}


def input_audio_buffer_clear() -> Dict[str, Any]:
    return {"type": "input_audio_buffer.clear"}


def input_audio_buffer_commit() -> Dict[str, Any]:
    return {"type": "input_audio_buffer.commit"}


def conversation_item_create(text: str, snapshot: Optional[str] = None) -> Dict[str, Any]:
    """User message carrying the turn's text and, when present, the whiteboard image."""
    content: list[Dict[str, Any]] = []
    if text:
        content.append({"type": "input_text", "text": text})
    if snapshot:
        content.append({"type": "input_image", "image_url": snapshot})
    return {
        "type": "conversation.item.create",
        "item": {"type": "message", "role": "user", "content": content},
    }


def response_create() -> Dict[str, Any]:
    return {"type": "response.create"}


def response_cancel() -> Dict[str, Any]:
    return {"type": "response.cancel"}


def output_audio_buffer_clear() -> Dict[str, Any]:
    return {"type": "output_audio_buffer.clear"}
