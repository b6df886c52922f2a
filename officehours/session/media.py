"""Microphone capture and remote audio playback for the session client."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Union

import av
import numpy as np
from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaBlackhole, MediaPlayer, MediaRecorder
from av import AudioFrame

from ..config import Config
from ..errors import MediaAccessError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AudioConstraints:
    """Capture settings requested for the microphone.

    The processing flags mirror what browsers expose. FFmpeg capture has no
    generic switch for them, so they are forwarded as a request: point
    ``MICROPHONE_DEVICE`` at a processed source (for example PulseAudio's
    echo-cancel source) to honour them.
    """

    echo_cancellation: bool = True
    noise_suppression: bool = True
    auto_gain_control: bool = True
    sample_rate: int = 48000
    channels: int = 1

    def player_options(self) -> Dict[str, str]:
        return {"sample_rate": str(self.sample_rate), "channels": str(self.channels)}


class MutableAudioTrack(MediaStreamTrack):
    """Wraps the microphone track so it can be muted without renegotiation.

    While ``enabled`` is False every frame is replaced by silence of the
    same shape, timing and format.
    """

    kind = "audio"

    def __init__(self, source: MediaStreamTrack) -> None:
        super().__init__()
        self._source = source
        self.enabled = True

    async def recv(self) -> AudioFrame:
        frame = await self._source.recv()
        if self.enabled:
            return frame

        silence = np.zeros_like(frame.to_ndarray())
        muted = AudioFrame.from_ndarray(silence, format=frame.format.name, layout=frame.layout.name)
        muted.sample_rate = frame.sample_rate
        muted.pts = frame.pts
        muted.time_base = frame.time_base
        return muted

    def stop(self) -> None:
        super().stop()
        self._source.stop()


class Microphone:
    """An acquired capture device and the mutable track fed from it."""

    def __init__(self, player: MediaPlayer, track: MutableAudioTrack) -> None:
        self.player = player
        self.track = track

    def stop(self) -> None:
        self.track.stop()


async def open_microphone(
    constraints: AudioConstraints,
    *,
    device: str = Config.MICROPHONE_DEVICE,
    format: Optional[str] = Config.MICROPHONE_FORMAT,
) -> Microphone:
    """Open the configured capture device.

    Raises:
        MediaAccessError: the device is missing, busy or produced no audio stream.
    """
    logger.debug(
        "Opening microphone %s (%s) echo_cancellation=%s noise_suppression=%s auto_gain_control=%s",
        device,
        format or "auto",
        constraints.echo_cancellation,
        constraints.noise_suppression,
        constraints.auto_gain_control,
    )
    try:
        player = MediaPlayer(device, format=format, options=constraints.player_options())
    except (OSError, av.error.FFmpegError) as error:
        raise MediaAccessError(f"Microphone unavailable: {error}") from error

    if player.audio is None:
        raise MediaAccessError("No microphone audio track available")
    return Microphone(player, MutableAudioTrack(player.audio))


AudioSink = Union[MediaRecorder, MediaBlackhole]


def open_audio_sink(
    target: Optional[str] = Config.AUDIO_OUTPUT,
    format: Optional[str] = Config.AUDIO_OUTPUT_FORMAT,
) -> AudioSink:
    """Return where remote audio is played: an output device or file, or nowhere."""
    if target:
        return MediaRecorder(target, format=format)
    return MediaBlackhole()
