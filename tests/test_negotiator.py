"""Tests for the realtime Session against fake WebRTC and relay collaborators."""

import asyncio

import pytest

from officehours.errors import MediaAccessError, NegotiationTransportError, TranscriptionFailure
from officehours.session.state import CONNECTED_STATUS, InputMode, Phase, SessionSettings
from officehours.whiteboard import Whiteboard

from conftest import ANSWER_SDP, OFFER_SDP


async def test_start_negotiates_through_relay(harness) -> None:
    """Test a successful start applies the relay's answer and attaches the microphone."""
    await harness.session.start()

    state = harness.session.state
    assert state.phase is Phase.CONNECTED
    assert state.status == CONNECTED_STATUS
    assert harness.relay.offers == [OFFER_SDP]
    assert harness.pc.remoteDescription.sdp == ANSWER_SDP
    assert harness.pc.remoteDescription.type == "answer"
    assert harness.pc.tracks == [harness.microphones[0].track]
    assert harness.channel.label == "oai-events"


async def test_start_requests_audio_processing(harness) -> None:
    """Test the microphone is requested with echo cancellation, noise suppression and AGC."""
    await harness.session.start()

    constraints = harness.constraints[0]
    assert constraints.echo_cancellation is True
    assert constraints.noise_suppression is True
    assert constraints.auto_gain_control is True


async def test_channel_open_sends_session_update(harness) -> None:
    """Test the configuration event is the first thing sent on the control channel."""
    await harness.connect()

    update = harness.channel.sent[0]
    assert update["type"] == "session.update"
    assert update["session"]["turn_detection"] is None
    assert update["session"]["voice"] == "ash"
    assert update["session"]["modalities"] == ["text", "audio"]
    assert update["session"]["input_audio_transcription"] == {"model": "gpt-4o-transcribe", "language": "en"}


async def test_microphone_denied_surfaces_error(harness) -> None:
    """Test a denied microphone stops the attempt before any peer connection exists."""
    harness.microphone_error = MediaAccessError("Permission denied")

    await harness.session.start()

    state = harness.session.state
    assert state.phase is Phase.ERROR
    assert state.status == "Error: Permission denied"
    assert harness.peer_connections == []
    assert harness.errors == [harness.microphone_error]


async def test_relay_failure_releases_resources(harness) -> None:
    """Test a relay error moves to ERROR and closes what was already opened."""
    harness.fail_relay("Failed to create OpenAI session")

    await harness.session.start()

    state = harness.session.state
    assert state.phase is Phase.ERROR
    assert state.status == "Error: Failed to create OpenAI session"
    assert harness.pc.closed is True
    assert harness.microphones[0].track.stopped is True


async def test_retry_after_error_builds_fresh_connection(harness) -> None:
    """Test start() can be invoked again after a failed attempt."""
    harness.fail_relay()
    await harness.session.start()
    harness.relay.error = None

    await harness.session.start()

    assert harness.session.state.phase is Phase.CONNECTED
    assert len(harness.peer_connections) == 2
    assert harness.peer_connections[0].closed is True
    assert harness.peer_connections[1].closed is False


async def test_start_twice_keeps_single_peer_connection(harness) -> None:
    """Test a second start on a live session is ignored."""
    await harness.connect()
    await harness.session.start()

    assert len(harness.peer_connections) == 1


async def test_remote_audio_goes_to_sink(harness) -> None:
    """Test the remote audio track is attached to the playback sink."""
    await harness.session.start()

    class RemoteTrack:
        kind = "audio"

    track = RemoteTrack()
    harness.pc.emit("track", track)

    assert harness.sinks[0].tracks == [track]


async def test_mute_twice_restores_track(harness) -> None:
    """Test toggling mute twice returns the microphone track to its original state."""
    await harness.connect()
    track = harness.microphones[0].track
    original = track.enabled

    harness.session.toggle_mute()
    assert track.enabled is not original
    assert harness.session.state.status == "Muted"

    harness.session.toggle_mute()
    assert track.enabled is original
    assert harness.session.state.muted is False


async def test_whitespace_text_is_noop(harness) -> None:
    """Test a whitespace-only message emits nothing."""
    await harness.connect()
    harness.session.set_input_mode("text")
    sent_before = list(harness.channel.sent)

    harness.session.send_text_message("   \n\t")

    assert harness.channel.sent == sent_before
    assert harness.turns == []


async def test_text_message_sends_finalize_pair(harness) -> None:
    """Test typed text goes out as create-item then create-response with the whiteboard."""
    await harness.connect()
    harness.session.set_input_mode(InputMode.TEXT)

    harness.session.send_text_message("  What is a derivative?  ")

    assert harness.channel.sent_types[1:] == ["conversation.item.create", "response.create"]
    content = harness.channel.sent[1]["item"]["content"]
    assert content[0] == {"type": "input_text", "text": "What is a derivative?"}
    assert content[1]["type"] == "input_image"
    assert content[1]["image_url"].startswith("data:image/jpeg;base64,")
    assert harness.turns[0][0] == "What is a derivative?"
    assert harness.session.state.user_transcript == "What is a derivative?"
    assert harness.session.state.log[-1] == "YOU: What is a derivative?"


async def test_manual_turn_cycle(harness) -> None:
    """Test talk/stop sends the turn at turn end and a later transcript only updates the display."""
    await harness.connect()
    session = harness.session
    channel = harness.channel

    session.toggle_talking()
    assert session.state.phase is Phase.LISTENING
    assert channel.sent_types[-1] == "input_audio_buffer.clear"

    channel.deliver({"type": "conversation.item.input_audio_transcription.delta", "delta": "Hel"})
    channel.deliver({"type": "conversation.item.input_audio_transcription.delta", "delta": "lo"})
    session.toggle_talking()

    assert channel.sent_types[-3:] == ["input_audio_buffer.commit", "conversation.item.create", "response.create"]
    assert channel.sent[-2]["item"]["content"][0]["text"] == "Hello"
    assert channel.sent[-2]["item"]["content"][1]["type"] == "input_image"
    assert session.state.phase is Phase.AWAITING_RESPONSE
    assert session.state.last_snapshot is not None
    assert harness.turns[0][0] == "Hello"

    channel.deliver({"type": "conversation.item.input_audio_transcription.completed", "transcript": "Hello world"})

    assert session.state.user_transcript == "Hello world"
    assert channel.sent_types.count("conversation.item.create") == 1


async def test_rejected_commit_keeps_session_usable(harness) -> None:
    """Test a vendor error after a commit leaves talk and text working."""
    await harness.connect()
    session = harness.session
    channel = harness.channel

    session.toggle_talking()
    channel.deliver({"type": "conversation.item.input_audio_transcription.delta", "delta": "Hel"})
    session.toggle_talking()
    channel.deliver({
        "type": "error",
        "error": {"code": "input_audio_buffer_commit_empty", "message": "Buffer too small"},
    })

    session.toggle_talking()
    assert session.state.phase is Phase.LISTENING
    session.toggle_talking()

    session.set_input_mode("text")
    session.send_text_message("hello?")

    assert channel.sent_types.count("conversation.item.create") == 3
    assert channel.sent[-2]["item"]["content"][0] == {"type": "input_text", "text": "hello?"}


async def test_empty_turn_without_snapshot_sends_nothing(bare_harness) -> None:
    """Test finalizing with no transcript and no whiteboard is a no-op."""
    await bare_harness.connect()
    session = bare_harness.session
    channel = bare_harness.channel

    session.toggle_talking()
    session.toggle_talking()
    channel.deliver({"type": "conversation.item.input_audio_transcription.completed", "transcript": ""})

    assert "conversation.item.create" not in channel.sent_types
    assert "response.create" not in channel.sent_types
    assert session.state.phase is Phase.CONNECTED
    assert bare_harness.turns == []


async def test_reply_streams_into_subtitles(harness) -> None:
    """Test reply deltas build the subtitle and done returns to idle-within-turn."""
    await harness.connect()
    harness.session.set_input_mode("text")
    harness.session.send_text_message("hi")
    channel = harness.channel

    channel.deliver({"type": "response.audio_transcript.delta", "delta": "Let's "})
    channel.deliver({"type": "response.audio_transcript.delta", "delta": "look."})
    assert harness.session.state.subtitles == "Let's look."

    channel.deliver({"type": "response.audio_transcript.done", "transcript": "Let's look."})
    state = harness.session.state
    assert state.phase is Phase.CONNECTED
    assert state.log[-1] == "TA: Let's look."


async def test_malformed_messages_are_ignored(harness) -> None:
    """Test garbage on the control channel never disturbs the session."""
    await harness.connect()
    before = harness.session.state

    for raw in ("not json", "[1, 2]", '{"no_type": true}', b"\xff\xfe"):
        harness.channel.deliver(raw)

    assert harness.session.state == before


async def test_transcription_failure_is_logged(harness) -> None:
    """Test a failed transcription is logged without ending the session."""
    await harness.connect()

    harness.channel.deliver({
        "type": "conversation.item.input_audio_transcription.failed",
        "error": {"message": "audio too short"},
    })

    state = harness.session.state
    assert state.phase is Phase.CONNECTED
    assert state.log[-1] == "TRANSCRIPTION FAILED: audio too short"
    assert len(harness.errors) == 1
    assert isinstance(harness.errors[0], TranscriptionFailure)
    assert str(harness.errors[0]) == "audio too short"


async def test_unexpected_setup_error_is_reported_as_transport_error(harness) -> None:
    """Test an unexpected setup failure still lands in ERROR with a readable status."""
    harness.relay.error = RuntimeError("no codecs")

    await harness.session.start()

    assert harness.session.state.phase is Phase.ERROR
    assert harness.session.state.status == "Error: no codecs"
    assert harness.pc.closed is True
    assert isinstance(harness.errors[-1], NegotiationTransportError)


async def test_stop_cancels_then_tears_down(harness) -> None:
    """Test stop sends best-effort cancellation before closing transport."""
    await harness.connect()
    channel = harness.channel

    await harness.session.stop()

    assert channel.sent_types[-2:] == ["response.cancel", "output_audio_buffer.clear"]
    assert channel.readyState == "closed"
    assert harness.pc.closed is True
    assert harness.microphones[0].track.stopped is True
    assert harness.sinks[0].stopped is True
    assert harness.session.state.phase is Phase.ENDED
    assert harness.session.state.status == "Session ended"


async def test_stop_twice_is_safe(harness) -> None:
    """Test a second stop after teardown does not raise."""
    await harness.connect()

    await harness.session.stop()
    await harness.session.stop()

    assert harness.session.state.phase is Phase.ENDED


async def test_stop_with_channel_already_closed(harness) -> None:
    """Test cancellation tolerates a transport that is already closing."""
    await harness.connect()
    harness.channel.close()

    await harness.session.stop()

    assert harness.session.state.phase is Phase.ENDED


async def test_ended_session_cannot_restart(harness) -> None:
    """Test ENDED is terminal for a Session instance."""
    await harness.connect()
    await harness.session.stop()

    with pytest.raises(RuntimeError):
        await harness.session.start()


async def test_server_vad_turn_captures_snapshot(make_harness) -> None:
    """Test server-driven turn boundaries finalize without manual clear/commit."""
    h = make_harness(whiteboard=Whiteboard(), settings=SessionSettings(turn_detection="server_vad", instructions=None))
    await h.connect()
    channel = h.channel
    assert channel.sent[0]["session"]["turn_detection"]["type"] == "server_vad"

    channel.deliver({"type": "input_audio_buffer.speech_started"})
    assert h.session.state.phase is Phase.LISTENING
    channel.deliver({"type": "conversation.item.input_audio_transcription.delta", "delta": "two plus two"})
    channel.deliver({"type": "input_audio_buffer.speech_stopped"})

    assert channel.sent_types[1:] == ["conversation.item.create", "response.create"]
    assert h.turns[0][0] == "two plus two"
    assert h.turns[0][1] is not None


async def test_stray_transcript_delta_does_not_block_talk(harness) -> None:
    """Test a transcription delta with no open recording leaves the talk control working."""
    await harness.connect()

    harness.channel.deliver({"type": "conversation.item.input_audio_transcription.delta", "delta": "x"})
    harness.session.toggle_talking()

    assert harness.session.state.phase is Phase.LISTENING
    assert harness.channel.sent_types[-1] == "input_audio_buffer.clear"


async def test_talk_ignored_in_text_mode(harness) -> None:
    """Test the talk control does nothing while typing is the active input."""
    await harness.connect()
    harness.session.set_input_mode("text")

    harness.session.toggle_talking()

    assert harness.session.state.phase is Phase.CONNECTED
    assert harness.channel.sent_types == ["session.update"]


async def test_display_clears_keep_one_timer_per_target(make_harness) -> None:
    """Test repeated displays share a single pending clear that is dropped once it fires."""
    settings = SessionSettings(instructions=None, transcript_display_seconds=0.01, subtitle_clear_delay=0.01)
    h = make_harness(settings=settings)
    await h.connect()
    session = h.session
    session.set_input_mode("text")

    session.send_text_message("first")
    session.send_text_message("second")
    assert set(session._timers) == {"user_transcript"}

    await asyncio.sleep(0.05)

    assert session.state.user_transcript == ""
    assert session._timers == {}


async def test_failing_state_listener_does_not_break_intents(harness) -> None:
    """Test an exception from the change listener is logged and the session carries on."""
    def explode(state) -> None:
        raise RuntimeError("render failed")

    harness.session.on_change = explode
    await harness.connect()

    harness.session.toggle_talking()

    assert harness.session.state.phase is Phase.LISTENING
