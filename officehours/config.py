"""Configuration management for the office hours relay and session client."""

from __future__ import annotations

import logging
import os
from typing import Optional, Tuple

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

load_dotenv()


def _parse_float(name: str, default: float) -> Tuple[float, bool]:
	"""Return environment variable as float when possible, falling back to default."""
	value = os.getenv(name)
	if value is None or value.strip() == '':
		return default, True
	try:
		return float(value), False
	except ValueError:
		logger.warning('Ignoring invalid float for %s: %s', name, value)
		return default, True


def _parse_int(name: str, default: int) -> Tuple[int, bool]:
	"""Return environment variable as int when possible, falling back to default."""
	value = os.getenv(name)
	if value is None or value.strip() == '':
		return default, True
	try:
		return int(value), False
	except ValueError:
		logger.warning('Ignoring invalid integer for %s: %s', name, value)
		return default, True


class Config:
	"""Centralized configuration for the signaling relay and the realtime session."""

	SITE_NAME: str = os.getenv('SITE_NAME', 'MathTA')
	SITE_TAGLINE: str = os.getenv('SITE_TAGLINE', 'Your AI-powered math teaching assistant')

	OPENAI_BASE_URL: str = os.getenv('OPENAI_BASE_URL', 'https://api.openai.com/v1').rstrip('/')
	REALTIME_MODEL: str = os.getenv('REALTIME_MODEL', 'gpt-4o-realtime-preview-2024-12-17')
	REALTIME_VOICE: str = os.getenv('REALTIME_VOICE', 'ash')
	TRANSCRIPTION_MODEL: str = os.getenv('TRANSCRIPTION_MODEL', 'gpt-4o-transcribe')
	TRANSCRIPTION_LANGUAGE: str = os.getenv('TRANSCRIPTION_LANGUAGE', 'en')

	_UPSTREAM_TIMEOUT, _ = _parse_float('UPSTREAM_TIMEOUT', 30.0)
	UPSTREAM_TIMEOUT: float = _UPSTREAM_TIMEOUT

	TURN_DETECTION: str = os.getenv('TURN_DETECTION', 'manual').strip().lower() or 'manual'
	if TURN_DETECTION not in {'manual', 'server_vad'}:
		logger.warning("Unsupported TURN_DETECTION '%s', falling back to 'manual'", TURN_DETECTION)
		TURN_DETECTION = 'manual'

	_VAD_THRESHOLD, _ = _parse_float('VAD_THRESHOLD', 0.5)
	VAD_THRESHOLD: float = _VAD_THRESHOLD

	_VAD_PREFIX_PADDING_MS, _ = _parse_int('VAD_PREFIX_PADDING_MS', 300)
	VAD_PREFIX_PADDING_MS: int = _VAD_PREFIX_PADDING_MS

	_VAD_SILENCE_DURATION_MS, _ = _parse_int('VAD_SILENCE_DURATION_MS', 500)
	VAD_SILENCE_DURATION_MS: int = _VAD_SILENCE_DURATION_MS

	RELAY_HOST: str = os.getenv('RELAY_HOST', '0.0.0.0')
	_RELAY_PORT, _ = _parse_int('RELAY_PORT', 8200)
	RELAY_PORT: int = _RELAY_PORT
	RELAY_PATH: str = '/' + os.getenv('RELAY_PATH', '/session').strip().strip('/')
	RELAY_URL: str = os.getenv('RELAY_URL', f'http://localhost:{RELAY_PORT}{RELAY_PATH}')
	# Checked against the apikey header when set; empty disables the check.
	RELAY_API_KEY: str = os.getenv('RELAY_API_KEY', '')

	# Capture device for aiortc's MediaPlayer, e.g. 'default' with 'pulse', or ':0' with 'avfoundation'.
	MICROPHONE_DEVICE: str = os.getenv('MICROPHONE_DEVICE', 'default')
	MICROPHONE_FORMAT: str | None = os.getenv('MICROPHONE_FORMAT', 'pulse') or None

	# Where remote audio goes; empty discards it.
	AUDIO_OUTPUT: str | None = os.getenv('AUDIO_OUTPUT') or None
	AUDIO_OUTPUT_FORMAT: str | None = os.getenv('AUDIO_OUTPUT_FORMAT') or None

	_SNAPSHOT_QUALITY, _ = _parse_float('SNAPSHOT_QUALITY', 0.85)
	SNAPSHOT_QUALITY: float = min(max(_SNAPSHOT_QUALITY, 0.01), 1.0)

	_SUBTITLE_CLEAR_DELAY, _ = _parse_float('SUBTITLE_CLEAR_DELAY', 1.2)
	SUBTITLE_CLEAR_DELAY: float = _SUBTITLE_CLEAR_DELAY

	_TRANSCRIPT_DISPLAY_SECONDS, _ = _parse_float('TRANSCRIPT_DISPLAY_SECONDS', 4.0)
	TRANSCRIPT_DISPLAY_SECONDS: float = _TRANSCRIPT_DISPLAY_SECONDS

	INSTRUCTIONS_FILE: str | None = os.getenv('INSTRUCTIONS_FILE') or None
	INSTRUCTIONS_TEXT: str | None = os.getenv('INSTRUCTIONS') or None

	DEFAULT_INSTRUCTIONS: str = (
		'You are a patient math teaching assistant holding virtual office hours.\n'
		'Guide the student toward the answer with questions and hints instead of solving the problem outright.\n'
		'When a whiteboard image is attached, refer to what the student has written or drawn.\n'
		'Keep spoken replies short and conversational.'
	)

	@classmethod
	def upstream_api_key(cls) -> Optional[str]:
		"""Return the long-lived vendor key, read fresh from the environment on every call."""
		value = os.getenv('OPENAI_API_KEY', '').strip()
		return value or None

	@classmethod
	def validate_relay(cls) -> bool:
		"""Ensure the relay can mint upstream sessions."""
		if not cls.upstream_api_key():
			logger.error('Missing OPENAI_API_KEY. Set it in your environment.')
			return False
		return True

	@classmethod
	def validate_client(cls) -> bool:
		"""Ensure the session client knows where the relay lives."""
		if not cls.RELAY_URL:
			logger.error('Missing RELAY_URL. Set it in your environment.')
			return False
		return True

	@classmethod
	def instructions(cls) -> str:
		"""Return the configured assistant instructions."""
		if cls.INSTRUCTIONS_FILE:
			try:
				with open(cls.INSTRUCTIONS_FILE, 'r', encoding='utf-8') as handle:
					return handle.read()
			except OSError as error:
				logger.warning('Failed to load instructions from %s: %s', cls.INSTRUCTIONS_FILE, error)
		if cls.INSTRUCTIONS_TEXT:
			return cls.INSTRUCTIONS_TEXT
		return cls.DEFAULT_INSTRUCTIONS

	@classmethod
	def log_config(cls) -> None:
		"""Print non-sensitive settings to stdout."""
		print('Configuration:')
		print(f'  Site: {cls.SITE_NAME}')
		print(f'  Realtime Model: {cls.REALTIME_MODEL}')
		print(f'  Voice: {cls.REALTIME_VOICE}')
		print(f'  Transcription: {cls.TRANSCRIPTION_MODEL} ({cls.TRANSCRIPTION_LANGUAGE})')
		print(f'  Turn Detection: {cls.TURN_DETECTION}')
		if cls.TURN_DETECTION == 'server_vad':
			print(
				f'  VAD: threshold={cls.VAD_THRESHOLD} '
				f'prefix_padding={cls.VAD_PREFIX_PADDING_MS}ms '
				f'silence={cls.VAD_SILENCE_DURATION_MS}ms'
			)
		print(f'  Relay URL: {cls.RELAY_URL}')
		print(f'  Relay API Key: {"set" if bool(cls.RELAY_API_KEY) else "not required"}')
		print(f'  OpenAI API Key: {"set" if bool(cls.upstream_api_key()) else "missing"}')
		print(f'  Microphone: {cls.MICROPHONE_DEVICE} ({cls.MICROPHONE_FORMAT or "auto"})')
		print(f'  Audio Output: {cls.AUDIO_OUTPUT or "discarded"}')
		print(
			'  Instructions: '
			+ (
				'file'
				if cls.INSTRUCTIONS_FILE
				else 'env'
				if cls.INSTRUCTIONS_TEXT
				else 'default'
			)
		)
