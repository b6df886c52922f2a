"""Exception taxonomy shared by the session negotiator and the signaling relay."""

from __future__ import annotations


class OfficeHoursError(Exception):
	"""Base class for every error raised by this package."""


class MediaAccessError(OfficeHoursError):
	"""Microphone permission denied or no capture device available."""


class NegotiationTransportError(OfficeHoursError):
	"""The relay could not be reached or answered with a non-2xx status."""


class MalformedEventError(OfficeHoursError):
	"""An inbound control message is not a JSON object with a ``type``."""


class TranscriptionFailure(OfficeHoursError):
	"""The vendor reported that a turn could not be transcribed."""


class RelayError(OfficeHoursError):
	"""Error raised inside the relay; ``status_code`` is what the caller sees."""

	status_code: int = 500

	def __init__(self, message: str, *, detail: str | None = None) -> None:
		super().__init__(message)
		self.message = message
		self.detail = detail


class ConfigurationError(RelayError):
	"""The long-lived upstream credential is not configured."""

	status_code = 500


class RelayAuthError(RelayError):
	"""The client-facing ``apikey`` header did not match."""

	status_code = 401


class UpstreamSessionError(RelayError):
	"""The vendor refused to mint an ephemeral credential."""

	status_code = 502


class UpstreamNegotiationError(RelayError):
	"""The vendor rejected the SDP offer."""

	status_code = 502
