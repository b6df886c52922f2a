"""Virtual office hours: realtime voice/text sessions with a shared whiteboard."""

__all__ = [
	'config',
	'errors',
	'whiteboard',
	'relay',
	'session',
]
