"""Interactive console for a realtime office hours session."""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Optional

from .config import Config
from .session.negotiator import Session
from .session.state import InputMode, Phase, SessionState
from .whiteboard import Whiteboard

LOGGER = logging.getLogger(__name__)

HELP = (
	'Commands:\n'
	'  talk              start/stop recording a turn\n'
	'  mute              toggle the microphone\n'
	'  mode audio|text   switch input mode\n'
	'  say <message>     send a typed message\n'
	'  board clear       wipe the whiteboard\n'
	'  board load <path> put an image on the whiteboard\n'
	'  status            show the session status\n'
	'  quit              end the session'
)


def setup_logging() -> None:
	"""Configure clean, consistent logging for the application."""
	log_format = '%(levelname)-8s | %(message)s'
	logging.basicConfig(level=logging.INFO, format=log_format)

	logging.getLogger('officehours').setLevel(logging.INFO)
	logging.getLogger('asyncio').setLevel(logging.WARNING)
	logging.getLogger('aiortc').setLevel(logging.WARNING)
	logging.getLogger('aioice').setLevel(logging.WARNING)
	logging.getLogger('aiohttp').setLevel(logging.WARNING)


class ConsoleView:
	"""Prints what changed in the session state since the last update."""

	def __init__(self) -> None:
		self._last: Optional[SessionState] = None

	def __call__(self, state: SessionState) -> None:
		last = self._last
		self._last = state
		if last is None or state.status != last.status:
			print(f'[{state.status}]')
		if state.subtitles and (last is None or state.subtitles != last.subtitles):
			print(f'\r[TA] {state.subtitles}', end='', flush=True)
		if last is not None and len(state.log) > len(last.log):
			if last.subtitles:
				print()
			for line in state.log[len(last.log):]:
				print(line)


async def _read_line(prompt: str) -> str:
	loop = asyncio.get_running_loop()
	return await loop.run_in_executor(None, input, prompt)


def _handle_board(board: Whiteboard, args: str) -> None:
	action, _, path = args.partition(' ')
	if action == 'clear':
		board.clear()
		LOGGER.info('Whiteboard cleared.')
	elif action == 'load' and path.strip():
		try:
			board.load_image(path.strip())
		except OSError as error:
			LOGGER.warning('Could not load %s: %s', path.strip(), error)
	else:
		LOGGER.info('Usage: board clear | board load <path>')


async def interactive_loop(session: Session, board: Whiteboard) -> None:
	LOGGER.info('\n' + '=' * 60)
	LOGGER.info(f'{Config.SITE_NAME} - {Config.SITE_TAGLINE}')
	LOGGER.info('=' * 60)
	LOGGER.info(HELP)
	LOGGER.info('=' * 60 + '\n')

	while session.state.phase is not Phase.ENDED:
		try:
			line = (await _read_line('> ')).strip()
		except (EOFError, KeyboardInterrupt):
			break

		command, _, args = line.partition(' ')
		command = command.lower()
		if not command:
			continue
		if command in {'quit', 'exit', 'q'}:
			break
		if command == 'talk':
			if session.state.input_mode is InputMode.TEXT and session.state.phase is not Phase.LISTENING:
				LOGGER.info('Text mode is on; type "mode audio" to talk.')
			session.toggle_talking()
		elif command == 'mute':
			session.toggle_mute()
		elif command == 'mode':
			try:
				session.set_input_mode(args.strip().lower())
			except ValueError:
				LOGGER.info('Usage: mode audio|text')
		elif command == 'say':
			if session.state.input_mode is not InputMode.TEXT:
				LOGGER.info('Audio mode is on; type "mode text" to send messages.')
			session.send_text_message(args)
		elif command == 'board':
			_handle_board(board, args.strip())
		elif command == 'status':
			state = session.state
			LOGGER.info(f'{state.status} (phase={state.phase.value}, muted={state.muted}, mode={state.input_mode.value})')
		elif command == 'start' and session.state.phase is Phase.ERROR:
			await session.start()
		else:
			LOGGER.info(HELP)


async def main() -> None:
	setup_logging()
	Config.log_config()
	if not Config.validate_client():
		sys.exit(1)

	board = Whiteboard()
	session = Session(whiteboard=board, on_change=ConsoleView())
	await session.start()
	if session.state.phase is Phase.ERROR:
		LOGGER.info('Type "start" to retry or "quit" to leave.')

	try:
		await interactive_loop(session, board)
	finally:
		await session.stop()
		LOGGER.info('Session ended.')


if __name__ == '__main__':
	asyncio.run(main())
