from __future__ import annotations

# python imports:
from abc import ABCMeta
import contextlib
import logging
import sys
from typing import Iterable, Iterator, Type

# mailproto imports:
from base_proto import Event, SendDataEvent, ServerProtocol, Closed
from line_reader import AsyncLineReader, SyncLineReader
from transport import SyncTransport, AsyncTransport
from util import BYTES, b2s

logger = logging.getLogger ( __name__ )


@contextlib.contextmanager
def _event_exception_safety ( event: Event ) -> Iterator[None]:
	try:
		yield
	except Exception:
		event.exc_info = sys.exc_info()


@contextlib.contextmanager
def close_if_oserror() -> Iterator[None]:
	try:
		yield
	except OSError as e:
		raise Closed ( repr ( e ) ) from e


def _printable ( data: BYTES ) -> str:
	return b2s ( data, errors = 'replace' ).rstrip()


class SyncEventHandler:
	transport: SyncTransport

	def on_SendDataEvent ( self, event: SendDataEvent ) -> None:
		log = logger.getChild ( 'SyncEventHandler.on_SendDataEvent' )
		for chunk in event.chunks:
			log.debug ( f'S>{_printable(chunk)}' )
			with close_if_oserror():
				self.transport.write ( chunk )

	def _on_event ( self, event: Event ) -> None:
		#log = logger.getChild ( 'SyncEventHandler._on_event' )
		if isinstance ( event, SendDataEvent ):
			self.on_SendDataEvent ( event ) # a failed write ends the session
			return
		with _event_exception_safety ( event ):
			func = getattr ( self, f'on_{type(event).__name__}' )
			func ( event )

	def _on_events ( self, events: Iterable[Event] ) -> None:
		for event in events:
			self._on_event ( event )

	def close ( self ) -> None:
		self.transport.close()


class AsyncEventHandler:
	transport: AsyncTransport

	async def on_SendDataEvent ( self, event: SendDataEvent ) -> None:
		log = logger.getChild ( 'AsyncEventHandler.on_SendDataEvent' )
		for chunk in event.chunks:
			log.debug ( f'S>{_printable(chunk)}' )
			with close_if_oserror():
				await self.transport.write ( chunk )

	async def _on_event ( self, event: Event ) -> None:
		#log = logger.getChild ( 'AsyncEventHandler._on_event' )
		if isinstance ( event, SendDataEvent ):
			await self.on_SendDataEvent ( event ) # a failed write ends the session
			return
		with _event_exception_safety ( event ):
			func = getattr ( self, f'on_{type(event).__name__}' )
			await func ( event )

	async def _on_events ( self, events: Iterable[Event] ) -> None:
		for event in events:
			await self._on_event ( event )

	async def close ( self ) -> None:
		await self.transport.close()


class Server ( metaclass = ABCMeta ):
	protocls: Type[ServerProtocol]
	proto: ServerProtocol


class SyncServer ( SyncEventHandler, Server ):
	def __init__ ( self,
		transport: SyncTransport,
		server_hostname: str,
	) -> None:
		self.transport = transport
		self.server_hostname = server_hostname
		self.proto = self.protocls ( server_hostname )

	def run ( self ) -> None:
		log = logger.getChild ( 'SyncServer.run' )
		reader = SyncLineReader ( self.transport, self.proto._MAXLINE )
		try:
			self._on_events ( self.proto.startup() )

			while True:
				line = b''
				with close_if_oserror(), contextlib.suppress ( Closed ): # Closed here is end of stream
					line = reader.read_line()
				if not line:
					self._on_events ( self.proto.receive_eof() ) # raises: Closed
				log.debug ( f'C>{_printable(line)}' )
				self._on_events ( self.proto.receive_line ( line ) )
		except Closed as e:
			log.debug ( f'connection closed with reason: {e.args[0]!r}' )
		finally:
			try:
				for event in self.proto.teardown():
					self._on_event ( event )
					if event.exc_info:
						log.error ( f'{event!r} failed:', exc_info = event.exc_info )
			finally:
				self.close()


class AsyncServer ( AsyncEventHandler, Server ):
	def __init__ ( self,
		transport: AsyncTransport,
		server_hostname: str,
	) -> None:
		self.transport = transport
		self.server_hostname = server_hostname
		self.proto = self.protocls ( server_hostname )

	async def run ( self ) -> None:
		log = logger.getChild ( 'AsyncServer.run' )
		reader = AsyncLineReader ( self.transport, self.proto._MAXLINE )
		try:
			await self._on_events ( self.proto.startup() )

			while True:
				line = b''
				with close_if_oserror(), contextlib.suppress ( Closed ): # Closed here is end of stream
					line = await reader.read_line()
				if not line:
					await self._on_events ( self.proto.receive_eof() ) # raises: Closed
				log.debug ( f'C>{_printable(line)}' )
				await self._on_events ( self.proto.receive_line ( line ) )
		except Closed as e:
			log.debug ( f'connection closed with reason: {e.args[0]!r}' )
		finally:
			try:
				for event in self.proto.teardown():
					await self._on_event ( event )
					if event.exc_info:
						log.error ( f'{event!r} failed:', exc_info = event.exc_info )
			finally:
				await self.close()
