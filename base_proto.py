from __future__ import annotations

# python imports:
from abc import ABCMeta, abstractmethod
import logging
import re
from types import TracebackType
from typing import (
	Generator, Iterator, Optional as Opt, Sequence as Seq, Tuple, Type, Union,
)

# mailproto imports:
from util import bytes_types, BYTES, b2s

logger = logging.getLogger ( __name__ )

EXC_INFO = Opt[Union[
	Tuple[Type[BaseException],BaseException,TracebackType],
	Tuple[None,None,None],
]]

_r_eol = re.compile ( r'[\r\n]' )


class Event ( Exception ):
	exc_info: EXC_INFO = None

	def go ( self ) -> Iterator[Event]:
		yield self

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}()'


class Closed ( Exception ):
	def __init__ ( self, reason: str = '' ) -> None:
		super().__init__ ( reason or '(none given)' )


RequestProtocolGenerator = Generator[Event,None,None]


class BaseRequest ( metaclass = ABCMeta ):
	# this class is the basis of all server command handling
	# 1) the server looks up the request class by verb and instantiates it
	# 2) _server_protocol() implements the request's server-side state machine
	#    as a generator of events

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}()'

	@abstractmethod
	def _server_protocol ( self, server: ServerProtocol, argtext: str ) -> RequestProtocolGenerator:
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}._server_protocol()' )


class NeedDataEvent ( Event ):
	data: Opt[bytes] = None # b'' means the stream ended

	def reset ( self ) -> NeedDataEvent:
		self.data = None
		return self

	def go ( self ) -> Iterator[Event]:
		self.reset()
		yield from super().go()


class SendDataEvent ( Event ):

	def __init__ ( self, *chunks: bytes ) -> None:
		self.chunks: Seq[bytes] = chunks

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}(chunks={self.chunks!r})'


class ServerProtocol ( metaclass = ABCMeta ):
	_MAXLINE: int = 1024 # line reader capacity, in bytes
	request: Opt[BaseRequest] = None
	request_protocol: Opt[RequestProtocolGenerator] = None
	need_data: Opt[NeedDataEvent] = None
	terminated: bool = False
	_discarding: bool = False # skipping the tail of an over-long command line

	def __init__ ( self, hostname: str ) -> None:
		assert isinstance ( hostname, str ) and not _r_eol.search ( hostname ), f'invalid {hostname=}'
		self.hostname = hostname
		self.reset()

	def reset ( self ) -> None:
		pass

	def startup ( self ) -> Iterator[Event]:
		# override this if server protocol needs to say "hi" first
		yield from ()

	def teardown ( self ) -> Iterator[Event]:
		# override this to release session resources when the connection goes away
		yield from ()

	@abstractmethod
	def _parse_request_line ( self, line: BYTES ) -> Tuple[Opt[Type[BaseRequest]],str]:
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}._parse_request_line()' )

	@abstractmethod
	def _error_invalid_command ( self ) -> Event:
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}._error_invalid_command()' )

	@abstractmethod
	def _error_line_too_long ( self ) -> Event:
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}._error_line_too_long()' )

	def receive_line ( self, line: BYTES ) -> Iterator[Event]:
		#log = logger.getChild ( 'ServerProtocol.receive_line' )
		assert isinstance ( line, bytes_types ) and len ( line ) > 0, f'invalid {line=}'
		if self.need_data:
			self.need_data.data = bytes ( line )
			self.need_data = None
			yield from self._run_protocol()
			return
		assert self.request is None, 'server internal state error - not waiting for data but a request is active'
		terminated = line[-1:] == b'\n'
		if self._discarding:
			self._discarding = not terminated
			return
		if not terminated and len ( line ) >= self._MAXLINE:
			self._discarding = True
			yield self._error_line_too_long()
			return
		try:
			requestcls, suffix = self._parse_request_line ( line )
		except SendDataEvent as e:
			yield e
			return
		if requestcls is None:
			yield self._error_invalid_command()
			return
		request = requestcls()
		self.request = request
		self.request_protocol = request._server_protocol ( self, suffix )
		yield from self._run_protocol()

	def receive_eof ( self ) -> Iterator[Event]:
		# a request that is waiting for more lines gets b'' so it can wrap up
		if self.need_data:
			self.need_data.data = b''
			self.need_data = None
			yield from self._run_protocol()
		raise Closed ( 'EOF' )

	def _run_protocol ( self ) -> Iterator[Event]:
		log = logger.getChild ( 'ServerProtocol._run_protocol' )
		assert self.request is not None, f'invalid {self.request=}'
		assert self.request_protocol is not None, f'invalid {self.request_protocol=}'
		try:
			#log.debug ( 'yielding to request protocol' )
			event = next ( self.request_protocol )
			while True:
				#log.debug ( f'{event=}' )
				if isinstance ( event, NeedDataEvent ):
					self.need_data = event.reset()
					return
				yield event
				if event.exc_info and event.exc_info[1] is not None:
					event = self.request_protocol.throw ( event.exc_info[1] )
				else:
					event = next ( self.request_protocol )
		except Closed:
			self.request = None
			self.request_protocol = None
			raise
		except SendDataEvent as event:
			#log.debug ( f'protocol finished with {event=}' )
			self.request = None
			self.request_protocol = None
			yield event
		except StopIteration:
			self.request = None
			self.request_protocol = None
		except Exception as e:
			self.request = None
			self.request_protocol = None
			log.exception ( 'internal protocol error:' )
			raise Closed ( repr ( e ) ) from e


def decode_command ( line: BYTES ) -> str:
	# command lines are ascii, but we don't want a stray 8-bit byte to kill the session
	return b2s ( line, errors = 'replace' ).rstrip()
