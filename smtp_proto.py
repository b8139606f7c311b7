#region PROLOGUE --------------------------------------------------------------
from __future__ import annotations

# python imports:
from abc import abstractmethod
import enum
import logging
import re
from types import MappingProxyType
from typing import (
	Callable, Dict, Iterator, List, Mapping, Optional as Opt, Sequence as Seq,
	Tuple, Type,
)

# mailproto imports:
from base_proto import (
	BaseRequest, Event, NeedDataEvent, SendDataEvent, Closed,
	RequestProtocolGenerator, ServerProtocol, decode_command,
)
from util import BYTES, s2b

logger = logging.getLogger ( __name__ )


_r_eol = re.compile ( r'[\r\n]' )
_r_mail_from = re.compile ( r'\s*FROM\s*:\s*<([^<>@\s]+@[^<>@\s]+)>(?:\s+.*)?$', re.I ) # RFC5321#2.4 command verbs are not case sensitive
_r_rcpt_to = re.compile ( r'\s*TO\s*:\s*<([^<>@\s]+@[^<>@\s]+)>(?:\s+.*)?$', re.I ) # RFC5321#2.4 command verbs are not case sensitive


class State ( enum.Enum ):
	INITIAL = 'INITIAL'
	GREETED = 'GREETED'
	HAS_SENDER = 'HAS_SENDER'
	HAS_RECIPIENTS = 'HAS_RECIPIENTS'
	TERMINATED = 'TERMINATED'


def local_part ( address: str ) -> str:
	return address.split ( '@', 1 )[0]


#endregion
#region EVENTS ----------------------------------------------------------------

def ResponseEvent ( code: int, *lines: str ) -> SendDataEvent:
	seps = [ '-' ] * len ( lines )
	seps[-1] = ' '
	chunks = ( s2b ( ''.join (
		f'{code}{sep}{line}\r\n'
		for sep, line in zip ( seps, lines )
	) ), )
	return SendDataEvent ( *chunks )


class AcceptRejectEvent ( Event ):
	success_code: int
	success_message: str
	error_code: int
	error_message: str

	def __init__ ( self ) -> None:
		self._acceptance: Opt[bool] = None
		self._code: int = self.error_code
		self._message: str = self.error_message

	def accept ( self ) -> None:
		#log = logger.getChild ( 'AcceptRejectEvent.accept' )
		self._acceptance = True
		self._code = self.success_code
		self._message = self.success_message

	def reject ( self, code: Opt[int] = None, message: Opt[str] = None ) -> None:
		log = logger.getChild ( 'AcceptRejectEvent.reject' )
		self._acceptance = False
		self._code = self.error_code
		self._message = self.error_message
		if code is not None:
			if not isinstance ( code, int ) or code < 400 or code > 599:
				log.error ( f'invalid error-{code=}' )
			else:
				self._code = code
		if message is not None:
			if not isinstance ( message, str ) or _r_eol.search ( message ):
				log.error ( f'invalid error-{message=}' )
			else:
				self._message = message

	def _accepted ( self ) -> Tuple[bool,int,str]:
		#log = logger.getChild ( 'AcceptRejectEvent._accepted' )
		assert self._acceptance is not None, f'you must call .accept() or .reject() on when passed a {type(self).__module__}.{type(self).__name__} object'
		assert isinstance ( self._code, int )
		assert isinstance ( self._message, str )
		return self._acceptance, self._code, self._message

	def go ( self ) -> Iterator[Event]:
		yield self
		if not self._acceptance:
			raise ResponseEvent ( self._code, self._message )

	def __repr__ ( self ) -> str:
		cls = type ( self )
		args = ', '.join ( f'{k}={getattr(self,k)!r}' for k in (
			'_acceptance',
			'_code',
			'_message',
		) )
		return f'{cls.__module__}.{cls.__name__}({args})'


class GreetingAcceptEvent ( AcceptRejectEvent ):
	success_code = 220
	error_code = 421
	error_message = 'Too busy to accept mail right now'

	def __init__ ( self, server_hostname: str ) -> None:
		self.success_message = f'{server_hostname} Simple Mail Transfer Service Ready'
		super().__init__()


class MailFromEvent ( AcceptRejectEvent ):
	success_code = 250
	success_message = 'OK'
	error_code = 550
	error_message = 'address rejected'

	def __init__ ( self, mail_from: str ) -> None:
		super().__init__()
		self.mail_from = mail_from

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}(mail_from={self.mail_from!r})'


class RcptToEvent ( AcceptRejectEvent ):
	'''
	`mailbox` is the local part of `rcpt_to`, which is what gets looked up
	and, if accepted, delivered to.
	'''
	success_code = 250
	success_message = 'OK'
	error_code = 551
	error_message = 'User not local'

	def __init__ ( self, rcpt_to: str ) -> None:
		super().__init__()
		self.rcpt_to = rcpt_to
		self.mailbox = local_part ( rcpt_to )

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}(rcpt_to={self.rcpt_to!r})'


class VrfyEvent ( AcceptRejectEvent ):
	success_code = 250
	error_code = 553
	error_message = 'User ambiguous'

	def __init__ ( self, address: str ) -> None:
		self.address = address
		self.mailbox = local_part ( address )
		self.success_message = f'<{address}>'
		super().__init__()

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}(address={self.address!r})'


class CompleteEvent ( AcceptRejectEvent ):
	success_code = 250
	success_message = 'OK'
	error_code = 450
	error_message = 'Unable to accept message for delivery'

	def __init__ ( self,
		mail_from: str,
		rcpt_to: Seq[str],
		data: Seq[bytes],
	) -> None:
		super().__init__()
		self.mail_from = mail_from
		self.rcpt_to = rcpt_to
		self.data = data

	@property
	def mailboxes ( self ) -> List[str]:
		return [ local_part ( rcpt_to ) for rcpt_to in self.rcpt_to ]


#endregion
#region REQUESTS --------------------------------------------------------------

class Request ( BaseRequest ):
	def _server_protocol ( self, server: ServerProtocol, argtext: str ) -> RequestProtocolGenerator:
		assert isinstance ( server, Server )
		yield from self.server_protocol ( server, argtext )

	@abstractmethod
	def server_protocol ( self, server: Server, argtext: str ) -> RequestProtocolGenerator:
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}.server_protocol()' )


_request_verbs: Dict[str,Type[BaseRequest]] = {}

def request_verb ( verb: str ) -> Callable[[Type[BaseRequest]],Type[BaseRequest]]:
	def registrar ( cls: Type[BaseRequest] ) -> Type[BaseRequest]:
		global _request_verbs
		assert verb == verb.upper() and ' ' not in verb and len ( verb ) <= 4, f'invalid request {verb=}'
		assert verb not in _request_verbs, f'duplicate request verb {verb!r}'
		_request_verbs[verb] = cls
		return cls
	return registrar


def _bad_sequence() -> SendDataEvent:
	return ResponseEvent ( 503, 'Bad sequence of commands' )


class GreetingRequest ( Request ):

	def server_protocol ( self, server: Server, argtext: str ) -> RequestProtocolGenerator:
		event = GreetingAcceptEvent ( server.hostname )
		yield from event.go()
		accepted, code, message = event._accepted()
		yield ResponseEvent ( code, message )


@request_verb ( 'HELO' )
class HeloRequest ( Request ):

	def server_protocol ( self, server: Server, argtext: str ) -> RequestProtocolGenerator:
		client_hostname = argtext.strip()
		server.reset()
		server.client_hostname = client_hostname
		yield ResponseEvent ( 250, f'{server.hostname} greets {client_hostname}'.rstrip() )


@request_verb ( 'EHLO' )
class EhloRequest ( Request ):

	def server_protocol ( self, server: Server, argtext: str ) -> RequestProtocolGenerator:
		client_hostname = argtext.strip()
		server.reset()
		server.client_hostname = client_hostname

		lines: List[str] = [ f'{server.hostname} greets {client_hostname}'.rstrip() ]
		features = dict ( server.esmtp_features )
		for name, value in features.items():
			if value:
				lines.append ( f'{name} {value}' )
			else:
				lines.append ( name )

		yield ResponseEvent ( 250, *lines )


@request_verb ( 'VRFY' )
class VrfyRequest ( Request ):

	def server_protocol ( self, server: Server, argtext: str ) -> RequestProtocolGenerator: # raises: ResponseEvent
		if not argtext.strip():
			raise ResponseEvent ( 501, 'missing required address parameter' )
		for token in argtext.split():
			address = token.strip ( '<>' )
			if '@' in address:
				break
		else:
			raise ResponseEvent ( VrfyEvent.error_code, VrfyEvent.error_message )
		event = VrfyEvent ( address )
		yield from event.go()
		accepted, code, message = event._accepted()
		yield ResponseEvent ( code, message )


@request_verb ( 'MAIL' )
class MailFromRequest ( Request ):

	def server_protocol ( self, server: Server, argtext: str ) -> RequestProtocolGenerator:
		if server.state != State.GREETED:
			raise _bad_sequence()
		m = _r_mail_from.match ( argtext )
		if not m:
			raise ResponseEvent ( 501, 'Syntax error in parameters or arguments' )
		mail_from = m.group ( 1 )
		event = MailFromEvent ( mail_from )
		yield from event.go()
		accepted, code, message = event._accepted()
		server.mail_from = mail_from
		yield ResponseEvent ( code, message )


@request_verb ( 'RCPT' )
class RcptToRequest ( Request ):

	def server_protocol ( self, server: Server, argtext: str ) -> RequestProtocolGenerator:
		if server.state not in ( State.HAS_SENDER, State.HAS_RECIPIENTS ):
			raise _bad_sequence()
		m = _r_rcpt_to.match ( argtext )
		if not m:
			raise ResponseEvent ( 501, 'Syntax error in parameters or arguments' )
		rcpt_to = m.group ( 1 )
		event = RcptToEvent ( rcpt_to )
		yield from event.go()
		accepted, code, message = event._accepted()
		server.rcpt_to.append ( rcpt_to )
		yield ResponseEvent ( code, message )


@request_verb ( 'DATA' )
class DataRequest ( Request ):

	# see RFC 5321 4.5.2 for byte stuffing algorithm description

	def server_protocol ( self, server: Server, argtext: str ) -> RequestProtocolGenerator:
		#log = logger.getChild ( 'DataRequest.server_protocol' )
		if server.state != State.HAS_RECIPIENTS:
			raise _bad_sequence()
		yield ResponseEvent ( 354, 'Start mail input; end with <CRLF>.<CRLF>' )
		event1 = NeedDataEvent()
		bol = True # only a line that starts at the beginning of a line can be stuffed or terminate
		while True:
			yield from event1.go()
			line = event1.data or b''
			if not line: # stream ended, deliver what we have
				break
			if bol and line.rstrip ( b'\r\n' ) == b'.':
				break
			if bol and line[0:1] == b'.':
				line = line[1:]
			server.data.append ( line )
			bol = line[-1:] == b'\n'
		event2 = CompleteEvent ( server.mail_from, server.rcpt_to, server.data )
		server.reset()
		yield from event2.go()
		_, code, message = event2._accepted()
		yield ResponseEvent ( code, message )


@request_verb ( 'RSET' )
class RsetRequest ( Request ):

	def server_protocol ( self, server: Server, argtext: str ) -> RequestProtocolGenerator:
		if server.client_hostname is None:
			raise _bad_sequence()
		server.reset()
		yield ResponseEvent ( 250, 'OK' )


@request_verb ( 'NOOP' )
class NoOpRequest ( Request ):

	def server_protocol ( self, server: Server, argtext: str ) -> RequestProtocolGenerator:
		# FYI `argtext` is ignored per RFC 5321 4.1.1.9
		yield ResponseEvent ( 250, 'OK' )


@request_verb ( 'QUIT' )
class QuitRequest ( Request ):

	def server_protocol ( self, server: Server, argtext: str ) -> RequestProtocolGenerator:
		server.terminated = True
		yield ResponseEvent ( 221, f'{server.hostname} Service closing transmission channel' )
		raise Closed ( 'QUIT' )

#endregion
#region SERVER ----------------------------------------------------------------

_r_smtp_request = re.compile ( r'^\s*([a-z]+)(?:\s+(.*))?\s*$', re.I )


class Server ( ServerProtocol ):
	client_hostname: Opt[str] = None # None until HELO/EHLO
	mail_from: str
	rcpt_to: List[str]
	data: List[bytes]
	esmtp_features: Mapping[str,str] = MappingProxyType ( {
		'8BITMIME': '', # body bytes are stored verbatim
	} )

	def startup ( self ) -> Iterator[Event]:
		self.request = GreetingRequest()
		self.request_protocol = self.request.server_protocol ( self, '' )
		yield from self._run_protocol()

	def reset ( self ) -> None:
		self.mail_from = ''
		self.rcpt_to = []
		self.data = []

	@property
	def state ( self ) -> State:
		if self.terminated:
			return State.TERMINATED
		if self.client_hostname is None:
			return State.INITIAL
		if self.rcpt_to:
			return State.HAS_RECIPIENTS
		if self.mail_from:
			return State.HAS_SENDER
		return State.GREETED

	def _parse_request_line ( self, line: BYTES ) -> Tuple[Opt[Type[BaseRequest]],str]:
		log = logger.getChild ( 'Server._parse_request_line' )
		m = _r_smtp_request.match ( decode_command ( line ) )
		if not m:
			return None, ''
		verb, suffix = m.groups()
		verb = verb.upper() # RFC5321#2.4 command verbs are not case-sensitive

		requestcls = _request_verbs.get ( verb )
		if requestcls is None:
			log.debug ( f'{requestcls=} {verb=}' )

		return requestcls, suffix or ''

	def _error_invalid_command ( self ) -> Event:
		#log = logger.getChild ( 'Server._error_invalid_command' )
		return ResponseEvent ( 500, 'Command not recognized' )

	def _error_line_too_long ( self ) -> Event:
		return ResponseEvent ( 500, 'Line too long' )

#endregion
