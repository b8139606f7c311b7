#region PROLOGUE --------------------------------------------------------------
from __future__ import annotations

# python imports:
from abc import abstractmethod
import enum
import logging
import re
from typing import (
	BinaryIO, Callable, Dict, Iterator, List, Optional as Opt, Tuple, Type,
)

# mailproto imports:
from base_proto import (
	BaseRequest, Event, SendDataEvent, Closed, RequestProtocolGenerator,
	ServerProtocol, decode_command,
)
from mailstore import Message, MessageList
from util import BYTES, plural, s2b

logger = logging.getLogger ( __name__ )


_r_eol = re.compile ( r'[\r\n]' )
_r_msgno = re.compile ( r'^\s*(\d+)\s*$' )


class State ( enum.Enum ):
	UNAUTHENTICATED = 'UNAUTHENTICATED'
	USER_KNOWN = 'USER_KNOWN'
	ACTIVE = 'ACTIVE'
	TERMINATED = 'TERMINATED'


#endregion
#region EVENTS ----------------------------------------------------------------

def ResponseEvent ( ok: bool, text: str ) -> SendDataEvent:
	ok_ = '+OK' if ok else '-ERR'
	line = f'{ok_} {text}' if text else ok_
	return SendDataEvent ( s2b ( f'{line}\r\n' ) )


def SuccessEvent ( text: str ) -> SendDataEvent:
	return ResponseEvent ( True, text )


def ErrorEvent ( text: str ) -> SendDataEvent:
	return ResponseEvent ( False, text )


def MultiResponseEvent ( text: str, *multilines: str ) -> SendDataEvent:
	return ResponseEvent ( True, '\r\n'.join ( [ text, *multilines, '.' ] ) )


class ContentStuffer:
	'''
	Turns stored message bytes into the body of a RETR response, one block
	at a time. Lines are split on LF only and sent with CRLF; a lone CR is
	message data. RFC1939#3 byte-stuff lines that begin with the termination
	octet.
	'''
	def __init__ ( self ) -> None:
		self.pending = b''
		self.bol = True

	def _stuffed ( self, line: bytes ) -> bytes:
		return b'.' + line if self.bol and line[0:1] == b'.' else line

	def feed ( self, data: bytes ) -> bytes:
		chunks: List[bytes] = []
		lines = ( self.pending + data ).split ( b'\n' )
		self.pending = lines.pop()
		for line in lines:
			if line[-1:] == b'\r':
				line = line[:-1]
			chunks.append ( self._stuffed ( line ) + b'\r\n' )
			self.bol = True
		if len ( self.pending ) > 1:
			# hold back the last byte, it might be the CR of a CRLF
			line, self.pending = self.pending[:-1], self.pending[-1:]
			chunks.append ( self._stuffed ( line ) )
			self.bol = False
		return b''.join ( chunks )

	def flush ( self ) -> bytes:
		line, self.pending = self.pending, b''
		if line[-1:] == b'\r':
			line = line[:-1]
		if self.bol and not line:
			return b''
		chunk = self._stuffed ( line ) + b'\r\n'
		self.bol = True
		return chunk


class AcceptRejectEvent ( Event ):
	success_message: str
	error_message: str
	_acceptance: Opt[bool] = None

	def __init__ ( self ) -> None:
		self._message: str = self.error_message

	def _accept ( self ) -> None:
		#log = logger.getChild ( 'AcceptRejectEvent.accept' )
		self._acceptance = True
		self._message = self.success_message

	def reject ( self, message: Opt[str] = None ) -> None:
		log = logger.getChild ( 'AcceptRejectEvent.reject' )
		self._acceptance = False
		self._message = self.error_message
		if message is not None:
			if not isinstance ( message, str ) or _r_eol.search ( message ):
				log.error ( f'invalid error-{message=}' )
			else:
				self._message = message

	def _accepted ( self ) -> Tuple[bool,str]:
		#log = logger.getChild ( 'AcceptRejectEvent._accepted' )
		assert self._acceptance is not None, f'you must call .accept() or .reject() on when passed a {type(self).__module__}.{type(self).__name__} object'
		assert isinstance ( self._message, str )
		return self._acceptance, self._message

	def go ( self ) -> Iterator[Event]:
		yield self
		if not self._acceptance:
			raise ResponseEvent ( False, self._message )

	def __repr__ ( self ) -> str:
		cls = type ( self )
		args = ', '.join ( f'{k}={getattr(self,k)!r}' for k in (
			'_acceptance',
			'_message',
		) )
		return f'{cls.__module__}.{cls.__name__}({args})'


class GreetingAcceptEvent ( AcceptRejectEvent ):
	success_message = 'POP3 server ready'
	error_message = 'Too busy to accept mail right now'

	def accept ( self ) -> None:
		self._accept()


class UserEvent ( AcceptRejectEvent ):
	'''
	Does this mailbox exist?
	'''
	def __init__ ( self, uid: str ) -> None:
		self.uid = uid
		self.success_message = f'{uid} is a valid mailbox'
		self.error_message = f'sorry, no mailbox for {uid} here'
		super().__init__()

	def accept ( self ) -> None:
		self._accept()

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}(uid={self.uid!r})'


class UserPassEvent ( AcceptRejectEvent ):
	success_message = 'password accepted'
	error_message = 'Authentication failed'

	def __init__ ( self, uid: str, pwd: str ) -> None:
		super().__init__()
		self.uid = uid
		self.pwd = pwd

	def accept ( self ) -> None:
		self._accept()

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}(uid={self.uid!r})'


class LockMaildropEvent ( AcceptRejectEvent ):
	"""
	This event indicates that a maildrop should be loaded.
	implementations pass a snapshot of the maildrop's messages to accept().
	The snapshot stays with the session until UnlockMaildropEvent.
	"""
	success_message = 'maildrop locked and ready'
	error_message = 'maildrop not available to be locked'

	messages: MessageList

	def __init__ ( self, maildrop: str ) -> None:
		self.maildrop = maildrop
		super().__init__()

	def accept ( self, messages: MessageList ) -> None:
		self.messages = messages
		self._accept()


class UnlockMaildropEvent ( Event ):
	'''
	The session is over. Implementations must release the snapshot, which
	is when messages marked for deletion actually get removed.
	'''
	def __init__ ( self, messages: MessageList ) -> None:
		self.messages = messages

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}({self.messages!r})'


class RetrEvent ( AcceptRejectEvent ):
	'''
	Open a message for reading. Implementations pass an open binary file
	to accept(); the protocol reads it with ReadContentEvent and closes it.
	'''
	success_message = '' # not used
	error_message = 'unable to read message'

	content: BinaryIO

	def __init__ ( self, message: Message ) -> None:
		super().__init__()
		self.message = message

	def accept ( self, content: BinaryIO ) -> None:
		self.content = content
		self._accept()


class ReadContentEvent ( Event ):
	'''
	Implementations set .data to the next block of at most .maxbytes bytes
	from .content, b'' at end of file.
	'''
	maxbytes: int = 4096
	data: bytes = b''

	def __init__ ( self, content: BinaryIO ) -> None:
		self.content = content

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}(maxbytes={self.maxbytes!r})'


#endregion
#region REQUESTS --------------------------------------------------------------

class Request ( BaseRequest ):
	def _server_protocol ( self, server: ServerProtocol, argtext: str ) -> RequestProtocolGenerator:
		assert isinstance ( server, Server )
		yield from self.server_protocol ( server, argtext )

	@abstractmethod
	def server_protocol ( self, server: Server, argtext: str ) -> RequestProtocolGenerator:
		cls = self.__class__
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


def _transaction_state ( server: Server ) -> MessageList:
	if server.maildrop is None:
		raise ErrorEvent ( 'command only valid in TRANSACTION state' )
	return server.maildrop


def _lookup ( server: Server, argtext: str ) -> Tuple[int,Message]:
	maildrop = _transaction_state ( server )
	if not argtext:
		raise ErrorEvent ( 'message number required' )
	if not ( m := _r_msgno.match ( argtext ) ):
		raise ErrorEvent ( f'invalid message number: {argtext}' )
	msgno = int ( m.group ( 1 ) )
	message = maildrop.message_at ( msgno - 1, include_deleted = True )
	if message is None:
		raise ErrorEvent ( 'no such message' )
	if message.deleted:
		if server.strict_deleted:
			raise ErrorEvent ( f'message {msgno} already deleted' )
		raise ErrorEvent ( 'no such message' )
	return msgno, message


def _maildrop_summary ( maildrop: MessageList ) -> str:
	return f'maildrop has {plural(maildrop.count(),"message")} ({maildrop.total_size()} octets)'


class GreetingRequest ( Request ):

	def server_protocol ( self, server: Server, argtext: str ) -> RequestProtocolGenerator:
		event = GreetingAcceptEvent()
		yield from event.go()
		ok, message = event._accepted()
		yield ResponseEvent ( ok, message )


@request_verb ( 'USER' )
class UserRequest ( Request ):

	def server_protocol ( self, server: Server, argtext: str ) -> RequestProtocolGenerator:
		if server.user is not None:
			raise ErrorEvent ( 'USER not valid in this state' )
		uid = argtext.strip()
		if not uid:
			raise ErrorEvent ( 'missing required username parameter' )
		event = UserEvent ( uid )
		yield from event.go()
		server.user = uid
		yield SuccessEvent ( event._message )


@request_verb ( 'PASS' )
class PassRequest ( Request ):

	def server_protocol ( self, server: Server, argtext: str ) -> RequestProtocolGenerator:
		if server.user is None or server.maildrop is not None:
			raise ErrorEvent ( 'PASS only valid after USER' )
		if not argtext:
			raise ErrorEvent ( 'missing required password parameter' )
		yield from UserPassEvent ( server.user, argtext ).go()

		event = LockMaildropEvent ( server.user )
		yield from event.go()
		server.maildrop = event.messages

		yield SuccessEvent ( _maildrop_summary ( server.maildrop ) )


@request_verb ( 'STAT' )
class StatRequest ( Request ):

	def server_protocol ( self, server: Server, argtext: str ) -> RequestProtocolGenerator:
		maildrop = _transaction_state ( server )
		yield SuccessEvent ( f'{maildrop.count()} {maildrop.total_size()}' )


@request_verb ( 'LIST' )
class ListRequest ( Request ):

	def server_protocol ( self, server: Server, argtext: str ) -> RequestProtocolGenerator:
		maildrop = _transaction_state ( server )
		if argtext:
			msgno, message = _lookup ( server, argtext )
			yield SuccessEvent ( f'{msgno} {message.size}' )
			return
		yield MultiResponseEvent (
			f'{plural(maildrop.count(),"message")} ({maildrop.total_size()} octets)',
			*( f'{pos+1} {message.size}' for pos, message in maildrop.live() ),
		)


@request_verb ( 'RETR' )
class RetrRequest ( Request ):

	def server_protocol ( self, server: Server, argtext: str ) -> RequestProtocolGenerator:
		log = logger.getChild ( 'RetrRequest.server_protocol' )
		msgno, message = _lookup ( server, argtext )
		event = RetrEvent ( message )
		yield from event.go()
		content = event.content
		try:
			yield SuccessEvent ( f'{message.size} octets' )
			stuffer = ContentStuffer()
			while True:
				read = ReadContentEvent ( content )
				try:
					yield read
				except OSError as e:
					# the +OK is already out, there is no way to report this to the client
					log.warning ( f'unable to read {message!r}: {e!r}' )
					raise Closed ( 'RETR read error' ) from e
				if not read.data:
					break
				chunk = stuffer.feed ( read.data )
				if chunk:
					yield SendDataEvent ( chunk )
			yield SendDataEvent ( stuffer.flush() + b'.\r\n' )
		finally:
			content.close()


@request_verb ( 'DELE' )
class DeleRequest ( Request ):

	def server_protocol ( self, server: Server, argtext: str ) -> RequestProtocolGenerator:
		msgno, message = _lookup ( server, argtext )
		message.mark_deleted()
		yield SuccessEvent ( f'message {msgno} deleted' )


@request_verb ( 'RSET' )
class RsetRequest ( Request ):

	def server_protocol ( self, server: Server, argtext: str ) -> RequestProtocolGenerator:
		maildrop = _transaction_state ( server )
		restored = maildrop.restore_all()
		yield SuccessEvent ( f'{plural(restored,"message")} restored' )


@request_verb ( 'NOOP' )
class NoOpRequest ( Request ):

	def server_protocol ( self, server: Server, argtext: str ) -> RequestProtocolGenerator:
		yield SuccessEvent ( '' )


@request_verb ( 'QUIT' )
class QuitRequest ( Request ):

	def server_protocol ( self, server: Server, argtext: str ) -> RequestProtocolGenerator:
		server.terminated = True
		yield SuccessEvent ( 'POP3 server signing off' )
		raise Closed ( 'QUIT' )

#endregion
#region SERVER ----------------------------------------------------------------

_r_pop3_request = re.compile ( r'^\s*([a-z]+)(?:\s+(.*))?\s*$', re.I )

class Server ( ServerProtocol ):
	user: Opt[str]
	maildrop: Opt[MessageList]
	strict_deleted: bool = False # True: a deleted message answers "already deleted" instead of "no such message"

	def reset ( self ) -> None:
		self.user = None
		self.maildrop = None

	@property
	def state ( self ) -> State:
		if self.terminated:
			return State.TERMINATED
		if self.maildrop is not None:
			return State.ACTIVE
		if self.user is not None:
			return State.USER_KNOWN
		return State.UNAUTHENTICATED

	def startup ( self ) -> Iterator[Event]:
		self.request = GreetingRequest()
		self.request_protocol = self.request.server_protocol ( self, '' )
		yield from self._run_protocol()

	def teardown ( self ) -> Iterator[Event]:
		if self.maildrop is not None:
			maildrop, self.maildrop = self.maildrop, None
			yield UnlockMaildropEvent ( maildrop )

	def _parse_request_line ( self, line: BYTES ) -> Tuple[Opt[Type[BaseRequest]],str]:
		log = logger.getChild ( 'Server._parse_request_line' )
		m = _r_pop3_request.match ( decode_command ( line ) )
		if not m:
			return None, ''
		verb, suffix = m.groups()
		verb = verb.upper() # RFC1939#3 keywords are case-insensitive
		requestcls = _request_verbs.get ( verb )
		if requestcls is None:
			log.debug ( f'{requestcls=} {verb=}' )
		return requestcls, suffix or ''

	def _error_invalid_command ( self ) -> Event:
		#log = logger.getChild ( 'Server._error_invalid_command' )
		return ErrorEvent ( 'Command not recognized' )

	def _error_line_too_long ( self ) -> Event:
		return ErrorEvent ( 'Line too long' )

#endregion
