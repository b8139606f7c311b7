'''
On-disk mailbox storage.

Layout:

	<basedir>/<mailbox>/0.mail
	<basedir>/<mailbox>/1.mail
	...

There is no index file. A session takes a snapshot of a mailbox (a
MessageList) when it logs in, and deletions only mark messages in that
snapshot until the session releases it.

Delivery hard-links one temporary file into every recipient's mailbox, so
the temporary file must live on the same filesystem as the mailboxes
(temporary_message() takes care of that).
'''
from __future__ import annotations

# python imports:
import contextlib
import logging
import os
from pathlib import Path
import re
import tempfile
from typing import (
	BinaryIO, Iterable, Iterator, List, Optional as Opt, Sequence as Seq,
	Tuple, Union,
)

logger = logging.getLogger ( __name__ )

_r_mailbox = re.compile ( r'^[^./\\\0][^/\\\0]*$' )


class Message:
	deleted: bool = False

	def __init__ ( self, path: Path, size: int ) -> None:
		self.path = path
		self.size = size

	def mark_deleted ( self ) -> None:
		self.deleted = True

	def open_content ( self ) -> BinaryIO:
		# caller is responsible for closing it
		return open ( self.path, 'rb' )

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}({str(self.path)!r}, {self.size!r}, deleted={self.deleted!r})'


class MessageList:
	released: bool = False

	def __init__ ( self, mailbox: str, messages: Seq[Message] = () ) -> None:
		self.mailbox = mailbox
		self.messages: List[Message] = list ( messages )

	def __len__ ( self ) -> int:
		return len ( self.messages )

	def live ( self ) -> Iterator[Tuple[int,Message]]:
		for pos, message in enumerate ( self.messages ):
			if not message.deleted:
				yield pos, message

	def count ( self ) -> int:
		return sum ( 1 for _ in self.live() )

	def total_size ( self ) -> int:
		return sum ( message.size for _, message in self.live() )

	def message_at ( self, pos: int, include_deleted: bool = False ) -> Opt[Message]:
		if not 0 <= pos < len ( self.messages ):
			return None
		message = self.messages[pos]
		if message.deleted and not include_deleted:
			return None
		return message

	def restore_all ( self ) -> int:
		restored = 0
		for message in self.messages:
			if message.deleted:
				message.deleted = False
				restored += 1
		return restored

	def __repr__ ( self ) -> str:
		cls = type ( self )
		return f'{cls.__module__}.{cls.__name__}({self.mailbox!r}, count={self.count()!r}, total={len(self)!r})'


class MailStore:
	suffix: str = '.mail'

	def __init__ ( self, basedir: Union[str,os.PathLike] ) -> None:
		self.basedir = Path ( basedir )

	def mailbox_path ( self, mailbox: str ) -> Opt[Path]:
		# mailbox names are case-insensitive, just like the usernames they come from
		if not isinstance ( mailbox, str ) or not _r_mailbox.match ( mailbox ):
			return None
		return self.basedir / mailbox.lower()

	def list_mailbox_messages ( self, mailbox: str ) -> MessageList:
		log = logger.getChild ( 'MailStore.list_mailbox_messages' )
		messages = MessageList ( mailbox )
		path = self.mailbox_path ( mailbox )
		if path is None:
			log.warning ( f'refusing to open invalid {mailbox=}' )
			return messages
		try:
			entries = list ( os.scandir ( path ) )
		except FileNotFoundError:
			return messages
		except OSError as e:
			log.warning ( f'unable to enumerate {str(path)!r}: {e!r}' )
			return messages
		for entry in entries:
			if len ( entry.name ) <= len ( self.suffix ) or not entry.name.endswith ( self.suffix ):
				continue
			try:
				if not entry.is_file ( follow_symlinks = False ):
					continue
				size = entry.stat ( follow_symlinks = False ).st_size
			except OSError as e: # vanished while we were looking at it
				log.debug ( f'skipping {entry.name!r}: {e!r}' )
				continue
			messages.messages.append ( Message ( Path ( entry.path ), size ) )
		return messages

	def _makedirs ( self, path: Path ) -> bool:
		log = logger.getChild ( 'MailStore._makedirs' )
		try:
			path.mkdir ( parents = True, exist_ok = True )
		except OSError as e:
			log.warning ( f'unable to create {str(path)!r}: {e!r}' )
			return False
		return True

	def deliver ( self, source: Union[str,os.PathLike], recipients: Iterable[str] ) -> None:
		log = logger.getChild ( 'MailStore.deliver' )
		self._makedirs ( self.basedir ) # failure here just means every recipient below fails too
		for mailbox in recipients:
			path = self.mailbox_path ( mailbox )
			if path is None:
				log.warning ( f'not delivering to invalid {mailbox=}' )
				continue
			if not self._makedirs ( path ):
				continue
			n = 0
			while True:
				target = path / f'{n}{self.suffix}'
				try:
					os.link ( source, target )
				except FileExistsError:
					n += 1
					continue
				except OSError as e:
					log.warning ( f'unable to deliver to {mailbox=}: {e!r}' )
				else:
					log.debug ( f'delivered to {str(target)!r}' )
				break

	@contextlib.contextmanager
	def temporary_message ( self, chunks: Iterable[bytes] ) -> Iterator[Path]:
		self.basedir.mkdir ( parents = True, exist_ok = True )
		fd, name = tempfile.mkstemp ( prefix = '.tmp', dir = self.basedir )
		path = Path ( name )
		try:
			with os.fdopen ( fd, 'wb' ) as f:
				for chunk in chunks:
					f.write ( chunk )
			yield path
		finally:
			with contextlib.suppress ( FileNotFoundError ):
				path.unlink()

	def deliver_message ( self, chunks: Iterable[bytes], recipients: Iterable[str] ) -> None:
		# raises: OSError if the temporary file can't be written
		with self.temporary_message ( chunks ) as path:
			self.deliver ( path, recipients )

	def release ( self, messages: MessageList ) -> None:
		log = logger.getChild ( 'MailStore.release' )
		assert not messages.released, f'{messages!r} already released'
		for message in messages.messages:
			if message.deleted:
				try:
					message.path.unlink()
				except OSError as e:
					log.warning ( f'unable to remove {str(message.path)!r}: {e!r}' )
		messages.messages = []
		messages.released = True
