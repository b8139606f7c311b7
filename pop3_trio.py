from __future__ import annotations

# python imports:
import logging
from typing import Any, BinaryIO, Optional as Opt, Type
import trio # pip install trio

# mailproto imports:
from mailstore import MailStore, Message, MessageList
import pop3_async
from transport_trio import TrioTransport as Transport
from userfile import UserFile

logger = logging.getLogger ( __name__ )


class Server ( pop3_async.Server ):
	@classmethod
	def from_stream ( cls: Type[Server],
		stream: trio.abc.Stream,
		server_hostname: str,
		users: UserFile,
		store: MailStore,
	) -> Server:
		transport = Transport ( stream )
		return cls ( transport, server_hostname, users, store )

	async def list_messages ( self, maildrop: str ) -> MessageList:
		return await trio.to_thread.run_sync ( self.store.list_mailbox_messages, maildrop )

	async def open_content ( self, message: Message ) -> BinaryIO:
		return await trio.to_thread.run_sync ( message.open_content )

	async def read_block ( self, content: BinaryIO, maxbytes: int ) -> bytes:
		return await trio.to_thread.run_sync ( content.read, maxbytes )

	async def release_messages ( self, messages: MessageList ) -> None:
		# a cancelled session still has to remove what it deleted
		with trio.CancelScope ( shield = True ):
			await trio.to_thread.run_sync ( self.store.release, messages )


async def serve (
	port: int,
	users: UserFile,
	store: MailStore,
	server_hostname: str,
	*,
	host: Opt[str] = None,
	servercls: Type[Server] = Server,
	task_status: Any = trio.TASK_STATUS_IGNORED,
) -> None:
	log = logger.getChild ( 'serve' )

	async def handler ( stream: trio.SocketStream ) -> None:
		log.debug ( 'connection accepted' )
		await servercls.from_stream ( stream, server_hostname, users, store ).run()

	await trio.serve_tcp ( handler, port, host = host, task_status = task_status )
