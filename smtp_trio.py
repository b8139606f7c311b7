from __future__ import annotations

# python imports:
import logging
from typing import Any, Optional as Opt, Sequence as Seq, Type
import trio # pip install trio

# mailproto imports:
from mailstore import MailStore
import smtp_async
from transport_trio import TrioTransport as Transport
from userfile import UserFile

logger = logging.getLogger ( __name__ )


class Server ( smtp_async.Server ):
	@classmethod
	def from_stream ( cls: Type[Server],
		stream: trio.abc.Stream,
		server_hostname: str,
		users: UserFile,
		store: MailStore,
	) -> Server:
		transport = Transport ( stream )
		return cls ( transport, server_hostname, users, store )

	async def deliver_message ( self, data: Seq[bytes], mailboxes: Seq[str] ) -> None:
		await trio.to_thread.run_sync ( self.store.deliver_message, data, mailboxes )


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
