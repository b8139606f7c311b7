# system imports:
import logging
from typing import BinaryIO

# mailproto imports:
from event_handling import AsyncServer
from mailstore import MailStore, Message, MessageList
import pop3_proto as proto
from transport import AsyncTransport
from userfile import UserFile

logger = logging.getLogger ( __name__ )


class Server ( AsyncServer ):
	protocls = proto.Server

	def __init__ ( self,
		transport: AsyncTransport,
		server_hostname: str,
		users: UserFile,
		store: MailStore,
	) -> None:
		super().__init__ ( transport, server_hostname )
		self.users = users
		self.store = store

	# override these to move the file i/o off of the event loop:

	async def list_messages ( self, maildrop: str ) -> MessageList:
		return self.store.list_mailbox_messages ( maildrop )

	async def open_content ( self, message: Message ) -> BinaryIO:
		return message.open_content()

	async def read_block ( self, content: BinaryIO, maxbytes: int ) -> bytes:
		return content.read ( maxbytes )

	async def release_messages ( self, messages: MessageList ) -> None:
		self.store.release ( messages )

	async def on_GreetingAcceptEvent ( self, event: proto.GreetingAcceptEvent ) -> None:
		# implementations only need to override this if they want to change the behavior
		event.accept()

	async def on_UserEvent ( self, event: proto.UserEvent ) -> None:
		if self.users.exists ( event.uid ):
			event.accept()
		else:
			event.reject()

	async def on_UserPassEvent ( self, event: proto.UserPassEvent ) -> None:
		if self.users.authenticate ( event.uid, event.pwd ):
			event.accept()
		else:
			event.reject()

	async def on_LockMaildropEvent ( self, event: proto.LockMaildropEvent ) -> None:
		event.accept ( await self.list_messages ( event.maildrop ) )

	async def on_RetrEvent ( self, event: proto.RetrEvent ) -> None:
		log = logger.getChild ( 'Server.on_RetrEvent' )
		try:
			content = await self.open_content ( event.message )
		except OSError as e:
			log.warning ( f'unable to open {event.message!r}: {e!r}' )
			event.reject()
		else:
			event.accept ( content )

	async def on_ReadContentEvent ( self, event: proto.ReadContentEvent ) -> None:
		event.data = await self.read_block ( event.content, event.maxbytes )

	async def on_UnlockMaildropEvent ( self, event: proto.UnlockMaildropEvent ) -> None:
		await self.release_messages ( event.messages )
