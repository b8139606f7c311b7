# system imports:
import logging
from typing import Sequence as Seq

# mailproto imports:
from event_handling import AsyncServer
from mailstore import MailStore
import smtp_proto as proto
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

	async def deliver_message ( self, data: Seq[bytes], mailboxes: Seq[str] ) -> None:
		# override this to move the file i/o off of the event loop
		self.store.deliver_message ( data, mailboxes )

	async def on_GreetingAcceptEvent ( self, event: proto.GreetingAcceptEvent ) -> None:
		# implementations only need to override this if they want to change the behavior
		event.accept()

	async def on_MailFromEvent ( self, event: proto.MailFromEvent ) -> None:
		# any syntactically valid sender is fine
		event.accept()

	async def on_RcptToEvent ( self, event: proto.RcptToEvent ) -> None:
		if self.users.exists ( event.mailbox ):
			event.accept()
		else:
			event.reject()

	async def on_VrfyEvent ( self, event: proto.VrfyEvent ) -> None:
		if self.users.exists ( event.mailbox ):
			event.accept()
		else:
			event.reject()

	async def on_CompleteEvent ( self, event: proto.CompleteEvent ) -> None:
		log = logger.getChild ( 'Server.on_CompleteEvent' )
		try:
			await self.deliver_message ( event.data, event.mailboxes )
		except OSError as e:
			log.warning ( f'unable to spool message from {event.mail_from!r}: {e!r}' )
			event.reject()
		else:
			event.accept()
