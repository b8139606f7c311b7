# system imports:
import logging

# mailproto imports:
from event_handling import SyncServer
from mailstore import MailStore
import smtp_proto as proto
from transport import SyncTransport
from userfile import UserFile

logger = logging.getLogger ( __name__ )


class Server ( SyncServer ):
	protocls = proto.Server

	def __init__ ( self,
		transport: SyncTransport,
		server_hostname: str,
		users: UserFile,
		store: MailStore,
	) -> None:
		super().__init__ ( transport, server_hostname )
		self.users = users
		self.store = store

	def on_GreetingAcceptEvent ( self, event: proto.GreetingAcceptEvent ) -> None:
		# implementations only need to override this if they want to change the behavior
		event.accept()

	def on_MailFromEvent ( self, event: proto.MailFromEvent ) -> None:
		# any syntactically valid sender is fine
		event.accept()

	def on_RcptToEvent ( self, event: proto.RcptToEvent ) -> None:
		if self.users.exists ( event.mailbox ):
			event.accept()
		else:
			event.reject()

	def on_VrfyEvent ( self, event: proto.VrfyEvent ) -> None:
		if self.users.exists ( event.mailbox ):
			event.accept()
		else:
			event.reject()

	def on_CompleteEvent ( self, event: proto.CompleteEvent ) -> None:
		log = logger.getChild ( 'Server.on_CompleteEvent' )
		try:
			self.store.deliver_message ( event.data, event.mailboxes )
		except OSError as e:
			log.warning ( f'unable to spool message from {event.mail_from!r}: {e!r}' )
			event.reject()
		else:
			event.accept()
