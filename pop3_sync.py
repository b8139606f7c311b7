# system imports:
import logging

# mailproto imports:
from event_handling import SyncServer
from mailstore import MailStore
import pop3_proto as proto
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

	def on_UserEvent ( self, event: proto.UserEvent ) -> None:
		if self.users.exists ( event.uid ):
			event.accept()
		else:
			event.reject()

	def on_UserPassEvent ( self, event: proto.UserPassEvent ) -> None:
		if self.users.authenticate ( event.uid, event.pwd ):
			event.accept()
		else:
			event.reject()

	def on_LockMaildropEvent ( self, event: proto.LockMaildropEvent ) -> None:
		event.accept ( self.store.list_mailbox_messages ( event.maildrop ) )

	def on_RetrEvent ( self, event: proto.RetrEvent ) -> None:
		log = logger.getChild ( 'Server.on_RetrEvent' )
		try:
			content = event.message.open_content()
		except OSError as e:
			log.warning ( f'unable to open {event.message!r}: {e!r}' )
			event.reject()
		else:
			event.accept ( content )

	def on_ReadContentEvent ( self, event: proto.ReadContentEvent ) -> None:
		event.data = event.content.read ( event.maxbytes )

	def on_UnlockMaildropEvent ( self, event: proto.UnlockMaildropEvent ) -> None:
		self.store.release ( event.messages )
