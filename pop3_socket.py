from __future__ import annotations

# python imports:
import socket
from typing import Type

# mailproto imports:
from mailstore import MailStore
import pop3_sync
from transport_socket import SocketTransport as Transport
from userfile import UserFile

class Server ( pop3_sync.Server ):
	@classmethod
	def from_stream ( cls: Type[Server],
		sock: socket.socket,
		server_hostname: str,
		users: UserFile,
		store: MailStore,
	) -> Server:
		transport = Transport ( sock )
		return cls ( transport, server_hostname, users, store )
