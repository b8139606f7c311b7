from __future__ import annotations

# python imports:
import logging
import socket

# mailproto imports:
from transport import SyncTransport, DEFAULT_READ_SIZE
from util import BYTES

logger = logging.getLogger ( __name__ )


class SocketTransport ( SyncTransport ):
	sock: socket.socket

	def __init__ ( self, sock: socket.socket ) -> None:
		self.sock = sock

	def read ( self, maxbytes: int = DEFAULT_READ_SIZE ) -> bytes:
		#log = logger.getChild ( 'SocketTransport.read' )
		return self.sock.recv ( maxbytes )

	def write ( self, data: BYTES ) -> None:
		#log = logger.getChild ( 'SocketTransport.write' )
		self.sock.sendall ( data )

	def close ( self ) -> None:
		#log = logger.getChild ( 'SocketTransport.close' )
		self.sock.close()
