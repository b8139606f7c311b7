from __future__ import annotations

# python imports:
import logging
import trio # pip install trio

# mailproto imports:
from transport import AsyncTransport, DEFAULT_READ_SIZE
from util import BYTES

logger = logging.getLogger ( __name__ )


class TrioTransport ( AsyncTransport ):
	stream: trio.abc.Stream

	def __init__ ( self, stream: trio.abc.Stream ) -> None:
		self.stream = stream

	async def read ( self, maxbytes: int = DEFAULT_READ_SIZE ) -> bytes:
		#log = logger.getChild ( 'TrioTransport.read' )
		try:
			return await self.stream.receive_some ( maxbytes )
		except ( trio.BrokenResourceError, trio.ClosedResourceError ) as e:
			raise ConnectionError ( repr ( e ) ) from e

	async def write ( self, data: BYTES ) -> None:
		#log = logger.getChild ( 'TrioTransport.write' )
		try:
			await self.stream.send_all ( data )
		except ( trio.BrokenResourceError, trio.ClosedResourceError ) as e:
			raise ConnectionError ( repr ( e ) ) from e

	async def close ( self ) -> None:
		#log = logger.getChild ( 'TrioTransport.close' )
		with trio.move_on_after ( 0.05 ):
			await self.stream.aclose()
