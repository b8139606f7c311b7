'''
Buffered line framing on top of a transport.

Both protocols are line oriented, but TCP hands us arbitrary segments. The
readers here keep a bounded cache of received bytes and hand back one line
at a time:

* a line is everything up to and including the first LF
* if the cache fills up without an LF, the whole cache comes back as a
  truncated line (check with is_truncated())
* unterminated bytes left over at end of stream come back as a final
  truncated line
* end of stream with nothing cached raises Closed('EOF')
* transport errors (OSError) propagate untouched

The readers never look at what's inside a line.
'''
from __future__ import annotations

# python imports:
import logging
from typing import Optional as Opt

# mailproto imports:
from base_proto import Closed
from transport import AsyncTransport, SyncTransport
from util import BYTES

logger = logging.getLogger ( __name__ )


def is_truncated ( line: BYTES ) -> bool:
	return bytes ( line[-1:] ) != b'\n'


class LineBuffer:
	def __init__ ( self, capacity: int ) -> None:
		assert isinstance ( capacity, int ) and capacity > 0, f'invalid {capacity=}'
		self.capacity = capacity
		self._buf = bytearray()

	def __len__ ( self ) -> int:
		return len ( self._buf )

	def room ( self ) -> int:
		return self.capacity - len ( self._buf )

	def feed ( self, data: BYTES ) -> None:
		assert len ( data ) <= self.room(), f'{len(data)=} overflows {self.room()=}'
		self._buf += data

	def take_line ( self ) -> Opt[bytes]:
		end = self._buf.find ( b'\n' ) + 1
		if not end:
			if len ( self._buf ) < self.capacity:
				return None
			end = self.capacity
		line = bytes ( self._buf[:end] )
		del self._buf[:end]
		return line

	def take_rest ( self ) -> bytes:
		line = bytes ( self._buf )
		self._buf.clear()
		return line


class SyncLineReader:
	def __init__ ( self, transport: SyncTransport, capacity: int ) -> None:
		self.transport = transport
		self._cache = LineBuffer ( capacity )

	@property
	def capacity ( self ) -> int:
		return self._cache.capacity

	def read_line ( self ) -> bytes:
		#log = logger.getChild ( 'SyncLineReader.read_line' )
		while ( line := self._cache.take_line() ) is None:
			data = self.transport.read ( self._cache.room() )
			if not data: # EOF indicator
				if self._cache:
					return self._cache.take_rest()
				raise Closed ( 'EOF' )
			self._cache.feed ( data )
		return line


class AsyncLineReader:
	def __init__ ( self, transport: AsyncTransport, capacity: int ) -> None:
		self.transport = transport
		self._cache = LineBuffer ( capacity )

	@property
	def capacity ( self ) -> int:
		return self._cache.capacity

	async def read_line ( self ) -> bytes:
		#log = logger.getChild ( 'AsyncLineReader.read_line' )
		while ( line := self._cache.take_line() ) is None:
			data = await self.transport.read ( self._cache.room() )
			if not data: # EOF indicator
				if self._cache:
					return self._cache.take_rest()
				raise Closed ( 'EOF' )
			self._cache.feed ( data )
		return line
