# python imports:
from typing import List, Sequence as Seq, Union

# mailproto imports:
import transport
from util import BYTES

STEP = Union[bytes,Exception]


class ScriptTransport ( transport.SyncTransport ):
	'''
	Plays back a fixed list of reads and records every write.

	Each step is either a chunk of bytes to hand out (split across reads if
	the reader asks for less) or an exception to raise. Once the script runs
	out, reads return b'' (end of stream).
	'''
	def __init__ ( self, *steps: STEP ) -> None:
		self.steps: List[STEP] = list ( steps )
		self.reads: List[int] = []
		self.written: List[bytes] = []
		self.closed = False

	def read ( self, maxbytes: int = transport.DEFAULT_READ_SIZE ) -> bytes:
		self.reads.append ( maxbytes )
		if not self.steps:
			return b''
		step = self.steps[0]
		if isinstance ( step, Exception ):
			self.steps.pop ( 0 )
			raise step
		data, rest = step[:maxbytes], step[maxbytes:]
		if rest:
			self.steps[0] = rest
		else:
			self.steps.pop ( 0 )
		return data

	def write ( self, data: BYTES ) -> None:
		self.written.append ( bytes ( data ) )

	def close ( self ) -> None:
		self.closed = True

	@property
	def output ( self ) -> bytes:
		return b''.join ( self.written )

	def output_lines ( self ) -> Seq[str]:
		return self.output.decode ( 'us-ascii' ).split ( '\r\n' )[:-1]


class AsyncScriptTransport ( transport.AsyncTransport ):
	def __init__ ( self, *steps: STEP ) -> None:
		self.sync = ScriptTransport ( *steps )

	async def read ( self, maxbytes: int = transport.DEFAULT_READ_SIZE ) -> bytes:
		return self.sync.read ( maxbytes )

	async def write ( self, data: BYTES ) -> None:
		self.sync.write ( data )

	async def close ( self ) -> None:
		self.sync.close()
