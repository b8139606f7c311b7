# python imports:
from abc import ABCMeta, abstractmethod
import logging

# mailproto imports:
from util import BYTES

logger = logging.getLogger ( __name__ )

DEFAULT_READ_SIZE = 4096


class Transport ( metaclass = ABCMeta ):
	'''
	A bidirectional byte stream for one connection.

	read() returns at most `maxbytes` bytes, or b'' once the peer has
	closed its side of the connection. I/O failures raise OSError.
	'''


class SyncTransport ( Transport ):
	@abstractmethod
	def read ( self, maxbytes: int = DEFAULT_READ_SIZE ) -> bytes:
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}.read()' )

	@abstractmethod
	def write ( self, data: BYTES ) -> None:
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}.write()' )

	@abstractmethod
	def close ( self ) -> None:
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}.close()' )


class AsyncTransport ( Transport ):
	@abstractmethod
	async def read ( self, maxbytes: int = DEFAULT_READ_SIZE ) -> bytes:
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}.read()' )

	@abstractmethod
	async def write ( self, data: BYTES ) -> None:
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}.write()' )

	@abstractmethod
	async def close ( self ) -> None:
		cls = type ( self )
		raise NotImplementedError ( f'{cls.__module__}.{cls.__name__}.close()' )
