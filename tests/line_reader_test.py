# python imports:
import logging
from pathlib import Path
import sys
import trio # pip install trio
import unittest

if __name__ == '__main__': # pragma: no cover
	sys.path.append ( str ( Path ( __file__ ).parent.parent.absolute() ) )

# mailproto imports:
from base_proto import Closed
import line_reader
from tests.scripted import AsyncScriptTransport, ScriptTransport

logger = logging.getLogger ( __name__ )

class Tests ( unittest.TestCase ):
	def test_lines_split_across_reads ( self ) -> None:
		xport = ScriptTransport ( b'USER fo', b'o\r\nPASS b', b'ar\r\nNOOP\r\nQUIT\r\n' )
		reader = line_reader.SyncLineReader ( xport, 64 )
		self.assertEqual ( reader.read_line(), b'USER foo\r\n' )
		self.assertEqual ( reader.read_line(), b'PASS bar\r\n' )
		self.assertEqual ( reader.read_line(), b'NOOP\r\n' )
		self.assertEqual ( reader.read_line(), b'QUIT\r\n' )
		with self.assertRaises ( Closed ):
			reader.read_line()

	def test_reads_never_exceed_room ( self ) -> None:
		xport = ScriptTransport ( b'abc', b'defgh\n' )
		reader = line_reader.SyncLineReader ( xport, 16 )
		self.assertEqual ( reader.read_line(), b'abcdefgh\n' )
		self.assertEqual ( xport.reads, [ 16, 13 ] )

	def test_oversized_line ( self ) -> None:
		xport = ScriptTransport ( b'X' * 25 + b'\r\n' )
		reader = line_reader.SyncLineReader ( xport, 10 )
		self.assertEqual ( reader.capacity, 10 )
		line = reader.read_line()
		self.assertEqual ( line, b'X' * 10 )
		self.assertTrue ( line_reader.is_truncated ( line ) )
		self.assertEqual ( reader.read_line(), b'X' * 10 )
		line = reader.read_line()
		self.assertEqual ( line, b'XXXXX\r\n' )
		self.assertFalse ( line_reader.is_truncated ( line ) )

	def test_unterminated_tail ( self ) -> None:
		xport = ScriptTransport ( b'one\r\ntwo' )
		reader = line_reader.SyncLineReader ( xport, 64 )
		self.assertEqual ( reader.read_line(), b'one\r\n' )
		tail = reader.read_line()
		self.assertEqual ( tail, b'two' )
		self.assertTrue ( line_reader.is_truncated ( tail ) )
		with self.assertRaises ( Closed ):
			reader.read_line()

	def test_bare_lf_and_binary ( self ) -> None:
		xport = ScriptTransport ( b'\xff\x00a\nb\r\n' )
		reader = line_reader.SyncLineReader ( xport, 64 )
		self.assertEqual ( reader.read_line(), b'\xff\x00a\n' )
		self.assertEqual ( reader.read_line(), b'b\r\n' )

	def test_oserror_propagates ( self ) -> None:
		xport = ScriptTransport ( b'partial', ConnectionResetError ( 'boom' ) )
		reader = line_reader.SyncLineReader ( xport, 64 )
		with self.assertRaises ( ConnectionResetError ):
			reader.read_line()

	def test_line_buffer ( self ) -> None:
		buf = line_reader.LineBuffer ( 8 )
		self.assertEqual ( buf.room(), 8 )
		buf.feed ( b'ab\ncd' )
		self.assertEqual ( len ( buf ), 5 )
		self.assertEqual ( buf.take_line(), b'ab\n' )
		self.assertIsNone ( buf.take_line() )
		self.assertEqual ( buf.room(), 6 )
		self.assertEqual ( buf.take_rest(), b'cd' )
		self.assertEqual ( len ( buf ), 0 )
		with self.assertRaises ( AssertionError ):
			buf.feed ( b'123456789' )

	def test_async_reader ( self ) -> None:
		async def _test() -> None:
			xport = AsyncScriptTransport ( b'HELO x\r', b'\nDATA', b'\r\n' + b'Y' * 12 )
			reader = line_reader.AsyncLineReader ( xport, 8 )
			self.assertEqual ( await reader.read_line(), b'HELO x\r\n' )
			self.assertEqual ( await reader.read_line(), b'DATA\r\n' )
			self.assertEqual ( await reader.read_line(), b'Y' * 8 )
			self.assertEqual ( await reader.read_line(), b'Y' * 4 )
			with self.assertRaises ( Closed ):
				await reader.read_line()
		trio.run ( _test )

if __name__ == '__main__':
	logging.basicConfig ( level = logging.DEBUG )
	unittest.main()
