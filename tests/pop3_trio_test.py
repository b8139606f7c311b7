# system imports:
from functools import partial
import logging
from pathlib import Path
import sys
import tempfile
import threading
from typing import List
import trio # pip install trio
import trio.testing
import unittest

if __name__ == '__main__': # pragma: no cover
	sys.path.append ( str ( Path ( __file__ ).parent.parent.absolute() ) )

# mailproto imports:
from mailstore import MailStore, MessageList
import pop3_trio
from userfile import UserFile

logger = logging.getLogger ( __name__ )

HOSTNAME = 'milliways.local'


async def converse ( stream: trio.abc.Stream, commands: bytes ) -> bytes:
	# send everything up front, then collect replies until the server hangs up
	await stream.send_all ( commands )
	data = b''
	while ( chunk := await stream.receive_some() ):
		data += chunk
	return data


class Tests ( unittest.TestCase ):
	def setUp ( self ) -> None:
		self._tmp = tempfile.TemporaryDirectory()
		tmp = Path ( self._tmp.name )
		( tmp / 'users.txt' ).write_text ( 'zaphod beeblebrox\n' )
		self.users = UserFile ( tmp / 'users.txt' )
		self.store = MailStore ( tmp / 'mail' )
		( self.store.basedir / 'zaphod' ).mkdir ( parents = True )
		( self.store.basedir / 'zaphod' / '0.mail' ).write_bytes ( b'Subject: towel\r\n\r\nDon\'t panic.\r\n' )

	def tearDown ( self ) -> None:
		self._tmp.cleanup()

	def test_client_server ( self ) -> None:
		test = self

		async def _test() -> None:
			thing1, thing2 = trio.testing.memory_stream_pair()
			srv = pop3_trio.Server.from_stream ( thing2, HOSTNAME, test.users, test.store )
			async with trio.open_nursery() as nursery:
				nursery.start_soon ( srv.run )
				data = await converse ( thing1,
					b'USER zaphod\r\n'
					b'PASS beeblebrox\r\n'
					b'RETR 1\r\n'
					b'DELE 1\r\n'
					b'QUIT\r\n'
				)
			test.assertEqual ( data.split ( b'\r\n' ), [
				b'+OK POP3 server ready',
				b'+OK zaphod is a valid mailbox',
				b'+OK maildrop has 1 message (32 octets)',
				b'+OK 32 octets',
				b'Subject: towel',
				b'',
				b'Don\'t panic.',
				b'.',
				b'+OK message 1 deleted',
				b'+OK POP3 server signing off',
				b'',
			] )
		trio.run ( _test )
		self.assertEqual ( list ( ( self.store.basedir / 'zaphod' ).iterdir() ), [] )

	def test_store_io_off_event_loop ( self ) -> None:
		test = self
		threads: List[str] = []

		class RecordingStore ( MailStore ):
			def list_mailbox_messages ( self, mailbox: str ) -> MessageList:
				threads.append ( threading.current_thread().name )
				return super().list_mailbox_messages ( mailbox )

			def release ( self, messages: MessageList ) -> None:
				threads.append ( threading.current_thread().name )
				super().release ( messages )

		store = RecordingStore ( self.store.basedir )

		async def _test() -> None:
			loop_thread = threading.current_thread().name
			thing1, thing2 = trio.testing.memory_stream_pair()
			srv = pop3_trio.Server.from_stream ( thing2, HOSTNAME, test.users, store )
			async with trio.open_nursery() as nursery:
				nursery.start_soon ( srv.run )
				data = await converse ( thing1, b'USER zaphod\r\nPASS beeblebrox\r\nDELE 1\r\nQUIT\r\n' )
			test.assertEqual ( data.split ( b'\r\n' )[3], b'+OK message 1 deleted' )
			test.assertEqual ( len ( threads ), 2 )
			test.assertNotIn ( loop_thread, threads )
		trio.run ( _test )
		self.assertEqual ( list ( ( self.store.basedir / 'zaphod' ).iterdir() ), [] )

	def test_serve ( self ) -> None:
		test = self

		async def _test() -> None:
			async with trio.open_nursery() as nursery:
				listeners = await nursery.start ( partial ( pop3_trio.serve,
					0, test.users, test.store, HOSTNAME, host = '127.0.0.1',
				) )
				# two sessions at once, on the same mailbox
				stream1 = await trio.testing.open_stream_to_socket_listener ( listeners[0] )
				stream2 = await trio.testing.open_stream_to_socket_listener ( listeners[0] )
				data1 = await converse ( stream1, b'USER zaphod\r\nPASS beeblebrox\r\nSTAT\r\nQUIT\r\n' )
				data2 = await converse ( stream2, b'USER ZAPHOD\r\nPASS nope\r\nQUIT\r\n' )
				await stream1.aclose()
				await stream2.aclose()
				nursery.cancel_scope.cancel()
			test.assertEqual ( data1.split ( b'\r\n' )[3], b'+OK 1 32' )
			test.assertEqual ( data2.split ( b'\r\n' )[2], b'-ERR Authentication failed' )
		trio.run ( _test )

if __name__ == '__main__':
	logging.basicConfig ( level = logging.DEBUG )
	unittest.main()
