# system imports:
from functools import partial
import logging
from pathlib import Path
import sys
import tempfile
import trio # pip install trio
import trio.testing
import unittest

if __name__ == '__main__': # pragma: no cover
	sys.path.append ( str ( Path ( __file__ ).parent.parent.absolute() ) )

# mailproto imports:
from mailstore import MailStore
import smtp_proto as proto
import smtp_trio
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
		( tmp / 'users.txt' ).write_text ( 'zaphod beeblebrox\narthur dent\n' )
		self.users = UserFile ( tmp / 'users.txt' )
		self.store = MailStore ( tmp / 'mail' )

	def tearDown ( self ) -> None:
		self._tmp.cleanup()

	def mailbox ( self, name: str ) -> list:
		return sorted ( p.read_bytes() for p in ( self.store.basedir / name ).iterdir() )

	def test_client_server ( self ) -> None:
		test = self

		async def _test() -> None:
			# an event the server has no handler for is an internal error and ends the session
			class PrintMoneyEvent ( proto.Event ):
				pass
			@proto.request_verb ( 'XMNY' )
			class PrintMoneyRequest ( proto.Request ):
				def server_protocol ( self, server: proto.Server, argtext: str ) -> proto.RequestProtocolGenerator:
					with test.assertRaises ( AttributeError ):
						try:
							yield PrintMoneyEvent()
						except AttributeError as e:
							test.assertEqual ( e.args[0], "'Server' object has no attribute 'on_PrintMoneyEvent'" )
							raise
					raise proto.ResponseEvent ( 421, 'printer out of ink' )

			thing1, thing2 = trio.testing.memory_stream_pair()
			srv = smtp_trio.Server.from_stream ( thing2, HOSTNAME, test.users, test.store )
			try:
				async with trio.open_nursery() as nursery:
					nursery.start_soon ( srv.run )
					data = await converse ( thing1,
						b'EHLO heart-of-gold\r\n'
						b'MAIL FROM:<trillian@heart-of-gold>\r\n'
						b'RCPT TO:<zaphod@milliways.local>\r\n'
						b'RCPT TO:<arthur@milliways.local>\r\n'
						b'DATA\r\n'
						b'So long\r\n'
						b'..and thanks for all the fish\r\n'
						b'.\r\n'
						b'XMNY\r\n'
						b'QUIT\r\n'
					)
			finally:
				del proto._request_verbs['XMNY']
			test.assertEqual ( data.split ( b'\r\n' ), [
				f'220 {HOSTNAME} Simple Mail Transfer Service Ready'.encode(),
				f'250-{HOSTNAME} greets heart-of-gold'.encode(),
				b'250 8BITMIME',
				b'250 OK',
				b'250 OK',
				b'250 OK',
				b'354 Start mail input; end with <CRLF>.<CRLF>',
				b'250 OK',
				b'421 printer out of ink',
				f'221 {HOSTNAME} Service closing transmission channel'.encode(),
				b'',
			] )
		trio.run ( _test )
		body = b'So long\r\n.and thanks for all the fish\r\n'
		self.assertEqual ( self.mailbox ( 'zaphod' ), [ body ] )
		self.assertEqual ( self.mailbox ( 'arthur' ), [ body ] )

	def test_serve ( self ) -> None:
		test = self

		async def _test() -> None:
			async with trio.open_nursery() as nursery:
				listeners = await nursery.start ( partial ( smtp_trio.serve,
					0, test.users, test.store, HOSTNAME, host = '127.0.0.1',
				) )
				streams = [
					await trio.testing.open_stream_to_socket_listener ( listeners[0] )
					for _ in range ( 3 )
				]
				async def submit ( n: int, stream: trio.abc.Stream ) -> None:
					await converse ( stream,
						b'HELO client\r\n'
						b'MAIL FROM:<x@y>\r\n'
						b'RCPT TO:<arthur@z>\r\n'
						b'DATA\r\n'
						+ f'message {n}\r\n'.encode() +
						b'.\r\n'
						b'QUIT\r\n'
					)
					await stream.aclose()
				async with trio.open_nursery() as clients:
					for n, stream in enumerate ( streams ):
						clients.start_soon ( submit, n, stream )
				nursery.cancel_scope.cancel()
		trio.run ( _test )
		self.assertEqual ( self.mailbox ( 'arthur' ), [ b'message 0\r\n', b'message 1\r\n', b'message 2\r\n' ] )

if __name__ == '__main__':
	logging.basicConfig ( level = logging.DEBUG )
	unittest.main()
