from __future__ import annotations

# python imports:
import logging
import os
from pathlib import Path
from typing import Dict, Union

logger = logging.getLogger ( __name__ )


class UserFile:
	'''
	Username/password lookups backed by a plain text file with one
	"username password" pair per line (whitespace separated).

	Usernames are case-insensitive, passwords are case-sensitive. If a
	username appears more than once, the first entry wins.

	Construct one of these at startup and hand it to every server; it is
	never modified after load(), so sessions can share it freely.
	'''
	def __init__ ( self, path: Union[str,os.PathLike] ) -> None:
		self.path = Path ( path )
		self._passwords: Dict[str,str] = {}
		self.load()

	def load ( self ) -> None:
		log = logger.getChild ( 'UserFile.load' )
		passwords: Dict[str,str] = {}
		try:
			text = self.path.read_text ( encoding = 'utf-8' )
		except OSError as e:
			log.warning ( f'unable to read {str(self.path)!r}: {e!r}' )
			text = ''
		for line in text.splitlines():
			uid, *rest = line.split() or [ '' ]
			if not rest:
				continue
			passwords.setdefault ( uid.lower(), rest[0] )
		self._passwords = passwords
		log.debug ( f'loaded {len(passwords)} user(s) from {str(self.path)!r}' )

	def exists ( self, username: str ) -> bool:
		return username.lower() in self._passwords

	def authenticate ( self, username: str, password: str ) -> bool:
		expected = self._passwords.get ( username.lower() )
		return expected is not None and expected == password
