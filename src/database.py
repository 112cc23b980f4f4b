#!/usr/bin/env python3

import logging

import psycopg2 # `sudo pip3 install psycopg2-binary`
import psycopg2.extras

PREFIX_PLACEHOLDER = '#__'

class Database: # pylint: disable=too-few-public-methods
	'''
	Adapter for the host site's database.
	Use it as a context manager:

	`with Database('dbname=cms', 'jos_').connect() as db:
		for i in db.read('SELECT * FROM #__extensions'):
			print(i['extension_id'], i['element'])`

	Table names are written with the `#__` placeholder,
	which is replaced with the site's table prefix.
	The placeholder is replaced everywhere in the query,
	so don't put `#__` into string literals.

	Documentation of the psycopg python module:
	https://www.psycopg.org/docs/
	'''

	def __init__(self, connection_string, prefix=''):
		self._connection_string = connection_string
		self._prefix = prefix

	def connect(self):
		return Connection(self._connection_string, self._prefix)

class Connection:

	def __init__(self, connection_string, prefix=''):
		self._connection = psycopg2.connect(connection_string)
		self._cursor = self._connection.cursor(cursor_factory=psycopg2.extras.DictCursor)
		self._prefix = prefix
		self.written = False

	def __enter__(self):
		return self

	def __exit__(self, exc_type, exc_val, exc_tb):
		if self.written:
			if exc_type: # do not commit on exception
				logging.error('exception during transaction', exc_info=True)
				self._connection.rollback()
			else:
				self._connection.commit()
		self._cursor.close()
		self._connection.close()

	def replace_prefix(self, query):
		return query.replace(PREFIX_PLACEHOLDER, self._prefix)

	def _get_row_iterator(self):
		while True:
			row = self._cursor.fetchone()
			if row is None:
				break
			yield row

	def read(self, query, **args):
		self._cursor.execute(self.replace_prefix(query), args)
		return self._get_row_iterator()

	def read_one(self, query, **args):
		for i in self.read(query, **args):
			return i

	def write(self, cmd, **args):
		self._cursor.execute(self.replace_prefix(cmd), args)
		self.written = True

	def write_read_one(self, query, **args):
		self.written = True
		return self.read_one(query, **args)
