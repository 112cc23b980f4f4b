#!/usr/bin/env python3

'''
Downloads a fresh copy of the GeoLite2 database and puts it where
GeoIpProvider will find it.

MaxMind publishes new GeoLite2 data on the first Tuesday of each month,
and rate-limits downloads per IP address. When that happens the server
answers with a short text message instead of the gzipped database,
sometimes with a 200 status code, so the content has to be checked too.

The replacement is not atomic: the old file is deleted before the new
one is written. If the process dies in between, there is no database
until the next successful update, and lookups return UNAVAILABLE.
'''

import gzip
import http.client
import logging
import os
import tempfile
import urllib.error
import urllib.request
import zlib

import geoip2.database # `sudo pip3 install geoip2`

import geoip
import language

DOWNLOAD_URL_PATTERN = 'https://geolite.maxmind.com/download/geoip/database/GeoLite2-%s.mmdb.gz'

RATE_LIMIT_MARKER = b'Rate limited exceeded'

MIN_DATABASE_SIZE = 2**20 # 1 MB; anything smaller is an error page

TIER_COUNTRY = 'Country'
TIER_CITY = 'City'

class UpdateError(Exception):
	KEY = None

	def message(self, lang):
		return lang.text(self.KEY, *self.args)

class DownloadFailed(UpdateError):
	KEY = 'ERR_DOWNLOAD'

class EmptyResponse(UpdateError):
	KEY = 'ERR_EMPTY_RESPONSE'

class RateLimited(UpdateError):
	KEY = 'ERR_RATE_LIMITED'

class InvalidDatabase(UpdateError):
	KEY = 'ERR_INVALID_DATABASE'

class DeleteFailed(UpdateError):
	KEY = 'ERR_CANNOT_DELETE'

class WriteFailed(UpdateError):
	KEY = 'ERR_CANNOT_WRITE'

class Downloader: # pylint: disable=too-few-public-methods

	USER_AGENT = 'akgeoip/1.0'

	def __init__(self, timeout=60):
		self._timeout = timeout

	def fetch(self, url):
		'''Returns (status, body). Does not raise for HTTP error codes,
		but does raise OSError if the server cannot be reached,
		and http.client.HTTPException if the connection breaks.'''
		logging.info('Downloading "%s"...', url)
		request = urllib.request.Request(url, headers={'User-Agent': self.USER_AGENT})
		try:
			with urllib.request.urlopen(request, timeout=self._timeout) as f:
				return f.status, f.read()
		except urllib.error.HTTPError as e:
			return e.code, e.read()

def get_filename(tier):
	return geoip.CITY_FILENAME if tier == TIER_CITY else geoip.COUNTRY_FILENAME

def _write_temp(filename, data):
	try:
		with open(filename, 'wb') as f:
			f.write(data)
	except OSError as e:
		raise WriteFailed(filename) from e

class DatabaseUpdater:
	# pylint: disable=too-many-arguments

	def __init__(self, data_path, provider=None, downloader=None, url_pattern=None, min_size=None, lang=None, tmp_path=None):
		self._data_path = data_path
		self._provider = provider
		self._downloader = downloader or Downloader()
		self._url_pattern = url_pattern or DOWNLOAD_URL_PATTERN
		self._min_size = MIN_DATABASE_SIZE if min_size is None else min_size
		self._language = lang or language.Language()
		self._tmp_path = tmp_path

	def get_tier(self, force_city=False):
		'''Once the City database is installed we stick with it.'''
		if force_city or os.path.isfile(os.path.join(self._data_path, geoip.CITY_FILENAME)):
			return TIER_CITY
		return TIER_COUNTRY

	def update(self, force_city=False):
		'''Returns (True, None) on success, (False, message) otherwise.'''
		tier = self.get_tier(force_city)
		try:
			self._update(tier)
		except UpdateError as e:
			message = e.message(self._language)
			logging.error('GeoLite2 %s update failed: %s', tier, message)
			return False, message

		logging.info('GeoLite2 %s database updated.', tier)
		if self._provider is not None:
			self._provider.clear()
		return True, None

	def _update(self, tier):
		data = self._download(tier)

		try:
			tmp_dir = tempfile.TemporaryDirectory(prefix='akgeoip-', dir=self._tmp_path)
		except OSError as e:
			raise WriteFailed(self._tmp_path or tempfile.gettempdir()) from e

		with tmp_dir:
			data = self._unpack(os.path.join(tmp_dir.name, get_filename(tier)), data)

		if len(data) < self._min_size or RATE_LIMIT_MARKER in data:
			raise RateLimited()

		self._replace(tier, data)

	def _unpack(self, filename, compressed):
		'''Gunzips next to `filename` and checks the result
		with the same reader the lookups use.'''
		_write_temp(filename + '.gz', compressed)

		try:
			with gzip.open(filename + '.gz', 'rb') as f:
				data = f.read()
		except (OSError, EOFError, zlib.error) as e:
			raise InvalidDatabase() from e

		_write_temp(filename, data)
		self._validate(filename)
		return data

	def _download(self, tier):
		url = self._url_pattern % tier
		try:
			status, body = self._downloader.fetch(url)
		except (OSError, http.client.HTTPException) as e:
			raise DownloadFailed(tier, e) from e

		if status >= 400:
			raise DownloadFailed(tier, 'HTTP %s' % status)
		if not body:
			raise EmptyResponse()
		if RATE_LIMIT_MARKER in body:
			raise RateLimited()
		return body

	@staticmethod
	def _validate(filename):
		try:
			reader = geoip2.database.Reader(filename)
		except Exception as e: # pylint: disable=broad-except
			raise InvalidDatabase() from e
		reader.close()

	def _replace(self, tier, data):
		target = os.path.join(self._data_path, get_filename(tier))

		obsolete = [target]
		if tier == TIER_CITY:
			obsolete.append(os.path.join(self._data_path, get_filename(TIER_COUNTRY)))

		for filename in obsolete:
			if os.path.exists(filename):
				logging.info('Deleting "%s".', filename)
				try:
					os.remove(filename)
				except OSError as e:
					raise DeleteFailed(filename) from e

		try:
			os.makedirs(self._data_path, exist_ok=True)
			with open(target, 'wb') as f:
				f.write(data)
		except OSError as e:
			raise WriteFailed(target) from e
