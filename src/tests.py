#!/usr/bin/env python3

import gzip
import http.client
import io
import json
import os
import tempfile
import time
import types
import unittest
import unittest.mock
import urllib.error

import geoip2.errors
from passlib.apps import custom_app_context as pwd_context
import tornado.testing

import akgeoip
import config
import database
import geoip
import geoipupdate
import language
import main
import updatesite

def make_model(iso_code='DE', continent_code='EU', city=None):
	model = types.SimpleNamespace(
		country=types.SimpleNamespace(iso_code=iso_code, names={'en': 'Germany', 'de': 'Deutschland'}),
		continent=types.SimpleNamespace(code=continent_code, names={'en': 'Europe', 'de': 'Europa'}),
	)
	if city is not None:
		model.city = types.SimpleNamespace(names={'en': city, 'de': city})
	return model

class MockReader:

	def __init__(self):
		self.calls = {}
		self.models = {}
		self.error = None

	def _get(self, ip_address):
		if self.error is not None:
			raise self.error # pylint: disable=raising-bad-type
		if ip_address not in self.models:
			raise geoip2.errors.AddressNotFoundError('The address %s is not in the database.' % ip_address)
		return self.models[ip_address]

	def country(self, ip_address):
		self.calls.setdefault('country', []).append(locals())
		return self._get(ip_address)

	def city(self, ip_address):
		self.calls.setdefault('city', []).append(locals())
		return self._get(ip_address)

	def close(self):
		self.calls.setdefault('close', []).append(locals())

	def metadata(self):
		self.calls.setdefault('metadata', []).append(locals())
		return types.SimpleNamespace(database_type='GeoLite2-Country', build_epoch=1500000000, node_count=1000)

class MockDownloader:

	def __init__(self):
		self.calls = {}
		self.status = 200
		self.body = b''
		self.error = None

	def fetch(self, url):
		self.calls.setdefault('fetch', []).append(locals())
		if self.error is not None:
			raise self.error # pylint: disable=raising-bad-type
		return self.status, self.body

class MockProvider:

	def __init__(self):
		self.calls = {}

	def clear(self):
		self.calls.setdefault('clear', []).append(locals())

class MockUpdater:

	def __init__(self):
		self.calls = {}
		self.result = (True, None)
		self.error = None

	def update(self, force_city=False):
		self.calls.setdefault('update', []).append(locals())
		if self.error is not None:
			raise self.error # pylint: disable=raising-bad-type
		return self.result

class MockConnection:
	# pylint: disable=unused-argument

	def __init__(self):
		self.calls = {}
		self.extension_id = 42
		self.sites = []
		self.written = False

	def __enter__(self):
		return self

	def __exit__(self, exc_type, exc_val, exc_tb):
		pass

	def read(self, query, **args):
		self.calls.setdefault('read', []).append(locals())
		return iter(self.sites)

	def read_one(self, query, **args):
		self.calls.setdefault('read_one', []).append(locals())
		if self.extension_id is None:
			return None
		return {'extension_id': self.extension_id}

	def write(self, cmd, **args):
		self.calls.setdefault('write', []).append(locals())
		self.written = True

	def write_read_one(self, query, **args):
		self.calls.setdefault('write_read_one', []).append(locals())
		self.written = True
		row = dict(args)
		row.update({
			'update_site_id': 7,
			'enabled': 1,
			'last_check_timestamp': 0,
		})
		return row

class MockDatabase:

	def __init__(self):
		self.connection = MockConnection()

	def connect(self):
		return self.connection

def make_site_row(update_site_id, name=updatesite.UPDATE_SITE_NAME, location=updatesite.UPDATE_SITE_LOCATION):
	return {
		'update_site_id': update_site_id,
		'name': name,
		'type': 'extension',
		'location': location,
		'enabled': 1,
		'last_check_timestamp': 1500000000,
	}

class TempDirMixin: # pylint: disable=too-few-public-methods

	def make_temp_dir(self):
		tmp = tempfile.TemporaryDirectory()
		self.addCleanup(tmp.cleanup)
		return tmp.name

	@staticmethod
	def write_file(path, content):
		with open(path, 'wb') as f:
			f.write(content)

	@staticmethod
	def read_file(path):
		with open(path, 'rb') as f:
			return f.read()

class lookup_result(unittest.TestCase):

	def test_map_projects_found_values(self):
		result = geoip.LookupResult.found(21).map(lambda x: x * 2)
		self.assertEqual(result, geoip.LookupResult.found(42))

	def test_map_passes_failures_through(self):
		self.assertIs(geoip.NOT_FOUND.map(lambda x: x * 2), geoip.NOT_FOUND)
		self.assertIs(geoip.UNAVAILABLE.map(lambda x: x * 2), geoip.UNAVAILABLE)

	def test_states_are_distinct(self):
		self.assertNotEqual(geoip.NOT_FOUND, geoip.UNAVAILABLE)
		self.assertNotEqual(geoip.LookupResult.found(None), geoip.NOT_FOUND)
		self.assertTrue(geoip.NOT_FOUND.is_not_found)
		self.assertTrue(geoip.UNAVAILABLE.is_unavailable)
		self.assertIsNone(geoip.NOT_FOUND.value)

class lookup_cache(unittest.TestCase):

	def test_first_write_wins(self):
		cache = geoip.LookupCache()
		self.assertEqual(cache.put('1.2.3.4', geoip.NOT_FOUND), geoip.NOT_FOUND)
		self.assertEqual(cache.put('1.2.3.4', geoip.UNAVAILABLE), geoip.NOT_FOUND)
		self.assertEqual(cache.get('1.2.3.4'), geoip.NOT_FOUND)
		self.assertEqual(len(cache), 1)

	def test_clear(self):
		cache = geoip.LookupCache()
		cache.put('1.2.3.4', geoip.NOT_FOUND)
		cache.clear()
		self.assertFalse('1.2.3.4' in cache)
		self.assertIsNone(cache.get('1.2.3.4'))

class ProviderTestBase(unittest.TestCase, TempDirMixin):

	def setUp(self):
		self.data_path = self.make_temp_dir()

	def make_provider(self, city=False):
		filename = geoip.CITY_FILENAME if city else geoip.COUNTRY_FILENAME
		self.write_file(os.path.join(self.data_path, filename), b'irrelevant')
		provider = geoip.GeoIpProvider(self.data_path)
		self.reader = provider._reader = MockReader() # pylint: disable=attribute-defined-outside-init
		return provider

	def assert_all_accessors(self, provider, ip_address, expected):
		self.assertEqual(provider.get_country_code(ip_address), expected)
		self.assertEqual(provider.get_country_name(ip_address), expected)
		self.assertEqual(provider.get_country_name(ip_address, 'de'), expected)
		self.assertEqual(provider.get_continent_code(ip_address), expected)
		self.assertEqual(provider.get_continent_name(ip_address), expected)
		self.assertEqual(provider.get_continent_name(ip_address, 'de'), expected)
		self.assertEqual(provider.get_city_name(ip_address), expected)

class provider_selection(ProviderTestBase):

	def test_country_only(self):
		self.write_file(os.path.join(self.data_path, geoip.COUNTRY_FILENAME), b'irrelevant')
		provider = geoip.GeoIpProvider(self.data_path)
		self.assertFalse(provider.has_city())
		self.assertTrue(provider.get_database_path().endswith(geoip.COUNTRY_FILENAME))

	def test_city_wins_when_both_exist(self):
		self.write_file(os.path.join(self.data_path, geoip.COUNTRY_FILENAME), b'irrelevant')
		self.write_file(os.path.join(self.data_path, geoip.CITY_FILENAME), b'irrelevant')
		provider = geoip.GeoIpProvider(self.data_path)
		self.assertTrue(provider.has_city())
		self.assertTrue(provider.get_database_path().endswith(geoip.CITY_FILENAME))

class provider_unavailable(ProviderTestBase):

	def test_missing_database(self):
		provider = geoip.GeoIpProvider(self.data_path)
		self.assertEqual(provider.get_country_record('8.8.8.8'), geoip.UNAVAILABLE)
		self.assert_all_accessors(provider, '8.8.8.8', geoip.UNAVAILABLE)

	def test_corrupt_database(self):
		self.write_file(os.path.join(self.data_path, geoip.CITY_FILENAME), b'this is not a database' * 100)
		provider = geoip.GeoIpProvider(self.data_path)
		self.assert_all_accessors(provider, '8.8.8.8', geoip.UNAVAILABLE)
		self.assertIsNone(provider.metadata())

	def test_reader_error_during_lookup(self):
		provider = self.make_provider()
		self.reader.error = RuntimeError('broken')
		self.assertEqual(provider.get_country_record('8.8.8.8'), geoip.UNAVAILABLE)

	def test_city_lookup_without_city_database(self):
		provider = self.make_provider(city=False)
		self.reader.models['8.8.8.8'] = make_model()
		self.assertEqual(provider.get_city_record('8.8.8.8'), geoip.UNAVAILABLE)
		self.assertEqual(provider.get_city_name('8.8.8.8'), geoip.UNAVAILABLE)
		self.assertTrue(provider.get_country_code('8.8.8.8').is_found)

class provider_not_found(ProviderTestBase):

	def test_country_database(self):
		provider = self.make_provider()
		for accessor in [provider.get_country_code, provider.get_country_name, provider.get_continent_code, provider.get_continent_name]:
			self.assertEqual(accessor('10.0.0.1'), geoip.NOT_FOUND)

	def test_city_database(self):
		provider = self.make_provider(city=True)
		self.assert_all_accessors(provider, '10.0.0.1', geoip.NOT_FOUND)

	def test_invalid_ip_address(self):
		provider = self.make_provider()
		self.reader.error = ValueError("'banana' does not appear to be an IPv4 or IPv6 address")
		self.assertEqual(provider.get_country_code('banana'), geoip.NOT_FOUND)

class provider_found(ProviderTestBase):

	def test_country_database(self):
		provider = self.make_provider()
		self.reader.models['1.2.3.4'] = make_model()
		self.assertEqual(provider.get_country_code('1.2.3.4'), geoip.LookupResult.found('DE'))
		self.assertEqual(provider.get_country_name('1.2.3.4'), geoip.LookupResult.found('Germany'))
		self.assertEqual(provider.get_country_name('1.2.3.4', 'de'), geoip.LookupResult.found('Deutschland'))
		self.assertEqual(provider.get_continent_code('1.2.3.4'), geoip.LookupResult.found('EU'))
		self.assertEqual(provider.get_continent_name('1.2.3.4'), geoip.LookupResult.found('Europe'))
		self.assertEqual(provider.get_continent_name('1.2.3.4', 'de'), geoip.LookupResult.found('Europa'))
		self.assertEqual(len(self.reader.calls['country']), 1)

	def test_city_database(self):
		provider = self.make_provider(city=True)
		self.reader.models['1.2.3.4'] = make_model(city='Berlin')
		self.assertEqual(provider.get_city_name('1.2.3.4'), geoip.LookupResult.found('Berlin'))
		self.assertEqual(provider.get_country_code('1.2.3.4'), geoip.LookupResult.found('DE'))
		self.assertNotIn('country', self.reader.calls)

	def test_unknown_locale(self):
		provider = self.make_provider()
		self.reader.models['1.2.3.4'] = make_model()
		self.assertEqual(provider.get_country_name('1.2.3.4', 'xx'), geoip.LookupResult.found(None))

	def test_default_locale(self):
		self.write_file(os.path.join(self.data_path, geoip.COUNTRY_FILENAME), b'irrelevant')
		provider = geoip.GeoIpProvider(self.data_path, locale='de')
		provider._reader = reader = MockReader()
		reader.models['1.2.3.4'] = make_model()
		self.assertEqual(provider.get_country_name('1.2.3.4'), geoip.LookupResult.found('Deutschland'))
		self.assertEqual(provider.get_country_name('1.2.3.4', 'en'), geoip.LookupResult.found('Germany'))

class provider_cache(ProviderTestBase):

	def test_repeated_lookups_are_consistent(self):
		provider = self.make_provider()
		self.reader.models['1.2.3.4'] = make_model()
		self.assertEqual(provider.get_country_record('1.2.3.4'), provider.get_country_record('1.2.3.4'))
		self.assertEqual(provider.get_country_record('10.0.0.1'), provider.get_country_record('10.0.0.1'))
		self.assertEqual(len(self.reader.calls['country']), 2)

	def test_outcome_is_remembered(self):
		provider = self.make_provider()
		self.assertEqual(provider.get_country_code('1.2.3.4'), geoip.NOT_FOUND)
		# the reader would now answer, but the first outcome sticks
		self.reader.models['1.2.3.4'] = make_model()
		self.assertEqual(provider.get_country_code('1.2.3.4'), geoip.NOT_FOUND)

	def test_failures_are_remembered(self):
		provider = self.make_provider()
		self.reader.error = RuntimeError('broken')
		provider.get_country_code('1.2.3.4')
		self.reader.error = None
		self.reader.models['1.2.3.4'] = make_model()
		self.assertEqual(provider.get_country_code('1.2.3.4'), geoip.UNAVAILABLE)
		self.assertEqual(len(self.reader.calls['country']), 1)

	def test_country_and_city_caches_are_separate(self):
		provider = self.make_provider(city=True)
		self.reader.models['1.2.3.4'] = make_model(city='Berlin')
		provider.get_country_code('1.2.3.4')
		provider.get_city_name('1.2.3.4')
		provider.get_country_code('1.2.3.4')
		provider.get_city_name('1.2.3.4')
		self.assertEqual(len(self.reader.calls['city']), 2)

	def test_clear(self):
		provider = self.make_provider()
		reader = self.reader
		provider.get_country_code('1.2.3.4')
		provider.clear()
		self.assertEqual(len(reader.calls['close']), 1)
		# the file is junk, so the real reader fails to load
		self.assertEqual(provider.get_country_code('1.2.3.4'), geoip.UNAVAILABLE)

class provider_file_age(ProviderTestBase):

	def test_missing_file(self):
		provider = geoip.GeoIpProvider(self.data_path)
		self.assertTrue(provider.db_needs_update())
		self.assertIsNone(provider.get_database_file_date())

	def test_fresh_file(self):
		provider = self.make_provider()
		self.assertFalse(provider.db_needs_update())
		self.assertIsNotNone(provider.get_database_file_date())

	def test_old_file(self):
		provider = self.make_provider()
		twenty_days_ago = time.time() - 20 * 24 * 60 * 60
		os.utime(provider.get_database_path(), (twenty_days_ago, twenty_days_ago))
		self.assertTrue(provider.db_needs_update(15))
		self.assertFalse(provider.db_needs_update(30))

class provider_reload(ProviderTestBase):

	def test_database_appears_after_start(self):
		provider = geoip.GeoIpProvider(self.data_path)
		self.assertEqual(provider.get_country_code('1.2.3.4'), geoip.UNAVAILABLE)

		# the cronjob installs the database from another process
		self.write_file(os.path.join(self.data_path, geoip.COUNTRY_FILENAME), b'new database')
		reader = MockReader()
		reader.models['1.2.3.4'] = make_model()
		with unittest.mock.patch('geoip2.database.Reader', return_value=reader):
			self.assertEqual(provider.get_country_code('1.2.3.4'), geoip.LookupResult.found('DE'))
			self.assertEqual(provider.get_country_code('5.6.7.8'), geoip.NOT_FOUND)

	def test_replaced_database(self):
		provider = self.make_provider()
		old_reader = self.reader
		self.assertEqual(provider.get_country_code('1.2.3.4'), geoip.NOT_FOUND)

		self.write_file(os.path.join(self.data_path, geoip.COUNTRY_FILENAME), b'a newer and longer database')
		new_reader = MockReader()
		new_reader.models['1.2.3.4'] = make_model()
		with unittest.mock.patch('geoip2.database.Reader', return_value=new_reader):
			self.assertEqual(provider.get_country_code('1.2.3.4'), geoip.LookupResult.found('DE'))
		self.assertEqual(len(old_reader.calls['close']), 1)

	def test_switch_to_city(self):
		provider = self.make_provider()
		self.assertFalse(provider.has_city())

		self.write_file(os.path.join(self.data_path, geoip.CITY_FILENAME), b'city database')
		reader = MockReader()
		reader.models['1.2.3.4'] = make_model(city='Berlin')
		with unittest.mock.patch('geoip2.database.Reader', return_value=reader):
			self.assertEqual(provider.get_city_name('1.2.3.4'), geoip.LookupResult.found('Berlin'))
		self.assertTrue(provider.has_city())

	def test_unchanged_database_is_not_reopened(self):
		provider = self.make_provider()
		reader = self.reader
		provider.get_country_code('1.2.3.4')
		provider.get_country_code('5.6.7.8')
		self.assertIs(provider._reader, reader) # pylint: disable=protected-access
		self.assertNotIn('close', reader.calls)

class UpdaterTestBase(unittest.TestCase, TempDirMixin):

	OLD_CONTENT = b'old database'
	NEW_CONTENT = b'new database content ' * 10

	def setUp(self):
		self.data_path = self.make_temp_dir()
		self.country_filename = os.path.join(self.data_path, geoip.COUNTRY_FILENAME)
		self.city_filename = os.path.join(self.data_path, geoip.CITY_FILENAME)
		self.write_file(self.country_filename, self.OLD_CONTENT)

		self.downloader = MockDownloader()
		self.downloader.body = gzip.compress(self.NEW_CONTENT)
		self.provider = MockProvider()
		self.updater = geoipupdate.DatabaseUpdater(
			self.data_path,
			provider=self.provider,
			downloader=self.downloader,
			min_size=100,
		)

		# only a real MaxMind file would pass the check
		patcher = unittest.mock.patch('geoip2.database.Reader')
		self.reader_class = patcher.start()
		self.addCleanup(patcher.stop)

	def assert_untouched(self):
		self.assertEqual(self.read_file(self.country_filename), self.OLD_CONTENT)
		self.assertFalse(os.path.exists(self.city_filename))
		self.assertNotIn('clear', self.provider.calls)

class update_success(UpdaterTestBase):

	def test_replaces_country_database(self):
		success, message = self.updater.update()
		self.assertTrue(success)
		self.assertIsNone(message)
		self.assertEqual(self.read_file(self.country_filename), self.NEW_CONTENT)
		self.assertFalse(os.path.exists(self.city_filename))
		self.assertEqual(self.downloader.calls['fetch'][0]['url'], geoipupdate.DOWNLOAD_URL_PATTERN % 'Country')
		self.assertEqual(len(self.provider.calls['clear']), 1)
		self.assertEqual(len(self.reader_class.call_args_list), 1)

	def test_switch_to_city(self):
		success, _ = self.updater.update(force_city=True)
		self.assertTrue(success)
		self.assertEqual(self.read_file(self.city_filename), self.NEW_CONTENT)
		self.assertFalse(os.path.exists(self.country_filename))
		self.assertIn('City', self.downloader.calls['fetch'][0]['url'])

	def test_stays_with_city(self):
		self.write_file(self.city_filename, self.OLD_CONTENT)
		self.assertEqual(self.updater.get_tier(), geoipupdate.TIER_CITY)
		success, _ = self.updater.update()
		self.assertTrue(success)
		self.assertEqual(self.read_file(self.city_filename), self.NEW_CONTENT)

	def test_creates_data_directory(self):
		data_path = os.path.join(self.make_temp_dir(), 'new', 'dir')
		updater = geoipupdate.DatabaseUpdater(data_path, downloader=self.downloader, min_size=100)
		success, _ = updater.update()
		self.assertTrue(success)
		self.assertEqual(self.read_file(os.path.join(data_path, geoip.COUNTRY_FILENAME)), self.NEW_CONTENT)

class update_failure(UpdaterTestBase):

	def test_http_error(self):
		self.downloader.status = 404
		success, message = self.updater.update()
		self.assertFalse(success)
		self.assertIn('HTTP 404', message)
		self.assertIn('Country', message)
		self.assert_untouched()

	def test_server_unreachable(self):
		self.downloader.error = OSError('Connection refused')
		success, message = self.updater.update()
		self.assertFalse(success)
		self.assertIn('Connection refused', message)
		self.assert_untouched()

	def test_empty_body(self):
		self.downloader.body = b''
		success, message = self.updater.update()
		self.assertFalse(success)
		self.assertEqual(message, language.Language().text('ERR_EMPTY_RESPONSE'))
		self.assert_untouched()

	def test_rate_limited_plain_text(self):
		self.downloader.body = b'Rate limited exceeded, please try again in 24 hours.'
		success, message = self.updater.update()
		self.assertFalse(success)
		self.assertEqual(message, language.Language().text('ERR_RATE_LIMITED'))
		self.assert_untouched()

	def test_rate_limited_compressed(self):
		self.downloader.body = gzip.compress(self.NEW_CONTENT + geoipupdate.RATE_LIMIT_MARKER)
		success, message = self.updater.update()
		self.assertFalse(success)
		self.assertEqual(message, language.Language().text('ERR_RATE_LIMITED'))
		self.assert_untouched()

	def test_too_small(self):
		self.downloader.body = gzip.compress(b'tiny')
		success, message = self.updater.update()
		self.assertFalse(success)
		self.assertEqual(message, language.Language().text('ERR_RATE_LIMITED'))
		self.assert_untouched()

	def test_not_gzip(self):
		self.downloader.body = b'<html>Something went wrong</html>'
		success, message = self.updater.update()
		self.assertFalse(success)
		self.assertEqual(message, language.Language().text('ERR_INVALID_DATABASE'))
		self.assert_untouched()

	def test_corrupt_gzip_stream(self):
		compressed = bytearray(gzip.compress(b'x' * 5000))
		# valid gzip header, garbled deflate data
		for i in range(10, len(compressed) - 8):
			compressed[i] ^= 0xff
		self.downloader.body = bytes(compressed)
		success, message = self.updater.update()
		self.assertFalse(success)
		self.assertEqual(message, language.Language().text('ERR_INVALID_DATABASE'))
		self.assert_untouched()

	def test_missing_tmp_path(self):
		tmp_path = os.path.join(self.make_temp_dir(), 'does-not-exist')
		updater = geoipupdate.DatabaseUpdater(self.data_path, provider=self.provider, downloader=self.downloader, min_size=100, tmp_path=tmp_path)
		success, message = updater.update()
		self.assertFalse(success)
		self.assertEqual(message, language.Language().text('ERR_CANNOT_WRITE', tmp_path))
		self.assert_untouched()

	def test_connection_breaks(self):
		self.downloader.error = http.client.IncompleteRead(b'partial')
		success, message = self.updater.update()
		self.assertFalse(success)
		self.assertIn('Country', message)
		self.assert_untouched()

	def test_not_a_database(self):
		self.reader_class.side_effect = ValueError('Error opening database file. Is this a valid MaxMind DB file?')
		success, message = self.updater.update()
		self.assertFalse(success)
		self.assertEqual(message, language.Language().text('ERR_INVALID_DATABASE'))
		self.assert_untouched()

	def test_cannot_delete(self):
		with unittest.mock.patch('os.remove', side_effect=PermissionError('denied')):
			success, message = self.updater.update()
		self.assertFalse(success)
		self.assertEqual(message, language.Language().text('ERR_CANNOT_DELETE', self.country_filename))
		self.assert_untouched()

	def test_cannot_write(self):
		blocker = os.path.join(self.make_temp_dir(), 'blocker')
		self.write_file(blocker, b'a file where a directory should be')
		data_path = os.path.join(blocker, 'data')
		updater = geoipupdate.DatabaseUpdater(data_path, downloader=self.downloader, min_size=100)
		success, message = updater.update()
		self.assertFalse(success)
		self.assertEqual(message, language.Language().text('ERR_CANNOT_WRITE', os.path.join(data_path, geoip.COUNTRY_FILENAME)))

	def test_localized_message(self):
		self.downloader.body = b''
		updater = geoipupdate.DatabaseUpdater(self.data_path, downloader=self.downloader, lang=language.Language('de-DE'))
		success, message = updater.update()
		self.assertFalse(success)
		self.assertEqual(message, 'Der MaxMind-Server hat eine leere Antwort geliefert.')

class downloader_fetch(unittest.TestCase):

	def test_success(self):
		response = unittest.mock.MagicMock()
		response.__enter__.return_value = response
		response.status = 200
		response.read.return_value = b'gzipped'
		with unittest.mock.patch('urllib.request.urlopen', return_value=response) as urlopen:
			self.assertEqual(geoipupdate.Downloader(timeout=5).fetch('https://example.com/db.gz'), (200, b'gzipped'))
		self.assertEqual(urlopen.call_args[0][0].full_url, 'https://example.com/db.gz')
		self.assertEqual(urlopen.call_args[1]['timeout'], 5)

	def test_http_error_is_returned(self):
		error = urllib.error.HTTPError('https://example.com/db.gz', 404, 'Not Found', None, io.BytesIO(b'not here'))
		with unittest.mock.patch('urllib.request.urlopen', side_effect=error):
			self.assertEqual(geoipupdate.Downloader().fetch('https://example.com/db.gz'), (404, b'not here'))

	def test_unreachable_server_raises(self):
		with unittest.mock.patch('urllib.request.urlopen', side_effect=urllib.error.URLError('Connection refused')):
			with self.assertRaises(OSError):
				geoipupdate.Downloader().fetch('https://example.com/db.gz')

class refresh_update_site(unittest.TestCase):

	def setUp(self):
		self.db = MockConnection()

	def test_not_installed(self):
		self.db.extension_id = None
		self.assertIsNone(updatesite.refresh_update_site(self.db))
		self.assertFalse(self.db.written)
		self.assertNotIn('read', self.db.calls)

	def test_creates_missing_site(self):
		sites = updatesite.refresh_update_site(self.db)
		self.assertEqual(len(sites), 1)
		self.assertEqual(sites[0].name, updatesite.UPDATE_SITE_NAME)
		self.assertEqual(sites[0].location, updatesite.UPDATE_SITE_LOCATION)
		self.assertEqual(len(self.db.calls['write_read_one']), 1)
		self.assertIn('INSERT INTO #__update_sites ', self.db.calls['write_read_one'][0]['query'])
		link = self.db.calls['write'][0]
		self.assertIn('#__update_sites_extensions', link['cmd'])
		self.assertEqual(link['args'], {'update_site_id': 7, 'extension_id': 42})

	def test_fixes_drifted_location(self):
		self.db.sites = [make_site_row(3, location='http://old.example.com/akgeoip.xml')]
		sites = updatesite.refresh_update_site(self.db)
		self.assertEqual(len(self.db.calls['write']), 1)
		self.assertNotIn('write_read_one', self.db.calls)
		args = self.db.calls['write'][0]['args']
		self.assertEqual(args['update_site_id'], 3)
		self.assertEqual(args['location'], updatesite.UPDATE_SITE_LOCATION)
		self.assertEqual(args['last_check_timestamp'], 0)
		self.assertEqual(sites[0].location, updatesite.UPDATE_SITE_LOCATION)

	def test_fixes_drifted_name(self):
		self.db.sites = [make_site_row(3, name='Something else')]
		updatesite.refresh_update_site(self.db)
		self.assertEqual(self.db.calls['write'][0]['args']['name'], updatesite.UPDATE_SITE_NAME)

	def test_matching_site_is_not_written(self):
		self.db.sites = [make_site_row(3)]
		sites = updatesite.refresh_update_site(self.db)
		self.assertEqual(len(sites), 1)
		self.assertFalse(self.db.written)

	def test_only_drifted_rows_are_written(self):
		self.db.sites = [make_site_row(3), make_site_row(4, location='http://old.example.com/akgeoip.xml')]
		updatesite.refresh_update_site(self.db)
		self.assertEqual(len(self.db.calls['write']), 1)
		self.assertEqual(self.db.calls['write'][0]['args']['update_site_id'], 4)

	def test_custom_values(self):
		self.db.sites = [make_site_row(3)]
		updatesite.refresh_update_site(self.db, element='other', folder='content', name='Other', location='https://example.com/other.xml')
		self.assertEqual(self.db.calls['read_one'][0]['args']['element'], 'other')
		self.assertEqual(self.db.calls['write'][0]['args']['location'], 'https://example.com/other.xml')

class replace_prefix(unittest.TestCase):

	def test_placeholder_is_replaced(self):
		connection = database.Connection.__new__(database.Connection)
		connection._prefix = 'abc_' # pylint: disable=protected-access
		self.assertEqual(
			connection.replace_prefix('SELECT * FROM #__extensions JOIN #__update_sites'),
			'SELECT * FROM abc_extensions JOIN abc_update_sites'
		)

class language_text(unittest.TestCase):

	def test_arguments(self):
		self.assertEqual(language.Language().text('ERR_CANNOT_WRITE', '/x'), 'Cannot write the new GeoLite2 database file /x. Please check the file permissions.')

	def test_unknown_locale_falls_back_to_english(self):
		self.assertEqual(language.Language('xx-XX').locale, language.FALLBACK_LOCALE)

	def test_unknown_key(self):
		self.assertEqual(language.Language('de-DE').text('NO_SUCH_KEY', 1), 'NO_SUCH_KEY')

class ServiceTestBase(unittest.TestCase, TempDirMixin):

	PASSWORD = 'secret'
	PASSWORD_HASH = None

	@classmethod
	def setUpClass(cls):
		super().setUpClass()
		if ServiceTestBase.PASSWORD_HASH is None:
			ServiceTestBase.PASSWORD_HASH = pwd_context.hash(cls.PASSWORD)

	def setUp(self):
		self.data_path = self.make_temp_dir()
		self.write_file(os.path.join(self.data_path, geoip.COUNTRY_FILENAME), b'irrelevant')
		self.config_filename = os.path.join(self.make_temp_dir(), 'test-config.json')
		with open(self.config_filename, 'w') as f:
			f.write(json.dumps({
				'data_path': self.data_path,
				'db_connection_string': 'dbname=test',
				'admin_password_hash': self.PASSWORD_HASH,
				'log_path': os.path.join(self.data_path, 'log.txt'),
			}))

		self.logic = akgeoip.AkGeoip(self.config_filename)
		self.reader = self.logic._geoip._reader = MockReader()
		self.reader.models['1.2.3.4'] = make_model()
		self.updater = self.logic._updater = MockUpdater()
		self.database = self.logic._database = MockDatabase()

		# AsyncHTTPTestCase builds the app here, so the logic must exist first
		super().setUp()

class load_config(ServiceTestBase):

	def test_defaults(self):
		cfg = config.Config(self.config_filename)
		self.assertEqual(cfg.data_path, self.data_path)
		self.assertEqual(cfg.db_table_prefix, 'jos_')
		self.assertEqual(cfg.max_age_days, 15)
		self.assertEqual(cfg.min_database_size, geoipupdate.MIN_DATABASE_SIZE)
		self.assertEqual(cfg.update_site_location, updatesite.UPDATE_SITE_LOCATION)
		self.assertTrue(cfg.auto_update)

class lookup(ServiceTestBase):

	def test_found(self):
		self.assertEqual(self.logic.lookup('1.2.3.4'), {
			'ip': '1.2.3.4',
			'status': 'found',
			'country_code': 'DE',
			'country_name': 'Germany',
			'continent_code': 'EU',
			'continent_name': 'Europe',
			'city_name': None,
		})

	def test_locale(self):
		self.assertEqual(self.logic.lookup('1.2.3.4', 'de')['country_name'], 'Deutschland')

	def test_not_found(self):
		self.assertEqual(self.logic.lookup('10.0.0.1'), {'ip': '10.0.0.1', 'status': 'not_found'})

	def test_unavailable(self):
		self.reader.error = RuntimeError('broken')
		self.assertEqual(self.logic.lookup('5.6.7.8'), {'ip': '5.6.7.8', 'status': 'unavailable'})

class run_admin(ServiceTestBase):

	def test_wrong_password(self):
		self.assertEqual(self.logic.run_admin('wrong', 'status', {}), (False, 'Wrong password.'))
		self.assertEqual(self.logic.run_admin(None, 'status', {}), (False, 'Wrong password.'))

	def test_not_an_admin_method(self):
		self.assertEqual(self.logic.run_admin(self.PASSWORD, 'maintain', {}), (False, 'not an admin method'))
		self.assertEqual(self.logic.run_admin(self.PASSWORD, 'no-such-thing', {}), (False, 'method does not exist'))

	def test_status(self):
		success, result = self.logic.run_admin(self.PASSWORD, 'status', {})
		self.assertTrue(success)
		self.assertFalse(result['has_city'])
		self.assertFalse(result['needs_update'])

	def test_update(self):
		success, result = self.logic.run_admin(self.PASSWORD, 'update', {'force_city': True})
		self.assertTrue(success)
		self.assertEqual(result, language.Language().text('MSG_UPDATED'))
		self.assertTrue(self.updater.calls['update'][0]['force_city'])

	def test_update_failure(self):
		self.updater.result = (False, 'nope')
		self.assertEqual(self.logic.run_admin(self.PASSWORD, 'update', {}), (False, 'nope'))

	def test_refresh_update_site(self):
		success, _ = self.logic.run_admin(self.PASSWORD, 'refresh-update-site', {})
		self.assertTrue(success)
		self.assertEqual(len(self.database.connection.calls['write_read_one']), 1)

	def test_refresh_update_site_not_installed(self):
		self.database.connection.extension_id = None
		self.assertEqual(
			self.logic.run_admin(self.PASSWORD, 'refresh-update-site', {}),
			(False, language.Language().text('MSG_NOT_INSTALLED'))
		)

	def test_bad_arguments(self):
		success, _ = self.logic.run_admin(self.PASSWORD, 'update', {'bogus': 1})
		self.assertFalse(success)

class maintain(ServiceTestBase):

	def test_current_database_is_not_downloaded(self):
		self.assertEqual(self.logic.maintain(), 'database=current\nupdate_site=ok\n')
		self.assertNotIn('update', self.updater.calls)

	def test_old_database_is_downloaded(self):
		os.remove(os.path.join(self.data_path, geoip.COUNTRY_FILENAME))
		self.assertEqual(self.logic.maintain(), 'database=updated\nupdate_site=ok\n')
		self.assertEqual(len(self.updater.calls['update']), 1)

	def test_database_error_does_not_stop_update(self):
		os.remove(os.path.join(self.data_path, geoip.COUNTRY_FILENAME))
		self.database.connect = unittest.mock.Mock(side_effect=RuntimeError('no database'))
		self.assertEqual(self.logic.maintain(), 'database=updated\nupdate_site=error\n')

	def test_updater_crash_does_not_stop_maintenance(self):
		os.remove(os.path.join(self.data_path, geoip.COUNTRY_FILENAME))
		self.updater.error = RuntimeError('unexpected')
		self.assertEqual(self.logic.maintain(), 'database=error\nupdate_site=ok\n')

	def test_auto_update_disabled(self):
		self.logic._config.auto_update = False
		self.assertEqual(self.logic.maintain(), 'database=disabled\nupdate_site=ok\n')

class web_server(ServiceTestBase, tornado.testing.AsyncHTTPTestCase):

	def get_app(self):
		return main.make_app(self.logic)

	def test_lookup(self):
		response = self.fetch('/geoip/1.2.3.4?locale=de')
		self.assertEqual(response.code, 200)
		data = json.loads(response.body.decode('utf-8'))
		self.assertEqual(data['country_code'], 'DE')
		self.assertEqual(data['country_name'], 'Deutschland')

	def test_admin_wrong_password(self):
		response = self.fetch('/admin/status', method='POST', body=json.dumps({'password': 'wrong'}))
		self.assertEqual(response.code, 500)
		self.assertEqual(json.loads(response.body.decode('utf-8')), 'Wrong password.')

	def test_admin_status(self):
		response = self.fetch('/admin/status', method='POST', body=json.dumps({'password': self.PASSWORD}))
		self.assertEqual(response.code, 200)
		self.assertIn('database_path', json.loads(response.body.decode('utf-8')))

	def test_admin_invalid_json(self):
		response = self.fetch('/admin/status', method='POST', body='{')
		self.assertEqual(response.code, 400)

	def test_admin_payload_must_be_an_object(self):
		response = self.fetch('/admin/status', method='POST', body='[]')
		self.assertEqual(response.code, 400)

if __name__ == '__main__':
	unittest.main()
