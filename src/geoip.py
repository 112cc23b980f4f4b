#!/usr/bin/env python3

'''
Wrapper for the MaxMind GeoIP2 reader that returns the country, continent
and (if the City database is installed) city of an IP address.
It works for IPv4 and IPv6 addresses.

MaxMind GeoIP2 documentation:
https://geoip2.readthedocs.io/en/latest/

Two database files are supported, and whichever is present decides the
level of detail:

	GeoLite2-City.mmdb     country, continent and city
	GeoLite2-Country.mmdb  country and continent only

If both are present, the City database wins.

This text needs to be added to the UI to meet the licensing requirements:
This product includes GeoLite2 data created by MaxMind, available from
<a href="http://www.maxmind.com">http://www.maxmind.com</a>.
'''

import datetime
import logging
import os
import time

import geoip2.database # `sudo pip3 install geoip2`
import geoip2.errors

COUNTRY_FILENAME = 'GeoLite2-Country.mmdb'
CITY_FILENAME = 'GeoLite2-City.mmdb'

DEFAULT_LOCALE = 'en'

class LookupResult:
	'''The outcome of looking up one IP address.

	`found` carries a value (a GeoRecord, or a projection of one),
	`not_found` means the address is not in the database,
	`unavailable` means there is no usable database at all.'''

	FOUND = 'found'
	NOT_FOUND = 'not_found'
	UNAVAILABLE = 'unavailable'

	def __init__(self, status, value=None):
		self.status = status
		self.value = value

	@classmethod
	def found(cls, value):
		return cls(cls.FOUND, value)

	@property
	def is_found(self):
		return self.status == self.FOUND

	@property
	def is_not_found(self):
		return self.status == self.NOT_FOUND

	@property
	def is_unavailable(self):
		return self.status == self.UNAVAILABLE

	def map(self, fn):
		if self.is_found:
			return LookupResult.found(fn(self.value))
		return self

	def __eq__(self, other):
		if not isinstance(other, LookupResult):
			return NotImplemented
		return (self.status, self.value) == (other.status, other.value)

	def __hash__(self):
		return hash(self.status)

	def __repr__(self):
		if self.is_found:
			return 'LookupResult(found, %r)' % (self.value,)
		return 'LookupResult(%s)' % self.status

NOT_FOUND = LookupResult(LookupResult.NOT_FOUND)
UNAVAILABLE = LookupResult(LookupResult.UNAVAILABLE)

class GeoRecord: # pylint: disable=too-few-public-methods
	'''The handful of fields we care about, copied out of a geoip2 model.'''

	def __init__(self, country_iso_code, country_names, continent_code, continent_names, city_names=None):
		self.country_iso_code = country_iso_code
		self.country_names = dict(country_names or {})
		self.continent_code = continent_code
		self.continent_names = dict(continent_names or {})
		self.city_names = dict(city_names or {})

	@classmethod
	def from_model(cls, model):
		city = getattr(model, 'city', None)
		return cls(
			model.country.iso_code,
			model.country.names,
			model.continent.code,
			model.continent.names,
			city.names if city is not None else None,
		)

	def __eq__(self, other):
		if not isinstance(other, GeoRecord):
			return NotImplemented
		return self.__dict__ == other.__dict__

	def __repr__(self):
		return '{country_iso_code}:{continent_code}'.format(**self.__dict__)

class LookupCache:
	'''IP address -> LookupResult.
	Entries are written once and kept until `clear()` is called.'''

	def __init__(self):
		self._entries = {}

	def get(self, ip_address):
		return self._entries.get(ip_address, None)

	def put(self, ip_address, result):
		return self._entries.setdefault(ip_address, result)

	def clear(self):
		self._entries = {}

	def __contains__(self, ip_address):
		return ip_address in self._entries

	def __len__(self):
		return len(self._entries)

class GeoIpProvider:
	# pylint: disable=too-many-instance-attributes

	def __init__(self, data_path, locale=None):
		self._data_path = data_path
		self._locale = locale or DEFAULT_LOCALE
		self._country_cache = LookupCache()
		self._city_cache = LookupCache()
		self._reader = None
		self._reader_failed = False
		self._has_city = False
		self._filename = None
		self._signature = None
		self._detect_database()

	def _get_signature(self):
		'''Which file we would use, and enough of its stat()
		to notice when another process replaces it.'''
		city_filename = os.path.join(self._data_path, CITY_FILENAME)
		country_filename = os.path.join(self._data_path, COUNTRY_FILENAME)
		filename = city_filename if os.path.isfile(city_filename) else country_filename
		try:
			st = os.stat(filename)
		except OSError:
			return filename, None
		return filename, (st.st_ino, st.st_size, st.st_mtime_ns)

	def _detect_database(self):
		self._signature = self._get_signature()
		self._filename = self._signature[0]
		self._has_city = os.path.basename(self._filename) == CITY_FILENAME
		logging.info('Using geoip data from "%s".', self._filename)

	def _reload_if_changed(self):
		# the cronjob updates the file from another process
		if self._get_signature() != self._signature:
			logging.info('GeoIP database file changed, reloading.')
			self.clear()

	def _get_reader(self):
		if self._reader is None and not self._reader_failed:
			try:
				self._reader = geoip2.database.Reader(self._filename)
			except Exception: # pylint: disable=broad-except
				logging.error('Cannot load geoip data from "%s".', self._filename, exc_info=True)
				self._reader_failed = True
		return self._reader

	def _lookup(self, cache, ip_address, method_name):
		result = cache.get(ip_address)
		if result is not None:
			return result

		reader = self._get_reader()
		if reader is None:
			return cache.put(ip_address, UNAVAILABLE)

		try:
			model = getattr(reader, method_name)(ip_address)
			result = LookupResult.found(GeoRecord.from_model(model))
		except geoip2.errors.AddressNotFoundError:
			result = NOT_FOUND
		except ValueError:
			# not an IP address at all
			logging.debug('Invalid IP address "%s".', ip_address)
			result = NOT_FOUND
		except Exception: # pylint: disable=broad-except
			logging.error('Error looking up IP address "%s".', ip_address, exc_info=True)
			result = UNAVAILABLE

		return cache.put(ip_address, result)

	def get_country_record(self, ip_address):
		self._reload_if_changed()
		# a City database answers `city()` only, but its records include the country
		method_name = 'city' if self._has_city else 'country'
		return self._lookup(self._country_cache, ip_address, method_name)

	def get_city_record(self, ip_address):
		self._reload_if_changed()
		if not self._has_city:
			return UNAVAILABLE
		return self._lookup(self._city_cache, ip_address, 'city')

	def _localized(self, names, locale):
		return names.get(locale or self._locale, None)

	def get_country_code(self, ip_address):
		return self.get_country_record(ip_address).map(lambda r: r.country_iso_code)

	def get_country_name(self, ip_address, locale=None):
		return self.get_country_record(ip_address).map(lambda r: self._localized(r.country_names, locale))

	def get_continent_code(self, ip_address):
		return self.get_country_record(ip_address).map(lambda r: r.continent_code)

	def get_continent_name(self, ip_address, locale=None):
		return self.get_country_record(ip_address).map(lambda r: self._localized(r.continent_names, locale))

	def get_city_name(self, ip_address, locale=None):
		return self.get_city_record(ip_address).map(lambda r: self._localized(r.city_names, locale))

	def has_city(self):
		return self._has_city

	def get_database_path(self):
		return self._filename

	def get_database_file_date(self):
		'''Returns the modification time of the database file
		as a datetime, or None if there is no file.'''
		if not os.path.isfile(self._filename):
			return None
		return datetime.datetime.fromtimestamp(os.path.getmtime(self._filename))

	def db_needs_update(self, max_age_days=15):
		if not os.path.isfile(self._filename):
			return True
		age = time.time() - os.path.getmtime(self._filename)
		return age > max_age_days * 24 * 60 * 60

	def metadata(self):
		self._reload_if_changed()
		reader = self._get_reader()
		if reader is None:
			return None
		try:
			meta = reader.metadata()
		except Exception: # pylint: disable=broad-except
			logging.error('Cannot read geoip metadata.', exc_info=True)
			return None
		return {
			'database_type': meta.database_type,
			'build_date': datetime.datetime.fromtimestamp(meta.build_epoch, datetime.timezone.utc).strftime('%Y-%m-%d %H:%M'),
			'node_count': meta.node_count,
		}

	def clear(self):
		'''Forget everything and load the database again on the next lookup.
		Call this after a new database file has been downloaded.'''
		if self._reader is not None:
			try:
				self._reader.close()
			except Exception: # pylint: disable=broad-except
				logging.warning('Cannot close geoip reader.', exc_info=True)
		self._reader = None
		self._reader_failed = False
		self._country_cache.clear()
		self._city_cache.clear()
		self._detect_database()
