#!/usr/bin/env python3

'''
This is the logic layer: it ties the GeoIP lookups, the database updater
and the update site bookkeeping together, without any reference to the
web server or the command line.

Dependency structure:

.---------------------------------------------------------------------.
| main                           | console                            | web layer / cli
'---------------------------------------------------------------------'
.---------------------------------------------------------------------.
| akgeoip                                                             | "business logic"
'---------------------------------------------------------------------'
.------. .--------. .----------. .-------. .-------------. .------------.
| util | | config | | language | | geoip | | geoipupdate | | updatesite | helper modules
'------' '--------' '----------' '-------' '-------------' '------------'
                                                           .------------.
                                                           | database   |
                                                           '------------'
                                 .-------. .-------------. .------------.
                                 | geoip2| | maxmind.com | | psycopg2,  | third party
                                 |       | | website     | | cms db     |
                                 '-------' '-------------' '------------'
'''

import logging
import time

from passlib.apps import custom_app_context as pwd_context # `sudo pip3 install passlib`

import config
import database
import geoip
import geoipupdate
import language
import updatesite

def admin_action(f):
	f.allow_admin_action = True
	return f

class AkGeoip:
	# pylint: disable=too-many-instance-attributes

	def __init__(self, config_path):
		self._config = config.Config(config_path)

		self._language = language.Language(self._config.locale)
		self._database = database.Database(self._config.db_connection_string, self._config.db_table_prefix)
		self._geoip = geoip.GeoIpProvider(self._config.data_path, self._config.geoip_locale)
		self._updater = geoipupdate.DatabaseUpdater(
			self._config.data_path,
			provider=self._geoip,
			downloader=geoipupdate.Downloader(self._config.download_timeout),
			url_pattern=self._config.download_url_pattern,
			min_size=self._config.min_database_size,
			lang=self._language,
			tmp_path=self._config.tmp_path,
		)

	def get_log_path(self):
		return self._config.log_path

	def lookup(self, ip_address, locale=None):
		'''Everything we know about an IP address, ready for json.dumps().'''

		record = self._geoip.get_country_record(ip_address)
		result = {
			'ip': ip_address,
			'status': record.status,
		}
		if record.is_found:
			result.update({
				'country_code': self._geoip.get_country_code(ip_address).value,
				'country_name': self._geoip.get_country_name(ip_address, locale).value,
				'continent_code': self._geoip.get_continent_code(ip_address).value,
				'continent_name': self._geoip.get_continent_name(ip_address, locale).value,
				'city_name': self._geoip.get_city_name(ip_address, locale).value,
			})
		return result

	def check_password(self, password):
		if not self._config.admin_password_hash or not password:
			return False
		try:
			return pwd_context.verify(password, self._config.admin_password_hash)
		except ValueError:
			logging.error('"admin_password_hash" in the config file is not a valid hash.')
			return False

	def run_admin(self, password, command, args):
		'''Admin methods do have their error messages exposed.
		Every admin method returns a (success, result) tuple.'''

		if not self.check_password(password):
			return False, 'Wrong password.'

		method = getattr(self, command.replace('-', '_'), None)
		if method is None:
			return False, 'method does not exist'
		if not getattr(method, 'allow_admin_action', False):
			return False, 'not an admin method'

		try:
			t1 = time.time()
			result = method(**args)
			t2 = time.time()
			logging.debug('Benchmark: %s: %s sec.', command, t2-t1)
			return result
		except Exception as e: # pylint: disable=broad-except
			logging.error('Admin Error', exc_info=True)
			return False, str(e)

	@admin_action
	def update(self, force_city=False):
		success, message = self._updater.update(force_city)
		if success:
			message = self._language.text('MSG_UPDATED')
		return success, message

	@admin_action
	def refresh_update_site(self):
		with self._database.connect() as db:
			sites = updatesite.refresh_update_site(
				db,
				element=self._config.extension_element,
				folder=self._config.extension_folder,
				name=self._config.update_site_name,
				location=self._config.update_site_location,
			)
		if sites is None:
			return False, self._language.text('MSG_NOT_INSTALLED')
		return True, self._language.text('MSG_UPDATE_SITE_REFRESHED')

	@admin_action
	def status(self):
		file_date = self._geoip.get_database_file_date()
		return True, {
			'database_path': self._geoip.get_database_path(),
			'has_city': self._geoip.has_city(),
			'file_date': file_date.strftime('%Y-%m-%d %H:%M:%S') if file_date else None,
			'needs_update': self._geoip.db_needs_update(self._config.max_age_days),
			'metadata': self._geoip.metadata(),
		}

	def maintain(self):
		'''This method gets called once per day by a cronjob.'''

		counts = {}

		try:
			success, _ = self.refresh_update_site()
			counts['update_site'] = 'ok' if success else 'not installed'
		except Exception: # pylint: disable=broad-except
			logging.error('Cannot refresh update site.', exc_info=True)
			counts['update_site'] = 'error'

		if not self._config.auto_update:
			counts['database'] = 'disabled'
		elif not self._geoip.db_needs_update(self._config.max_age_days):
			counts['database'] = 'current'
		else:
			try:
				success, message = self._updater.update()
				counts['database'] = 'updated' if success else message
			except Exception: # pylint: disable=broad-except
				logging.error('Cannot update the geoip database.', exc_info=True)
				counts['database'] = 'error'

		return '%s\n' % '\n'.join('%s=%s' % i for i in sorted(counts.items()))
