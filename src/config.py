#!/usr/bin/env python3

import json
import logging

import geoipupdate
import updatesite

class Config:
	# pylint: disable=too-few-public-methods
	# pylint: disable=too-many-instance-attributes
	'''
	This is where "global" configuration variables live.

	A variable goes here if
	* the value should not be checked in (like passwords), or
	* developers/testers may want to use a different value (like data paths)

	Required keys: `data_path`, `db_connection_string`.
	Everything else has a sensible default.
	'''

	def __init__(self, filename):
		logging.info('Loading configuration from "%s".', filename)

		with open(filename, 'r') as f:
			content = f.read()
		data = json.loads(content)

		self.data_path = data['data_path']
		self.db_connection_string = data['db_connection_string']

		self.admin_password_hash = data.get('admin_password_hash', None)
		self.auto_update = data.get('auto_update', True)
		self.db_table_prefix = data.get('db_table_prefix', 'jos_')
		self.download_url_pattern = data.get('download_url_pattern', geoipupdate.DOWNLOAD_URL_PATTERN)
		self.download_timeout = data.get('download_timeout', 60)
		self.extension_element = data.get('extension_element', updatesite.EXTENSION_ELEMENT)
		self.extension_folder = data.get('extension_folder', updatesite.EXTENSION_FOLDER)
		self.geoip_locale = data.get('geoip_locale', 'en')
		self.locale = data.get('locale', 'en-GB')
		self.log_path = data.get('log_path', 'log/akgeoip.txt')
		self.max_age_days = data.get('max_age_days', 15)
		self.min_database_size = data.get('min_database_size', geoipupdate.MIN_DATABASE_SIZE)
		self.tmp_path = data.get('tmp_path', None)
		self.update_site_location = data.get('update_site_location', updatesite.UPDATE_SITE_LOCATION)
		self.update_site_name = data.get('update_site_name', updatesite.UPDATE_SITE_NAME)

		# could just do this, but explicit is better than implicit
		#for k, v in data.items():
		#	setattr(self, k, v)
