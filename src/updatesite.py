#!/usr/bin/env python3

'''
Keeps the CMS's "update site" record for this plugin in shape.

The CMS looks in #__update_sites for URLs to check for new versions of
installed extensions; #__update_sites_extensions links those rows to
#__extensions. Older versions of the plugin registered a different URL,
and users sometimes edit or break the row, so we put it back the way it
should be whenever we are asked to.
'''

import logging

UPDATE_SITE_NAME = 'Akeeba GeoIP Provider Plugin'
UPDATE_SITE_LOCATION = 'https://cdn.akeebabackup.com/updates/pkgakgeoip.xml'
UPDATE_SITE_TYPE = 'extension'

EXTENSION_TYPE = 'plugin'
EXTENSION_ELEMENT = 'akgeoip'
EXTENSION_FOLDER = 'system'

class UpdateSite:

	def __init__(self, row):
		self.update_site_id = row['update_site_id']
		self.name = row['name']
		self.type = row['type']
		self.location = row['location']
		self.enabled = row['enabled']
		self.last_check_timestamp = row['last_check_timestamp']

	def __repr__(self):
		return '{update_site_id}:{name}:{location}'.format(**self.__dict__)

	def matches(self, name, location):
		return self.name == name and self.location == location

	@classmethod
	def get_by_extension(cls, db, extension_id):
		query = '''
			SELECT s.*
			FROM #__update_sites s
			JOIN #__update_sites_extensions e ON e.update_site_id = s.update_site_id
			WHERE e.extension_id = %(extension_id)s
			ORDER BY s.update_site_id;'''
		return [cls(row) for row in db.read(query, extension_id=extension_id)]

	@classmethod
	def create(cls, db, extension_id, name, location):
		# pylint: disable=too-many-arguments
		query = '''
			INSERT INTO #__update_sites (name, type, location, enabled, last_check_timestamp)
			VALUES (%(name)s, %(type)s, %(location)s, 1, 0)
			RETURNING *;'''
		row = db.write_read_one(query, name=name, type=UPDATE_SITE_TYPE, location=location)
		site = cls(row)
		db.write('''
			INSERT INTO #__update_sites_extensions (update_site_id, extension_id)
			VALUES (%(update_site_id)s, %(extension_id)s);
		''', update_site_id=site.update_site_id, extension_id=extension_id)
		return site

	def save(self, db):
		query = '''
			UPDATE #__update_sites
			SET name = %(name)s,
				type = %(type)s,
				location = %(location)s,
				enabled = %(enabled)s,
				last_check_timestamp = %(last_check_timestamp)s
			WHERE update_site_id = %(update_site_id)s;'''
		db.write(query,
			update_site_id=self.update_site_id,
			name=self.name,
			type=self.type,
			location=self.location,
			enabled=self.enabled,
			last_check_timestamp=self.last_check_timestamp)

def find_extension_id(db, element=EXTENSION_ELEMENT, folder=EXTENSION_FOLDER):
	row = db.read_one('''
		SELECT extension_id
		FROM #__extensions
		WHERE type = %(type)s
		AND element = %(element)s
		AND folder = %(folder)s;
	''', type=EXTENSION_TYPE, element=element, folder=folder)
	if row is None:
		return None
	return row['extension_id']

def refresh_update_site(db, element=EXTENSION_ELEMENT, folder=EXTENSION_FOLDER, name=UPDATE_SITE_NAME, location=UPDATE_SITE_LOCATION):
	'''Returns the update sites after the refresh,
	or None if the plugin is not registered as an extension.'''
	# pylint: disable=too-many-arguments

	extension_id = find_extension_id(db, element, folder)
	if extension_id is None:
		logging.info('Extension "%s/%s" is not installed; not touching update sites.', folder, element)
		return None

	sites = UpdateSite.get_by_extension(db, extension_id)

	if not sites:
		logging.info('Creating update site for extension %s.', extension_id)
		return [UpdateSite.create(db, extension_id, name, location)]

	for site in sites:
		if site.matches(name, location):
			continue
		logging.info('Fixing update site %s (was "%s" at "%s").', site.update_site_id, site.name, site.location)
		site.name = name
		site.type = UPDATE_SITE_TYPE
		site.location = location
		site.enabled = 1
		site.last_check_timestamp = 0 # make the CMS check again
		site.save(db)

	return sites
