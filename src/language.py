#!/usr/bin/env python3

'''
User-facing messages, by locale.
Missing keys fall back to English, then to the key itself,
so a typo shows up on screen instead of crashing.
'''

FALLBACK_LOCALE = 'en-GB'

STRINGS = {
	'en-GB': {
		'ERR_DOWNLOAD': 'Downloading the GeoLite2 %s database failed: %s',
		'ERR_EMPTY_RESPONSE': 'The MaxMind server returned an empty response.',
		'ERR_RATE_LIMITED': 'MaxMind refused the download because you have updated too often. Please try again in 24 hours.',
		'ERR_INVALID_DATABASE': 'The downloaded file is not a valid GeoLite2 database.',
		'ERR_CANNOT_DELETE': 'Cannot delete the old GeoLite2 database file %s. Please check the file permissions.',
		'ERR_CANNOT_WRITE': 'Cannot write the new GeoLite2 database file %s. Please check the file permissions.',
		'MSG_UPDATED': 'The GeoLite2 database has been updated.',
		'MSG_UPDATE_SITE_REFRESHED': 'The update site has been refreshed.',
		'MSG_NOT_INSTALLED': 'The plugin is not registered as an extension.',
	},
	'de-DE': {
		'ERR_DOWNLOAD': 'Das Herunterladen der GeoLite2-%s-Datenbank ist fehlgeschlagen: %s',
		'ERR_EMPTY_RESPONSE': 'Der MaxMind-Server hat eine leere Antwort geliefert.',
		'ERR_RATE_LIMITED': 'MaxMind hat den Download verweigert, weil zu oft aktualisiert wurde. Bitte in 24 Stunden erneut versuchen.',
		'ERR_INVALID_DATABASE': 'Die heruntergeladene Datei ist keine gültige GeoLite2-Datenbank.',
		'ERR_CANNOT_DELETE': 'Die alte GeoLite2-Datenbankdatei %s kann nicht gelöscht werden. Bitte die Dateiberechtigungen prüfen.',
		'ERR_CANNOT_WRITE': 'Die neue GeoLite2-Datenbankdatei %s kann nicht geschrieben werden. Bitte die Dateiberechtigungen prüfen.',
		'MSG_UPDATED': 'Die GeoLite2-Datenbank wurde aktualisiert.',
		'MSG_UPDATE_SITE_REFRESHED': 'Die Update-Seite wurde aktualisiert.',
		'MSG_NOT_INSTALLED': 'Das Plugin ist nicht als Erweiterung registriert.',
	},
}

class Language: # pylint: disable=too-few-public-methods

	def __init__(self, locale=None):
		self.locale = locale if locale in STRINGS else FALLBACK_LOCALE

	def text(self, key, *args):
		message = STRINGS[self.locale].get(key, None)
		if message is None:
			message = STRINGS[FALLBACK_LOCALE].get(key, None)
		if message is None:
			return key
		if args:
			message = message % args
		return message
