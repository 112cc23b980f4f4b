#!/usr/bin/env python3

'''
A small web server that answers GeoIP questions for other applications
on the same host, and lets an admin trigger database updates.

	GET  /geoip/<ip>?locale=de
	POST /admin/<action>   {"password": "...", "args": {...}}

Admin actions: update, refresh-update-site, status.
'''

import argparse
import json
import logging

import tornado.ioloop # `sudo pip3 install tornado`
import tornado.web

import akgeoip
import util

def _set_default_headers(self):
	# Don't reveal which webserver we're using.
	# This way (as opposed to overriding `set_default_headers()`)
	# also works for the default error handlers.
	self.set_header('Server', 'AkGeoipServer')

tornado.web.RequestHandler.set_default_headers = _set_default_headers

class BaseHandler(tornado.web.RequestHandler): # pylint: disable=abstract-method

	def initialize(self, logic): # pylint: disable=arguments-differ
		self.logic = logic # pylint: disable=attribute-defined-outside-init

	def write_json(self, data, status=200):
		self.set_status(status)
		self.set_header('Content-Type', 'application/json; charset=utf-8')
		self.write(json.dumps(data))

class LookupHandler(BaseHandler): # pylint: disable=abstract-method

	def get(self, ip_address): # pylint: disable=arguments-differ
		locale = self.get_query_argument('locale', None)
		self.write_json(self.logic.lookup(ip_address, locale))

class AdminHandler(BaseHandler): # pylint: disable=abstract-method

	def post(self, action): # pylint: disable=arguments-differ
		try:
			payload = json.loads(self.request.body.decode('utf-8'))
		except ValueError:
			payload = None
		if not isinstance(payload, dict):
			logging.warning('Admin request with invalid payload: %r', self.request.body[:100])
			self.write_json('invalid json', status=400)
			return

		success, result = self.logic.run_admin(
			payload.get('password', None),
			action,
			payload.get('args', None) or {}
		)

		self.write_json(result, status=200 if success else 500)

def make_app(logic):
	args = {
		'logic': logic,
	}
	return tornado.web.Application([
		(r'/geoip/(.+)', LookupHandler, args),
		(r'/admin/(.+)', AdminHandler, args),
	])

def start(config_path, port=8080, address='127.0.0.1'):
	logic = akgeoip.AkGeoip(config_path)
	util.setup_logging(logic.get_log_path())

	logging.info('Starting webserver on %s:%s.', address, port)

	make_app(logic).listen(port, address=address)
	tornado.ioloop.IOLoop.current().start()

def main():
	parser = argparse.ArgumentParser(description='The GeoIP Web Server.')
	parser.add_argument('--config', '-c', default='app-config.json')
	parser.add_argument('--port', '-p', type=int, default=8080)
	parser.add_argument('--address', '-a', default='127.0.0.1')
	args = parser.parse_args()

	start(args.config, port=args.port, address=args.address)

if __name__ == '__main__':
	main()
