#!/usr/bin/env python3

'''
Command line access to the same operations the web server offers.
Whoever can run this can read the config file anyway,
so there is no password check.

Put `console.py maintain` into a daily cronjob.
'''

import argparse
import getpass
import json
import sys

from passlib.apps import custom_app_context as pwd_context # `sudo pip3 install passlib`

import akgeoip
import util

def _print_result(success, result):
	if isinstance(result, str):
		print(result)
	else:
		print(json.dumps(result, indent=2))
	if not success:
		sys.exit(1)

def main():
	parser = argparse.ArgumentParser()
	parser.add_argument('-c', '--config', default='app-config.json')
	sub_parsers = parser.add_subparsers()

	def get_logic(args):
		logic = akgeoip.AkGeoip(args.config)
		util.setup_logging(logic.get_log_path())
		return logic

	lookup_parser = sub_parsers.add_parser('lookup')
	lookup_parser.add_argument('ip_address')
	lookup_parser.add_argument('-l', '--locale', help='e.g. "de" for German names')
	def lookup_handler(args):
		_print_result(True, get_logic(args).lookup(args.ip_address, args.locale))
	lookup_parser.set_defaults(func=lookup_handler)

	update_parser = sub_parsers.add_parser('update')
	update_parser.add_argument('--city', help='Switch to the City database', action='store_true')
	def update_handler(args):
		_print_result(*get_logic(args).update(force_city=args.city))
	update_parser.set_defaults(func=update_handler)

	refresh_parser = sub_parsers.add_parser('refresh-update-site')
	def refresh_handler(args):
		_print_result(*get_logic(args).refresh_update_site())
	refresh_parser.set_defaults(func=refresh_handler)

	status_parser = sub_parsers.add_parser('status')
	def status_handler(args):
		_print_result(*get_logic(args).status())
	status_parser.set_defaults(func=status_handler)

	maintain_parser = sub_parsers.add_parser('maintain')
	def maintain_handler(args):
		print(get_logic(args).maintain(), end='')
	maintain_parser.set_defaults(func=maintain_handler)

	hash_parser = sub_parsers.add_parser('hash-password', help='Prints a hash for "admin_password_hash"')
	def hash_handler(_):
		password = getpass.getpass('Password: ')
		print(pwd_context.hash(password))
	hash_parser.set_defaults(func=hash_handler)

	all_args = parser.parse_args()
	if getattr(all_args, 'func', None) is None:
		parser.print_help()
	else:
		all_args.func(all_args)

if __name__ == '__main__':
	main()
