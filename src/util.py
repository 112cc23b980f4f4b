#!/usr/bin/env python3

import logging
import logging.handlers
import os

def setup_logging(path, level=logging.INFO):
	LOG_MAX_FILESIZE = 2**20 # 1 MB

	class CustomFormatter(logging.Formatter):
		def __init__(self):
			super(CustomFormatter, self).__init__(fmt='%(asctime)s', datefmt='%Y-%m-%d %H:%M:%S')

		def formatMessage(self, record):
			fmt = '%(asctime)s %(levelname)-8s %(module)s:%(lineno)s %(message)s'
			return fmt % record.__dict__

	logger = logging.getLogger()
	logger.setLevel(level=logging.DEBUG)
	formatter = CustomFormatter()

	directory = os.path.dirname(path)
	if directory:
		os.makedirs(directory, mode=0o777, exist_ok=True)
	file_handler = logging.handlers.RotatingFileHandler(path, maxBytes=LOG_MAX_FILESIZE, backupCount=10)
	file_handler.setFormatter(formatter)
	file_handler.setLevel(level=level)
	logger.addHandler(file_handler)

	console_handler = logging.StreamHandler()
	console_handler.setFormatter(formatter)
	console_handler.setLevel(level=level)
	logger.addHandler(console_handler)
