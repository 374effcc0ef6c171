#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
	WSGI entry point for the SimplePM Flask application.
	The WSGI server imports this module and calls `application`,
	which must reference the Flask app returned by create_app().
	Install the project (pip install .) so the simplepm package is importable.
"""

# Import the Flask app factory
from simplepm.server import create_app

# WSGI servers look up this symbol
application = create_app()
