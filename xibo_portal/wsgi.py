"""
WSGI entry point for Xibo Portal.

Usage:
    gunicorn -w 4 -b 0.0.0.0:5004 'xibo_portal.wsgi:application'
"""

from xibo_portal.app import create_app

application = create_app()
