"""
WSGI entry point.

Usage:
    flask --app wsgi run
"""

from workflow_xray import create_app

app = create_app()
