"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db migrate -m "describe change"
    flask --app wsgi db upgrade
    flask --app wsgi redeliver-notifications 42 --organization-id 3
"""

from reqflow import create_app

app = create_app()
