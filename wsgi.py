"""
WSGI / Flask CLI entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi seed-default-workflow --org-slug acme
    gunicorn wsgi:app
"""

from app import create_app

app = create_app()
