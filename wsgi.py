"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi roll-loom
    gunicorn wsgi:app
"""

from rabs import create_app

app = create_app()
