"""
WSGI / Flask-Migrate entry point.

Usage:
    flask db upgrade
    flask regenerate-schedule <project_id>
    gunicorn wsgi:app
"""

from app import create_app

app = create_app()
