"""
WSGI entry point, also used by Flask-Migrate / Alembic.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db upgrade
    flask --app wsgi send-approval-reminders
"""

from app import create_app

app = create_app()
