"""
WSGI entry point for the accreditation API.

Usage:
    gunicorn wsgi:app
    flask --app wsgi seed-roles
    flask --app wsgi validate-workflows
    flask --app wsgi db upgrade      # Flask-Migrate, once migrations/ exists
"""

from app import create_app

app = create_app()
