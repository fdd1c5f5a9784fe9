"""
WSGI entry point and Flask-Migrate / Alembic target.

Usage:
    APP_ENV=production flask --app wsgi run
    flask --app wsgi db upgrade
    flask --app wsgi db migrate -m "description"
"""

from app import create_app

app = create_app()
