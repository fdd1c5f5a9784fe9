"""
Nirman Works Tracker
Shared SQLAlchemy instance.

Every model module imports ``db`` from here; ``create_app`` binds it to the
Flask application and imports the model modules so metadata is complete.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
