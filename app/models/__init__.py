"""
Agency Delivery Workflow
Model package: shared SQLAlchemy handle.

Every model module imports ``db`` from here so that the application
factory can bind a single Flask-SQLAlchemy instance:

    from app.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
