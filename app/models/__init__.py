"""
Issue Workflow Platform
SQLAlchemy models package.

Every model module imports the shared ``db`` handle from here:

    from app.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
