"""
certflow: Safety-Certification Workflow Service
Database handle shared by every model module.

Usage:
    from certflow.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
