"""
RABS Loom
SQLAlchemy extension instance shared by every model module.

Usage:
    from rabs.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
