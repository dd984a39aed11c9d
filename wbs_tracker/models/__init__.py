"""
WBS Tracker
Shared SQLAlchemy instance for all domain models.

Usage:
    from wbs_tracker.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
