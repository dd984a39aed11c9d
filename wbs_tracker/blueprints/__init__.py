"""
WBS Tracker
Blueprint registry.
"""

from wbs_tracker.blueprints.health_bp import health_bp
from wbs_tracker.blueprints.wbs_bp import wbs_bp

ALL_BLUEPRINTS = (health_bp, wbs_bp)
