"""
Flask-Migrate / Alembic entry point.

Usage:
    flask db init       # first time only (creates migrations/)
    flask db migrate -m "description"
    flask db upgrade
    flask wbs-rebuild <project_id>
"""

from wbs_tracker import create_app

app = create_app()
