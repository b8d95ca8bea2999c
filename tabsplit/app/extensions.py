"""
extensions.py: Flask extension singletons.

Initialises SQLAlchemy and marshmallow as module-level objects so they can be
imported anywhere without creating circular dependencies.

Pattern:
    1. Create the extension object here (no app attached yet).
    2. Call init_app(app) inside the app factory in app/__init__.py.
    3. Import `db` or `ma` from here wherever needed.

    from tabsplit.app.extensions import db, ma
"""

from flask_marshmallow import Marshmallow
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

# IMPORTANT - schema inheritance rule:
#   Validation Schema classes (in app/schemas/) inherit from marshmallow.Schema
#   directly, NOT from ma.Schema. ma.Schema needs an application context and
#   unit tests in tests/unit/ run without one.
ma = Marshmallow()
