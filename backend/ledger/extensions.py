"""
extensions.py — Flask extension singletons.

Initialises SQLAlchemy and marshmallow as module-level objects so they can be
imported anywhere without creating circular dependencies.

Pattern:
    1. Create the extension object here (no app attached yet).
    2. Call init_app(app) inside the app factory in ledger/__init__.py.
    3. Import `db` or `ma` from here wherever needed.

    from backend.ledger.extensions import db, ma

Do not pass the app object directly to SQLAlchemy() or Marshmallow() at
import time — that would prevent running tests with a separate app instance.
"""

from flask_marshmallow import Marshmallow
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

# Marshmallow instance, used for the response (dump) schemas only.
#
# Schema inheritance rule:
#   Request validation schemas (load) inherit from marshmallow.Schema directly.
#   Response schemas (dump) inherit from ma.Schema so routes can hand them
#   straight to jsonify. Neither kind touches the app at class-definition
#   time, so both are usable from unit tests without an app context.
ma = Marshmallow()
