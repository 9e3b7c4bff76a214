"""
extensions.py — unbound Flask extension objects.

`db` and `ma` are created without an app and bound with init_app() inside
create_app(), so models, services and tests can import them freely and every
test app gets its own binding.
"""

from flask_sqlalchemy import SQLAlchemy
from flask_marshmallow import Marshmallow

db = SQLAlchemy()

# Request schemas subclass marshmallow.Schema, not ma.Schema: the latter needs
# an app context, and tests/unit builds schemas without one.
ma = Marshmallow()
