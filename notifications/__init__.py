"""
App Store server notifications blueprint (routes live in routes.py).

Registered by create_app() when NOTIFICATIONS_ENABLED is on.
"""

from __future__ import annotations
from flask import Blueprint

bp = Blueprint("notifications", __name__, url_prefix="/notifications")

from . import routes  # noqa: E402,F401
