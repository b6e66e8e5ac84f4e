"""
Ad-block rules blueprint (routes live in routes.py).

Registered by create_app() when ADBLOCK_ENABLED is on.
"""

from __future__ import annotations
from flask import Blueprint

bp = Blueprint("adblock", __name__, url_prefix="/api/adblock")

# Route definitions live in adblock/routes.py; importing here keeps them colocated.
from . import routes  # noqa: E402,F401
