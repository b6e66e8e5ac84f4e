"""
Ad-block rule routes (JSON)

    GET  /api/adblock/rules          active rules (built-in defaults when none stored)
    POST /api/adblock/rules          create   {trigger, action?, category?, description?}
    PUT  /api/adblock/rules/<id>     update   partial fields

No auth: the kiosk client reads rules, admins post them from the dashboard.
"""

from __future__ import annotations

from flask import current_app, jsonify, request

from app import db
from services.rules import (
    RuleNotFound,
    RuleValidationError,
    create_rule,
    list_active_rules,
    update_rule,
)
from . import bp  # blueprint defined in adblock/__init__.py (url_prefix="/api/adblock")


def _server_error(message: str, e: Exception):
    current_app.logger.exception("[adblock] %s: %s", message, e)
    db.session.rollback()
    detail = str(e) if current_app.config.get("EXPOSE_ERROR_DETAIL") else "An error occurred"
    return jsonify({"message": message, "error": detail}), 500


def _bad_request(e: RuleValidationError):
    body = {"message": e.message}
    if e.detail:
        body["error"] = e.detail
    return jsonify(body), 400


def _body():
    # silent: a non-JSON body becomes None and fails validation as a 400
    return request.get_json(silent=True)


# --------------------------------------------------------------------
# List
# --------------------------------------------------------------------

@bp.route("/rules", methods=["GET"])
def get_rules():
    try:
        return jsonify(list_active_rules())
    except Exception as e:
        return _server_error("Error fetching ad block rules", e)


# --------------------------------------------------------------------
# Create
# --------------------------------------------------------------------

@bp.route("/rules", methods=["POST"])
def post_rule():
    try:
        rule = create_rule(_body())
    except RuleValidationError as e:
        return _bad_request(e)
    except Exception as e:
        return _server_error("Error creating ad block rule", e)
    return jsonify(rule), 201


# --------------------------------------------------------------------
# Update
# --------------------------------------------------------------------

@bp.route("/rules/<rule_id>", methods=["PUT"])
def put_rule(rule_id: str):
    try:
        rule = update_rule(rule_id, _body())
    except RuleNotFound:
        return jsonify({"message": "Rule not found"}), 404
    except RuleValidationError as e:
        return _bad_request(e)
    except Exception as e:
        return _server_error("Error updating ad block rule", e)
    return jsonify(rule)
