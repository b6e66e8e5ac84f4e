# services/rules.py
"""
Ad-block rule store: list (with default fallback/seeding), create, update.

Routes call into here and translate RuleValidationError -> 400 and
RuleNotFound -> 404. Store errors (SQLAlchemyError) propagate as-is,
except inside ensure_defaults_seeded(), which is best-effort.
"""
from __future__ import annotations

import re
import secrets
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app import db
from models import AdBlockRule, RULE_ACTIONS, RULE_CATEGORIES
from services.default_rules import DefaultRuleSet


class RuleValidationError(ValueError):
    """Bad client input. `detail` carries e.g. the regex compiler message."""

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


class RuleNotFound(LookupError):
    pass


# ------------------ small helpers ------------------

def _defaults() -> DefaultRuleSet:
    return current_app.extensions["adblock_defaults"]


def _ensure_id(record: Dict[str, Any]) -> Dict[str, Any]:
    """Every record handed to clients carries a non-empty string id."""
    rid = record.get("id")
    if rid is None or str(rid).strip() == "":
        record["id"] = secrets.token_hex(16)
    else:
        record["id"] = str(rid)
    return record


def _active_rows() -> list[AdBlockRule]:
    return (
        AdBlockRule.query
        .filter_by(is_active=True)
        .order_by(AdBlockRule.created_at, AdBlockRule.id)
        .all()
    )


def _stored_default_keys() -> set[str]:
    rows = (
        db.session.query(AdBlockRule.default_key)
        .filter(AdBlockRule.default_key.isnot(None))
        .all()
    )
    return {key for (key,) in rows}


def _require_object(data: Any) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise RuleValidationError("Request body must be a JSON object")
    return data


def _clean_trigger(value: Any) -> str:
    if value is None:
        raise RuleValidationError("Trigger is required")
    if not isinstance(value, str):
        raise RuleValidationError("Trigger must be a string")
    value = value.strip()
    if not value:
        raise RuleValidationError("Trigger is required")
    return value


def _clean_choice(name: str, value: Any, allowed: tuple[str, ...]) -> str:
    if not isinstance(value, str) or value not in allowed:
        raise RuleValidationError(
            f"Invalid {name}",
            detail=f"{name} must be one of: {', '.join(allowed)}",
        )
    return value


def _clean_description(value: Any) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise RuleValidationError("Description must be a string")
    return value.strip()


# ------------------ seeding ------------------

def _insert_default(key: str, rule: Dict[str, Any]) -> None:
    db.session.add(AdBlockRule(
        default_key=key,
        trigger=rule["trigger"],
        action=rule["action"],
        category=rule["category"],
        description=rule["description"],
        is_active=True,
    ))
    db.session.commit()


def ensure_defaults_seeded() -> int:
    """
    Insert every default rule whose key isn't stored yet. Returns rows inserted.

    The unique default_key column makes concurrent seeding safe: the loser of a
    race hits IntegrityError for that row and moves on. Any other store error
    stops seeding; it is logged and swallowed, and the count of rows already
    committed is returned, so listing can still fall back to the built-ins.
    """
    defaults = _defaults()
    inserted = 0
    try:
        stored = _stored_default_keys()
        for key, rule in defaults.rules.items():
            if key in stored:
                continue
            try:
                _insert_default(key, rule)
                inserted += 1
            except IntegrityError:
                db.session.rollback()
                current_app.logger.info("[adblock] default rule %s already seeded by another request", key)
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.warning("[adblock] seeding default rules failed (non-fatal): %s", e)
        return inserted

    if inserted:
        current_app.logger.info(
            "[adblock] seeded %d default rule(s) from version %s", inserted, defaults.version
        )
    return inserted


# ------------------ public API ------------------

def list_active_rules() -> list[dict]:
    """
    Active rules from the store. When there are none, seed the defaults and
    read again; if the store still has nothing active, serve the built-ins unsaved.
    """
    rows = _active_rows()
    if not rows:
        ensure_defaults_seeded()
        rows = _active_rows()

    if rows:
        records = [r.to_dict() for r in rows]
    else:
        current_app.logger.info("[adblock] no active rules stored; serving built-in defaults")
        records = _defaults().as_records()

    return [_ensure_id(r) for r in records]


def create_rule(data: Any) -> dict:
    data = _require_object(data)

    trigger = _clean_trigger(data.get("trigger"))
    try:
        re.compile(trigger)
    except re.error as e:
        raise RuleValidationError("Invalid trigger pattern", detail=str(e)) from e

    rule = AdBlockRule(
        trigger=trigger,
        action=_clean_choice("action", data.get("action") or "block", RULE_ACTIONS),
        category=_clean_choice("category", data.get("category") or "custom", RULE_CATEGORIES),
        description=_clean_description(data.get("description")),
        is_active=True,
        last_updated=datetime.now(timezone.utc),
    )
    db.session.add(rule)
    db.session.commit()

    current_app.logger.info(
        "[adblock] created rule %s",
        {"id": rule.id, "trigger": rule.trigger, "action": rule.action, "category": rule.category},
    )
    return _ensure_id(rule.to_dict())


def update_rule(rule_id: str, data: Any) -> dict:
    """
    Replace the supplied fields and refresh lastUpdated. Unknown fields are
    ignored. The trigger is not regex-checked here, only on create.
    """
    data = _require_object(data)

    rule = db.session.get(AdBlockRule, rule_id)
    if rule is None:
        raise RuleNotFound(rule_id)

    # Validate everything before touching the row
    changes: Dict[str, Any] = {}
    if "trigger" in data:
        changes["trigger"] = _clean_trigger(data["trigger"])
    if "action" in data:
        changes["action"] = _clean_choice("action", data["action"], RULE_ACTIONS)
    if "category" in data:
        changes["category"] = _clean_choice("category", data["category"], RULE_CATEGORIES)
    if "description" in data:
        changes["description"] = _clean_description(data["description"])
    if "isActive" in data:
        if not isinstance(data["isActive"], bool):
            raise RuleValidationError("isActive must be a boolean")
        changes["is_active"] = data["isActive"]

    for field, value in changes.items():
        setattr(rule, field, value)
    rule.last_updated = datetime.now(timezone.utc)
    db.session.commit()

    current_app.logger.info("[adblock] updated rule %s fields=%s", rule.id, sorted(changes))
    return _ensure_id(rule.to_dict())
