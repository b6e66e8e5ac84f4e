# services/default_rules.py
"""
Built-in fallback ad-block rules.

The rule set lives in a JSON table (adblock/default_rules.json by default):

    {
      "version": "2024-11-02",
      "rules": {
        "default-1": {"trigger": ".*ads\\..*", "action": "block", "category": "ads",
                      "description": "..."}
      }
    }

Swap the file (ADBLOCK_DEFAULT_RULES_PATH) to change what an empty store serves
and seeds.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict

from models import RULE_ACTIONS, RULE_CATEGORIES


@dataclass(frozen=True)
class DefaultRuleSet:
    version: str
    # key -> {"trigger", "action", "category", "description"}
    rules: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def as_records(self) -> list[dict]:
        """Unsaved API-shaped records, keyed ids (used when seeding isn't possible)."""
        return [
            {
                "id": key,
                "trigger": r["trigger"],
                "action": r["action"],
                "category": r["category"],
                "isActive": True,
                "description": r["description"],
                "lastUpdated": None,
            }
            for key, r in self.rules.items()
        ]


def _normalize_entry(key: str, raw: Any) -> Dict[str, Any]:
    if not isinstance(raw, dict):
        raise ValueError(f"default rule {key!r}: expected an object")

    trigger = str(raw.get("trigger") or "").strip()
    if not trigger:
        raise ValueError(f"default rule {key!r}: trigger is required")
    try:
        re.compile(trigger)
    except re.error as e:
        raise ValueError(f"default rule {key!r}: invalid trigger regex: {e}") from e

    action = raw.get("action") or "block"
    category = raw.get("category") or "custom"
    if action not in RULE_ACTIONS:
        raise ValueError(f"default rule {key!r}: unknown action {action!r}")
    if category not in RULE_CATEGORIES:
        raise ValueError(f"default rule {key!r}: unknown category {category!r}")

    return {
        "trigger": trigger,
        "action": action,
        "category": category,
        "description": str(raw.get("description") or "").strip(),
    }


def parse_default_rules(doc: Any) -> DefaultRuleSet:
    if not isinstance(doc, dict) or not isinstance(doc.get("rules"), dict):
        raise ValueError("default rules document must be an object with a 'rules' mapping")

    rules: Dict[str, Dict[str, Any]] = {}
    for key, raw in doc["rules"].items():
        key = str(key).strip()
        if not key or len(key) > 64:
            raise ValueError(f"default rule key {key!r} must be 1-64 characters")
        rules[key] = _normalize_entry(key, raw)

    return DefaultRuleSet(version=str(doc.get("version") or "unversioned"), rules=rules)


def load_default_rules(path: str) -> DefaultRuleSet:
    """Read + validate the table. Bad files fail app start rather than serving junk."""
    with open(path, "r", encoding="utf-8") as fh:
        doc = json.load(fh)
    return parse_default_rules(doc)
