# models.py
import uuid
from datetime import datetime, timezone

from app import db  # created in app.py


RULE_ACTIONS = ("block", "hide", "redirect")
RULE_CATEGORIES = ("ads", "tracking", "malware", "adult", "custom")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_rule_id() -> str:
    return uuid.uuid4().hex


# ----- AdBlockRule ------------------------------------------------------------

class AdBlockRule(db.Model):
    __tablename__ = "adblock_rules"

    id = db.Column(db.String(32), primary_key=True, default=_new_rule_id)

    trigger = db.Column(db.Text, nullable=False)                          # regex pattern
    action = db.Column(db.String(16), nullable=False, default="block")
    category = db.Column(db.String(16), nullable=False, default="custom")
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    description = db.Column(db.Text, nullable=True, default="")

    # Set only for rows seeded from the built-in default table; unique so seeding can't duplicate
    default_key = db.Column(db.String(64), unique=True, nullable=True)

    last_updated = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        db.CheckConstraint(
            "action IN ('block', 'hide', 'redirect')", name="ck_adblock_rules_action"
        ),
        db.CheckConstraint(
            "category IN ('ads', 'tracking', 'malware', 'adult', 'custom')",
            name="ck_adblock_rules_category",
        ),
    )

    def to_dict(self) -> dict:
        """API shape (camelCase, ISO timestamps)."""
        return {
            "id": self.id,
            "trigger": self.trigger,
            "action": self.action,
            "category": self.category,
            "isActive": bool(self.is_active),
            "description": self.description or "",
            "lastUpdated": _iso(self.last_updated),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }

    def __repr__(self) -> str:
        return f"<AdBlockRule {self.id} {self.action}:{self.category} {self.trigger!r}>"


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    # SQLite drops tzinfo on the way back
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()
