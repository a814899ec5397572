from __future__ import annotations

from ..extensions import db
from lockstock.time_utils import to_utc_z


class SecurityEvent(db.Model):
    """
    Security event audit log with tenant context.

    Records denied memberships, role checks that failed, cross-tenant lookups
    and login failures. Append-only: never updated or deleted.
    """
    __tablename__ = "security_events"
    __table_args__ = (
        db.Index("ix_security_events_user_type", "user_id", "event_type"),
        db.Index("ix_security_events_org_occurred", "org_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Nullable for pre-auth events and requests naming an unknown organization
    org_id = db.Column(db.Integer, nullable=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    event_type = db.Column(db.String(64), nullable=False, index=True)  # ROLE_DENIED, LOGIN_FAILED, ...
    resource = db.Column(db.String(128), nullable=True)  # e.g. "/api/purchase-orders/4/status"
    action = db.Column(db.String(64), nullable=True)  # e.g. "PATCH", "min_role:manager"

    success = db.Column(db.Boolean, nullable=False, index=True)
    reason = db.Column(db.Text, nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "user_id": self.user_id,
            "event_type": self.event_type,
            "resource": self.resource,
            "action": self.action,
            "success": self.success,
            "reason": self.reason,
            "ip_address": self.ip_address,
            "occurred_at": to_utc_z(self.occurred_at),
        }
