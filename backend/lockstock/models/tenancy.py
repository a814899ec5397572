from __future__ import annotations

from ..extensions import db
from lockstock.time_utils import to_utc_z


class Organization(db.Model):
    """
    Multi-tenant root: every tenant is an Organization.

    All materials, locations, suppliers, purchase orders and stock movements
    carry org_id. Nothing crosses organization boundaries; a record owned by a
    different organization is reported as not found.
    """
    __tablename__ = "organizations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(160), nullable=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Organization id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class OrgMember(db.Model):
    """
    Membership of a user in an organization, with exactly one role.

    Roles form a total order (viewer < member < manager < owner); see
    lockstock.permissions for the rank table.
    """
    __tablename__ = "org_members"
    __table_args__ = (
        db.UniqueConstraint("org_id", "user_id", name="uq_org_members_org_user"),
        db.CheckConstraint(
            "role IN ('viewer', 'member', 'manager', 'owner')",
            name="ck_org_members_role",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    role = db.Column(db.String(16), nullable=False, default="viewer")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    organization = db.relationship("Organization", backref=db.backref("members", lazy=True))
    user = db.relationship("User", backref=db.backref("memberships", lazy=True))

    def __repr__(self) -> str:
        return f"<OrgMember org_id={self.org_id} user_id={self.user_id} role={self.role}>"

    def to_dict(self) -> dict:
        return {
            "org_id": self.org_id,
            "user_id": self.user_id,
            "role": self.role,
            "created_at": to_utc_z(self.created_at),
        }


class Team(db.Model):
    __tablename__ = "teams"
    __table_args__ = (
        db.UniqueConstraint("org_id", "name", name="uq_teams_org_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    description = db.Column(db.String(600), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "name": self.name,
            "description": self.description,
            "member_user_ids": [m.user_id for m in self.members],
            "created_at": to_utc_z(self.created_at),
        }


class TeamMember(db.Model):
    __tablename__ = "team_members"
    __table_args__ = (
        db.UniqueConstraint("team_id", "user_id", name="uq_team_members_team_user"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(db.Integer, db.ForeignKey("teams.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    team = db.relationship("Team", backref=db.backref("members", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "team_id": self.team_id,
            "user_id": self.user_id,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
