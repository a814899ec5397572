# Overview: Organizations, memberships with roles, and teams.

"""
Organization Service

MULTI-TENANT: An Organization is the tenant boundary. Users join organizations
through OrgMember rows carrying exactly one role (viewer, member, manager,
owner). A user may belong to several organizations.

RULES:
- Creating an organization makes the creator its owner (one transaction)
- Only owners add members or change roles
- The last owner of an organization cannot be demoted
- Teams group organization members; only members of the organization can be
  added to a team, and the team creator joins it automatically
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import Conflict, InvalidArgument, InvalidState, NotFound, ValidationError
from ..models import Organization, OrgMember, Team, TeamMember, User
from ..permissions import ROLE_MANAGER, ROLE_OWNER, ROLES
from .authorization_service import AuthorizationContext, require_min_role
from .concurrency import run_in_transaction
from .security_service import log_security_event


def _clean_name(name, field: str = "name", max_length: int = 160) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError(f"{field} is required")
    name = name.strip()
    if len(name) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return name


def _validate_role(role) -> str:
    if role not in ROLES:
        raise InvalidArgument(f"role must be one of: {', '.join(ROLES)}", details={"role": role})
    return role


# =============================================================================
# ORGANIZATIONS
# =============================================================================

def create_organization_with_owner(user_id: int, name: str) -> Organization:
    """Create an organization and make user_id its owner."""
    name = _clean_name(name)

    def _op():
        org = Organization(name=name, created_by_user_id=user_id)
        db.session.add(org)
        db.session.flush()
        db.session.add(OrgMember(org_id=org.id, user_id=user_id, role=ROLE_OWNER))
        db.session.commit()
        return org

    org = run_in_transaction(_op)
    current_app.logger.info("organization created id=%s owner_user_id=%s", org.id, user_id)
    return org


def list_user_organizations(user_id: int) -> list[dict]:
    """Active organizations the user belongs to, with the user's role in each."""
    rows = db.session.query(OrgMember, Organization).join(
        Organization, Organization.id == OrgMember.org_id
    ).filter(
        OrgMember.user_id == user_id,
        Organization.is_active.is_(True),
    ).order_by(Organization.name.asc()).all()

    return [{"role": member.role, "organization": org.to_dict()} for member, org in rows]


def get_organization(org_id: int) -> Organization:
    org = db.session.get(Organization, org_id)
    if org is None:
        raise NotFound("Organization not found.", details={"org_id": org_id})
    return org


# =============================================================================
# MEMBERSHIP
# =============================================================================

def list_members(org_id: int) -> list[dict]:
    rows = db.session.query(OrgMember, User).join(
        User, User.id == OrgMember.user_id
    ).filter(OrgMember.org_id == org_id).order_by(User.username.asc()).all()

    return [
        {
            **member.to_dict(),
            "username": user.username,
            "email": user.email,
            "full_name": user.full_name,
        }
        for member, user in rows
    ]


def is_member(org_id: int, user_id: int) -> bool:
    return db.session.query(OrgMember.id).filter_by(org_id=org_id, user_id=user_id).first() is not None


def add_member(ctx: AuthorizationContext, *, user_id: int, role: str) -> OrgMember:
    """
    Add an existing user to the caller's organization.

    Raises:
        Forbidden: actor below owner
        InvalidArgument: unknown role
        NotFound: user does not exist
        Conflict: user is already a member
    """
    require_min_role(ctx, ROLE_OWNER)
    _validate_role(role)

    return grant_membership(ctx.org_id, user_id, role)


def grant_membership(org_id: int, user_id: int, role: str) -> OrgMember:
    """
    Insert a membership without a role check. Callers gate it: add_member
    requires owner, the CLI runs as the operator.
    """
    _validate_role(role)
    get_organization(org_id)

    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        raise NotFound("User not found.", details={"user_id": user_id})

    def _op():
        if is_member(org_id, user_id):
            raise Conflict("User is already a member of this organization.", details={"user_id": user_id})
        member = OrgMember(org_id=org_id, user_id=user_id, role=role)
        db.session.add(member)
        db.session.commit()
        return member

    try:
        member = run_in_transaction(_op)
    except IntegrityError:
        raise Conflict("User is already a member of this organization.", details={"user_id": user_id})

    current_app.logger.info("member added org_id=%s user_id=%s role=%s", org_id, user_id, role)
    return member


def change_member_role(ctx: AuthorizationContext, user_id: int, role: str) -> OrgMember:
    """
    Raises:
        Forbidden: actor below owner
        InvalidArgument: unknown role
        NotFound: user is not a member of the organization
        InvalidState: would leave the organization without an owner
    """
    require_min_role(ctx, ROLE_OWNER)
    _validate_role(role)

    def _op():
        member = db.session.query(OrgMember).filter_by(org_id=ctx.org_id, user_id=user_id).first()
        if member is None:
            raise NotFound("Member not found.", details={"user_id": user_id})

        if member.role == ROLE_OWNER and role != ROLE_OWNER:
            owners = db.session.query(OrgMember).filter_by(org_id=ctx.org_id, role=ROLE_OWNER).count()
            if owners <= 1:
                raise InvalidState("An organization must keep at least one owner.")

        previous = member.role
        member.role = role
        db.session.commit()
        return member, previous

    member, previous = run_in_transaction(_op)

    log_security_event(
        event_type="MEMBER_ROLE_CHANGED",
        success=True,
        user_id=ctx.user_id,
        org_id=ctx.org_id,
        reason=f"User {user_id} role {previous} -> {role}",
    )
    current_app.logger.info(
        "member role changed org_id=%s user_id=%s %s -> %s by user_id=%s",
        ctx.org_id, user_id, previous, role, ctx.user_id,
    )
    return member


# =============================================================================
# TEAMS
# =============================================================================

def list_teams(org_id: int) -> list[Team]:
    return db.session.query(Team).filter(Team.org_id == org_id).order_by(
        Team.created_at.desc(), Team.id.desc()
    ).all()


def create_team(ctx: AuthorizationContext, *, name: str, description: str | None = None) -> Team:
    """Create a team; the creator becomes its first member."""
    require_min_role(ctx, ROLE_MANAGER)
    name = _clean_name(name, max_length=120)
    if description is not None and len(description) > 600:
        raise ValidationError("description exceeds max length 600")

    def _op():
        if db.session.query(Team.id).filter_by(org_id=ctx.org_id, name=name).first():
            raise Conflict(f"Team {name} already exists.", details={"name": name})
        team = Team(org_id=ctx.org_id, name=name, description=description, created_by_user_id=ctx.user_id)
        db.session.add(team)
        db.session.flush()
        db.session.add(TeamMember(team_id=team.id, user_id=ctx.user_id, created_by_user_id=ctx.user_id))
        db.session.commit()
        return team

    return run_in_transaction(_op)


def add_team_member(ctx: AuthorizationContext, team_id: int, user_id: int) -> TeamMember:
    """
    Raises:
        Forbidden: actor below manager
        InvalidArgument: user is not a member of the organization
        NotFound: team missing or in another organization
        Conflict: user already on the team
    """
    require_min_role(ctx, ROLE_MANAGER)

    def _op():
        if not is_member(ctx.org_id, user_id):
            raise InvalidArgument(
                "User is not a member of this organization.",
                details={"user_id": user_id},
            )
        team = db.session.get(Team, team_id)
        if team is None or team.org_id != ctx.org_id:
            raise NotFound("Team not found.", details={"team_id": team_id})
        if db.session.query(TeamMember.id).filter_by(team_id=team.id, user_id=user_id).first():
            raise Conflict("User is already on this team.", details={"user_id": user_id})

        member = TeamMember(team_id=team.id, user_id=user_id, created_by_user_id=ctx.user_id)
        db.session.add(member)
        db.session.commit()
        return member

    return run_in_transaction(_op)
