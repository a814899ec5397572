# Overview: Resolves (organization, actor, role) and gates operations by role rank.

"""
Authorization Context

WHY: Every mutating operation in Lockstock is gated by a minimum organization
role. The identity layer hands us an authenticated user id and the
organization the request targets; this module turns that into an
AuthorizationContext and answers "is this role high enough?".

INVARIANTS:
- No membership (or unknown / inactive organization) -> Unauthorized
- Role rank below the required minimum -> Forbidden
- Comparison is rank-based: actor_rank >= required_rank
- Denials are written to the security audit trail and logged at WARNING

Services receive the context explicitly; they never read flask.g themselves.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app, has_app_context

from ..extensions import db
from ..errors import Forbidden, Unauthorized
from ..models import Organization, OrgMember
from ..permissions import ROLE_RANK, has_min_role
from .security_service import log_security_event


@dataclass(frozen=True)
class AuthorizationContext:
    """Resolved tenant context for one request."""
    org_id: int
    user_id: int
    role: str

    def has_min_role(self, required_role: str) -> bool:
        return has_min_role(self.role, required_role)


def _warn(message: str) -> None:
    if has_app_context():
        current_app.logger.warning(message)


def resolve_context(user_id: int, org_id: int) -> AuthorizationContext:
    """
    Resolve the actor's membership in an organization.

    Raises:
        Unauthorized: organization missing/inactive or user has no membership
    """
    org = db.session.get(Organization, org_id)
    membership = None
    if org is not None and org.is_active:
        membership = db.session.query(OrgMember).filter_by(org_id=org_id, user_id=user_id).first()

    if membership is None:
        log_security_event(
            event_type="MEMBERSHIP_DENIED",
            success=False,
            user_id=user_id,
            org_id=org_id,
            reason=f"User {user_id} is not a member of organization {org_id}",
        )
        _warn(f"membership denied user_id={user_id} org_id={org_id}")
        raise Unauthorized("User is not a member of this organization.")

    if membership.role not in ROLE_RANK:
        # Rows are CHECK-constrained; an unknown role means schema drift
        raise Unauthorized(f"Membership has unknown role {membership.role!r}.")

    return AuthorizationContext(org_id=org_id, user_id=user_id, role=membership.role)


def require_min_role(ctx: AuthorizationContext, required_role: str) -> AuthorizationContext:
    """
    Fail with Forbidden unless ctx.role ranks at or above required_role.

    Returns the context so calls can be chained at the top of a service.
    """
    if ctx.has_min_role(required_role):
        return ctx

    log_security_event(
        event_type="ROLE_DENIED",
        success=False,
        user_id=ctx.user_id,
        org_id=ctx.org_id,
        reason=f"Role {ctx.role} below required {required_role}",
    )
    _warn(f"role denied user_id={ctx.user_id} org_id={ctx.org_id} role={ctx.role} required={required_role}")
    raise Forbidden(
        f"This action requires {required_role} role or higher.",
        details={"role": ctx.role, "required_role": required_role},
    )
