# Overview: Flask API routes for organizations, memberships and teams.

"""
Organization Routes

- GET/POST /api/organizations: any authenticated user (list mine / create, I become owner)
- Membership changes require owner; listing members requires viewer
- Teams: viewer to list, manager to create or add members

The target organization for membership and team routes comes from X-Org-Id.
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_auth, require_org_role
from ..errors import LockstockError
from ..permissions import ROLE_MANAGER, ROLE_OWNER, ROLE_VIEWER
from ..services import organization_service
from ..services import security_service
from ..services.auth_service import find_user


organizations_bp = Blueprint("organizations", __name__, url_prefix="/api/organizations")
teams_bp = Blueprint("teams", __name__, url_prefix="/api/teams")


@organizations_bp.get("")
@require_auth
def list_organizations_route():
    return jsonify({"data": organization_service.list_user_organizations(g.current_user.id)}), 200


@organizations_bp.post("")
@require_auth
def create_organization_route():
    """Request body: {"name": "..."}. The caller becomes the owner."""
    data = request.get_json(silent=True) or {}
    try:
        org = organization_service.create_organization_with_owner(g.current_user.id, data.get("name"))
        return jsonify({"data": org.to_dict()}), 201
    except LockstockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create organization")
        return jsonify({"error": "Internal server error", "details": None}), 500


@organizations_bp.get("/members")
@require_auth
@require_org_role(ROLE_VIEWER)
def list_members_route():
    return jsonify({"data": organization_service.list_members(g.org_id)}), 200


@organizations_bp.post("/members")
@require_auth
@require_org_role(ROLE_OWNER)
def add_member_route():
    """
    Request body:
    {
        "user_id": 12,          // or "username" / "email"
        "role": "member"        // viewer | member | manager | owner
    }
    """
    data = request.get_json(silent=True) or {}

    user_id = data.get("user_id")
    if user_id is None:
        identifier = data.get("username") or data.get("email")
        if not identifier:
            return jsonify({"error": "user_id or username is required", "details": None}), 400
        user = find_user(identifier)
        if user is None:
            return jsonify({"error": "User not found.", "details": {"username": identifier}}), 404
        user_id = user.id

    try:
        member = organization_service.add_member(g.auth_context, user_id=user_id, role=data.get("role"))
        return jsonify({"data": member.to_dict()}), 201
    except LockstockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to add organization member")
        return jsonify({"error": "Internal server error", "details": None}), 500


@organizations_bp.patch("/members/<int:user_id>")
@require_auth
@require_org_role(ROLE_OWNER)
def change_member_role_route(user_id: int):
    data = request.get_json(silent=True) or {}
    try:
        member = organization_service.change_member_role(g.auth_context, user_id, data.get("role"))
        return jsonify({"data": member.to_dict()}), 200
    except LockstockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to change member role")
        return jsonify({"error": "Internal server error", "details": None}), 500


@organizations_bp.get("/security-events")
@require_auth
@require_org_role(ROLE_OWNER)
def security_events_route():
    event_type = request.args.get("event_type")
    limit = min(max(request.args.get("limit", 100, type=int), 1), 500)
    events = security_service.list_security_events(g.org_id, event_type=event_type, limit=limit)
    return jsonify({"data": [e.to_dict() for e in events]}), 200


# =============================================================================
# TEAMS
# =============================================================================

@teams_bp.get("")
@require_auth
@require_org_role(ROLE_VIEWER)
def list_teams_route():
    return jsonify({"data": [t.to_dict() for t in organization_service.list_teams(g.org_id)]}), 200


@teams_bp.post("")
@require_auth
@require_org_role(ROLE_MANAGER)
def create_team_route():
    """Request body: {"name": "...", "description": "..."}"""
    data = request.get_json(silent=True) or {}
    try:
        team = organization_service.create_team(
            g.auth_context,
            name=data.get("name"),
            description=data.get("description"),
        )
        return jsonify({"data": team.to_dict()}), 201
    except LockstockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create team")
        return jsonify({"error": "Internal server error", "details": None}), 500


@teams_bp.post("/<int:team_id>/members")
@require_auth
@require_org_role(ROLE_MANAGER)
def add_team_member_route(team_id: int):
    """Request body: {"user_id": 12}"""
    data = request.get_json(silent=True) or {}
    user_id = data.get("user_id")
    if isinstance(user_id, bool) or not isinstance(user_id, int):
        return jsonify({"error": "user_id must be an integer", "details": None}), 400

    try:
        member = organization_service.add_team_member(g.auth_context, team_id, user_id)
        return jsonify({"data": member.to_dict()}), 201
    except LockstockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to add team member")
        return jsonify({"error": "Internal server error", "details": None}), 500
