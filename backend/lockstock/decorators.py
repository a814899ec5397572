# Overview: Request authentication and organization-role decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .errors import LockstockError
from .permissions import ROLE_RANK
from .services import session_service
from .services.authorization_service import require_min_role, resolve_context


ORG_HEADER = "X-Org-Id"


def _is_authenticated() -> bool:
    return hasattr(g, "current_user") and g.current_user is not None


def bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_auth(f):
    """
    Require a live bearer session.

    Sets the following Flask g attributes:
    - g.current_user: The authenticated User object
    - g.session_context: The full SessionContext object

    Returns 401 if the Authorization header is missing, or the token is
    unknown, expired, idle or revoked, or belongs to a deactivated user.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = bearer_token()
        if not token:
            return jsonify({"error": "Missing Authorization Bearer token.", "details": None}), 401

        context = session_service.validate_session(token)
        if not context:
            return jsonify({"error": "Invalid or expired token.", "details": None}), 401

        g.current_user = context.user
        g.session_context = context

        return f(*args, **kwargs)

    return decorated_function


def require_org_role(min_role: str):
    """
    Resolve the organization named by the X-Org-Id header and require a
    minimum role in it. Must be applied after @require_auth.

    Sets g.org_id and g.auth_context (AuthorizationContext).

    400 missing/non-integer header, 403 no membership or role too low.
    """
    if min_role not in ROLE_RANK:
        raise ValueError(f"Unknown role: {min_role!r}")

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required", "details": None}), 401

            raw_org_id = (request.headers.get(ORG_HEADER) or "").strip()
            if not raw_org_id:
                return jsonify({"error": f"Missing {ORG_HEADER} header.", "details": None}), 400
            try:
                org_id = int(raw_org_id)
            except ValueError:
                return jsonify({"error": f"{ORG_HEADER} must be an integer.", "details": None}), 400

            try:
                ctx = resolve_context(g.current_user.id, org_id)
                require_min_role(ctx, min_role)
            except LockstockError as e:
                return jsonify(e.to_dict()), e.status_code

            g.org_id = ctx.org_id
            g.auth_context = ctx

            return f(*args, **kwargs)

        return decorated_function
    return decorator
