# Overview: Organization role vocabulary and rank comparison.

"""
Organization roles.

Roles are a total order, compared by rank rather than by set membership:

    viewer (0) < member (1) < manager (2) < owner (3)

An operation declares the minimum role it needs; an actor passes when
rank(actor_role) >= rank(required_role).

    viewer   read materials, balances, orders, reports
    member   record stock movements, receive purchase orders
    manager  create materials/locations/suppliers/teams, create/send/cancel orders
    owner    manage organization membership and roles
"""

from __future__ import annotations

ROLE_VIEWER = "viewer"
ROLE_MEMBER = "member"
ROLE_MANAGER = "manager"
ROLE_OWNER = "owner"

ROLE_RANK = {
    ROLE_VIEWER: 0,
    ROLE_MEMBER: 1,
    ROLE_MANAGER: 2,
    ROLE_OWNER: 3,
}

ROLES = tuple(sorted(ROLE_RANK, key=ROLE_RANK.__getitem__))


def role_rank(role: str) -> int:
    """Rank of a role. Raises ValueError for names outside the vocabulary."""
    try:
        return ROLE_RANK[role]
    except KeyError:
        raise ValueError(f"Unknown role: {role!r}") from None


def has_min_role(actor_role: str, required_role: str) -> bool:
    return role_rank(actor_role) >= role_rank(required_role)
