# Overview: Append-only security audit trail.

from __future__ import annotations

from flask import has_request_context, request

from ..extensions import db
from ..models import SecurityEvent
from lockstock.time_utils import utcnow


def log_security_event(
    *,
    event_type: str,
    success: bool,
    user_id: int | None = None,
    org_id: int | None = None,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
) -> SecurityEvent:
    """
    Append a security event with tenant context and commit it.

    Request metadata (path, IP, user agent) is filled in from the active Flask
    request when there is one and the caller did not pass a resource.

    event_type examples:
    - MEMBERSHIP_DENIED  actor is not a member of the requested organization
    - ROLE_DENIED        actor's role rank is below the operation minimum
    - LOGIN_FAILED
    - LOGIN_SUCCEEDED
    - MEMBER_ROLE_CHANGED

    Only call this before the request has staged domain writes: the event is
    committed immediately so it survives the rollback of the failing request.
    """
    ip_address = None
    user_agent = None
    if has_request_context():
        resource = resource or request.path
        action = action or request.method
        ip_address = request.remote_addr
        user_agent = request.headers.get("User-Agent")

    event = SecurityEvent(
        user_id=user_id,
        org_id=org_id,
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow(),
    )

    db.session.add(event)
    db.session.commit()

    return event


def list_security_events(
    org_id: int,
    *,
    event_type: str | None = None,
    limit: int = 100,
) -> list[SecurityEvent]:
    query = db.session.query(SecurityEvent).filter(SecurityEvent.org_id == org_id)
    if event_type:
        query = query.filter(SecurityEvent.event_type == event_type)
    return query.order_by(SecurityEvent.occurred_at.desc(), SecurityEvent.id.desc()).limit(limit).all()
