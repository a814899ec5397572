# Overview: Flask API routes for purchase orders, status changes and receiving.

"""
Purchase Order Routes

SECURITY: All routes require authentication and an X-Org-Id membership.
- List/detail/receipts require viewer
- Create, status transition and cancel require manager
- Receive requires member

Only draft -> sent can be requested through PATCH /status. partial and
received are derived by receiving; cancellation has its own route.
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_auth, require_org_role
from ..errors import LockstockError
from ..permissions import ROLE_MANAGER, ROLE_MEMBER, ROLE_VIEWER
from ..services import purchase_order_service, receiving_service


purchase_orders_bp = Blueprint("purchase_orders", __name__, url_prefix="/api/purchase-orders")


@purchase_orders_bp.get("")
@require_auth
@require_org_role(ROLE_VIEWER)
def list_purchase_orders_route():
    """
    Query parameters:
    - status: draft | sent | partial | received | cancelled
    - supplier_id
    - q: matches PO number or notes
    - page (>= 1, default 1), limit (1..100, default 20)
    """
    page = request.args.get("page", 1, type=int)
    limit = request.args.get("limit", 20, type=int)

    if page < 1:
        page = 1
    if limit < 1:
        limit = 1
    if limit > 100:
        limit = 100

    try:
        orders, total = purchase_order_service.list_purchase_orders(
            g.org_id,
            status=request.args.get("status") or None,
            supplier_id=request.args.get("supplier_id", type=int),
            search=request.args.get("q"),
            limit=limit,
            offset=(page - 1) * limit,
        )
    except LockstockError as e:
        return jsonify(e.to_dict()), e.status_code

    return jsonify({
        "data": [o.to_dict(include_lines=False) for o in orders],
        "count": total,
        "page": page,
        "limit": limit,
    }), 200


@purchase_orders_bp.post("")
@require_auth
@require_org_role(ROLE_MANAGER)
def create_purchase_order_route():
    """
    Request body:
    {
        "supplier_id": 3,                       // required
        "po_number": "PO-2026-001",             // optional, generated when omitted
        "currency": "EUR",                      // EUR | USD
        "expected_at": "2026-02-01",            // optional
        "notes": "...",
        "lines": [                              // required, at least one
            {"material_id": 1, "quantity_ordered": 10, "unit_price_cents": 450}
        ]
    }
    """
    data = request.get_json(silent=True) or {}

    supplier_id = data.get("supplier_id")
    if isinstance(supplier_id, bool) or not isinstance(supplier_id, int):
        return jsonify({"error": "supplier_id must be an integer", "details": None}), 400

    try:
        order = purchase_order_service.create_purchase_order(
            g.auth_context,
            supplier_id=supplier_id,
            lines=data.get("lines"),
            po_number=data.get("po_number"),
            currency=data.get("currency") or "EUR",
            expected_at=data.get("expected_at"),
            notes=data.get("notes"),
        )
        return jsonify({"data": order.to_dict()}), 201
    except LockstockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create purchase order")
        return jsonify({"error": "Internal server error", "details": None}), 500


@purchase_orders_bp.get("/<int:purchase_order_id>")
@require_auth
@require_org_role(ROLE_VIEWER)
def get_purchase_order_route(purchase_order_id: int):
    try:
        return jsonify({"data": purchase_order_service.get_purchase_order_detail(g.org_id, purchase_order_id)}), 200
    except LockstockError as e:
        return jsonify(e.to_dict()), e.status_code


@purchase_orders_bp.patch("/<int:purchase_order_id>/status")
@require_auth
@require_org_role(ROLE_MANAGER)
def transition_status_route(purchase_order_id: int):
    """Request body: {"status": "sent"}"""
    data = request.get_json(silent=True) or {}
    requested = data.get("status")
    if not isinstance(requested, str) or not requested:
        return jsonify({"error": "status is required", "details": None}), 400

    try:
        order = purchase_order_service.transition_status(g.auth_context, purchase_order_id, requested)
        return jsonify({"data": order.to_dict()}), 200
    except LockstockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to change purchase order status")
        return jsonify({"error": "Internal server error", "details": None}), 500


@purchase_orders_bp.post("/<int:purchase_order_id>/receive")
@require_auth
@require_org_role(ROLE_MEMBER)
def receive_purchase_order_route(purchase_order_id: int):
    """
    Request body:
    {
        "receipts": [
            {"po_line_id": 11, "location_id": 2, "quantity_received": 5}
        ],
        "idempotency_key": "..."    // optional
    }

    Returns: {data: {status, lines: [{id, quantity_ordered, quantity_received}]}}
    The whole batch is rejected if any receipt is invalid.
    """
    data = request.get_json(silent=True) or {}

    idempotency_key = data.get("idempotency_key")
    if idempotency_key is not None and (not isinstance(idempotency_key, str) or len(idempotency_key) > 128):
        return jsonify({"error": "idempotency_key must be a string of at most 128 characters", "details": None}), 400

    try:
        receipts = receiving_service.parse_receipts(data.get("receipts"))
        result = receiving_service.receive_purchase_order(
            g.auth_context,
            purchase_order_id,
            receipts,
            idempotency_key=idempotency_key or None,
        )
        return jsonify({"data": result.to_dict()}), 200
    except LockstockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to receive purchase order")
        return jsonify({"error": "Internal server error", "details": None}), 500


@purchase_orders_bp.get("/<int:purchase_order_id>/receipts")
@require_auth
@require_org_role(ROLE_VIEWER)
def list_receipts_route(purchase_order_id: int):
    try:
        receipts = receiving_service.list_receipts(g.org_id, purchase_order_id)
        return jsonify({"data": [r.to_dict() for r in receipts]}), 200
    except LockstockError as e:
        return jsonify(e.to_dict()), e.status_code


@purchase_orders_bp.post("/<int:purchase_order_id>/cancel")
@require_auth
@require_org_role(ROLE_MANAGER)
def cancel_purchase_order_route(purchase_order_id: int):
    """Request body: {"reason": "..."} (optional)"""
    data = request.get_json(silent=True) or {}
    reason = data.get("reason")
    if reason is not None and not isinstance(reason, str):
        return jsonify({"error": "reason must be a string", "details": None}), 400

    try:
        order = purchase_order_service.cancel_purchase_order(g.auth_context, purchase_order_id, reason=reason)
        return jsonify({"data": order.to_dict()}), 200
    except LockstockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel purchase order")
        return jsonify({"error": "Internal server error", "details": None}), 500
