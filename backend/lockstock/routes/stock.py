# Overview: Flask API routes for the stock ledger (movements and balances).

"""
Stock Routes

- GET  /api/stock/movements   viewer   newest first, filterable, paginated
- POST /api/stock/movements   member   append one movement
- GET  /api/stock/balance     viewer   ledger-derived on-hand quantity

Movements are append-only: there is no update or delete route. A wrong entry
is fixed by posting a new movement with reason "correction".
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_auth, require_org_role
from ..errors import LockstockError
from ..models import StockMovement
from ..permissions import ROLE_MEMBER, ROLE_VIEWER
from ..quantity_utils import quantity_to_json
from ..services import stock_service
from ..validation import MOVEMENT_POLICY, enforce_rules_movement, validate_payload


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


@stock_bp.get("/movements")
@require_auth
@require_org_role(ROLE_VIEWER)
def list_movements_route():
    """
    Query parameters:
    - material_id, location_id, reason, reference_type, reference_id
    - limit (1..500, default 100), offset
    """
    limit = request.args.get("limit", 100, type=int)
    offset = request.args.get("offset", 0, type=int)

    if limit < 1:
        limit = 1
    if limit > 500:
        limit = 500
    if offset < 0:
        offset = 0

    try:
        movements, total = stock_service.list_movements(
            g.org_id,
            material_id=request.args.get("material_id", type=int),
            location_id=request.args.get("location_id", type=int),
            reason=request.args.get("reason"),
            reference_type=request.args.get("reference_type"),
            reference_id=request.args.get("reference_id", type=int),
            limit=limit,
            offset=offset,
        )
    except LockstockError as e:
        return jsonify(e.to_dict()), e.status_code

    return jsonify({
        "data": [m.to_dict() for m in movements],
        "count": total,
        "limit": limit,
        "offset": offset,
    }), 200


@stock_bp.post("/movements")
@require_auth
@require_org_role(ROLE_MEMBER)
def record_movement_route():
    """
    Request body:
    {
        "material_id": 1,              // required
        "location_id": 2,              // required
        "quantity_delta": -2.5,        // required, non-zero, up to three decimals
        "reason": "adjustment",        // adjustment | transfer_in | transfer_out | purchase_receive | correction
        "note": "...",
        "reference_type": "...", "reference_id": 9,
        "idempotency_key": "...",      // optional; replay returns the original movement
        "occurred_at": "2026-01-01T10:00:00Z"
    }
    """
    try:
        patch = validate_payload(
            model=StockMovement,
            payload=request.get_json(silent=True),
            policy=MOVEMENT_POLICY,
            partial=False,
        )
        enforce_rules_movement(patch)

        movement = stock_service.record_movement(
            g.auth_context,
            material_id=patch["material_id"],
            location_id=patch["location_id"],
            quantity_delta=patch["quantity_delta"],
            reason=patch.get("reason") or stock_service.REASON_ADJUSTMENT,
            note=patch.get("note"),
            reference_type=patch.get("reference_type"),
            reference_id=patch.get("reference_id"),
            idempotency_key=patch.get("idempotency_key"),
            occurred_at=patch.get("occurred_at"),
        )
        return jsonify({"data": movement.to_dict()}), 201
    except LockstockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record stock movement")
        return jsonify({"error": "Internal server error", "details": None}), 500


@stock_bp.get("/balance")
@require_auth
@require_org_role(ROLE_VIEWER)
def balance_route():
    """
    Query parameters:
    - material_id (required)
    - location_id (optional; omitted = sum across all locations)
    """
    material_id = request.args.get("material_id", type=int)
    if not material_id:
        return jsonify({"error": "material_id is required", "details": None}), 400
    location_id = request.args.get("location_id", type=int)

    try:
        quantity = stock_service.get_balance(g.org_id, material_id, location_id)
        body = {"material_id": material_id, "location_id": location_id, "quantity": quantity_to_json(quantity)}
        if location_id is None:
            body["locations"] = stock_service.get_balances_by_location(g.org_id, material_id)
        return jsonify({"data": body}), 200
    except LockstockError as e:
        return jsonify(e.to_dict()), e.status_code
