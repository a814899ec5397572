# Overview: Flask API routes for materials, locations and suppliers.

"""
Catalog Routes

SECURITY: All routes require authentication and an X-Org-Id membership.
- List/detail require viewer
- Create/deactivate require manager

Material rows in list responses carry total_quantity, stock_status,
primary_location and deficit.
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import require_auth, require_org_role
from ..errors import LockstockError
from ..models import Location, Material, Supplier
from ..permissions import ROLE_MANAGER, ROLE_VIEWER
from ..services import catalog_service
from ..validation import (
    LOCATION_POLICY,
    MATERIAL_POLICY,
    SUPPLIER_POLICY,
    enforce_rules_location,
    enforce_rules_material,
    enforce_rules_supplier,
    validate_payload,
)


materials_bp = Blueprint("materials", __name__, url_prefix="/api/materials")
locations_bp = Blueprint("locations", __name__, url_prefix="/api/locations")
suppliers_bp = Blueprint("suppliers", __name__, url_prefix="/api/suppliers")


def _include_inactive() -> bool:
    return request.args.get("include_inactive", "false").lower() == "true"


# =============================================================================
# MATERIALS
# =============================================================================

@materials_bp.get("")
@require_auth
@require_org_role(ROLE_VIEWER)
def list_materials_route():
    """
    Query parameters:
    - search: matches SKU or name
    - include_inactive: default false
    - limit (1..500, default 50), offset
    """
    limit = request.args.get("limit", 50, type=int)
    offset = request.args.get("offset", 0, type=int)

    # Clamp limit
    if limit < 1:
        limit = 1
    if limit > 500:
        limit = 500
    if offset < 0:
        offset = 0

    rows, total = catalog_service.list_materials(
        g.org_id,
        search=request.args.get("search"),
        include_inactive=_include_inactive(),
        limit=limit,
        offset=offset,
    )
    return jsonify({"data": rows, "count": total, "limit": limit, "offset": offset}), 200


@materials_bp.post("")
@require_auth
@require_org_role(ROLE_MANAGER)
def create_material_route():
    """
    Request body:
    {
        "sku": "CEM-25",          // required, unique within org
        "name": "Cement 25kg",    // required
        "description": "...",     // optional
        "uom": "bag",             // optional, default "unit"
        "min_stock": 10           // optional, default 0
    }
    """
    try:
        patch = validate_payload(
            model=Material,
            payload=request.get_json(silent=True),
            policy=MATERIAL_POLICY,
            partial=False,
        )
        enforce_rules_material(patch)
        material = catalog_service.create_material(g.auth_context, patch)
        return jsonify({"data": material.to_dict()}), 201
    except LockstockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create material")
        return jsonify({"error": "Internal server error", "details": None}), 500


@materials_bp.get("/<int:material_id>")
@require_auth
@require_org_role(ROLE_VIEWER)
def get_material_route(material_id: int):
    try:
        return jsonify({"data": catalog_service.get_material_detail(g.org_id, material_id)}), 200
    except LockstockError as e:
        return jsonify(e.to_dict()), e.status_code


@materials_bp.post("/<int:material_id>/deactivate")
@require_auth
@require_org_role(ROLE_MANAGER)
def deactivate_material_route(material_id: int):
    try:
        material = catalog_service.deactivate_material(g.auth_context, material_id)
        return jsonify({"data": material.to_dict()}), 200
    except LockstockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to deactivate material")
        return jsonify({"error": "Internal server error", "details": None}), 500


# =============================================================================
# LOCATIONS
# =============================================================================

@locations_bp.get("")
@require_auth
@require_org_role(ROLE_VIEWER)
def list_locations_route():
    locations = catalog_service.list_locations(g.org_id, include_inactive=_include_inactive())
    return jsonify({"data": [loc.to_dict() for loc in locations]}), 200


@locations_bp.post("")
@require_auth
@require_org_role(ROLE_MANAGER)
def create_location_route():
    """Request body: {"name": "Main warehouse", "code": "WH1"}"""
    try:
        patch = validate_payload(
            model=Location,
            payload=request.get_json(silent=True),
            policy=LOCATION_POLICY,
            partial=False,
        )
        enforce_rules_location(patch)
        location = catalog_service.create_location(g.auth_context, patch)
        return jsonify({"data": location.to_dict()}), 201
    except LockstockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create location")
        return jsonify({"error": "Internal server error", "details": None}), 500


@locations_bp.post("/<int:location_id>/deactivate")
@require_auth
@require_org_role(ROLE_MANAGER)
def deactivate_location_route(location_id: int):
    try:
        location = catalog_service.deactivate_location(g.auth_context, location_id)
        return jsonify({"data": location.to_dict()}), 200
    except LockstockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to deactivate location")
        return jsonify({"error": "Internal server error", "details": None}), 500


# =============================================================================
# SUPPLIERS
# =============================================================================

@suppliers_bp.get("")
@require_auth
@require_org_role(ROLE_VIEWER)
def list_suppliers_route():
    suppliers = catalog_service.list_suppliers(
        g.org_id,
        search=request.args.get("search"),
        include_inactive=_include_inactive(),
    )
    return jsonify({"data": [s.to_dict() for s in suppliers]}), 200


@suppliers_bp.post("")
@require_auth
@require_org_role(ROLE_MANAGER)
def create_supplier_route():
    """
    Request body:
    {
        "name": "Acme Supply",    // required
        "email": "...",           // optional
        "phone": "...",           // optional
        "lead_time_days": 7,      // optional, 0..365
        "payment_terms": "30 days net"
    }
    """
    try:
        patch = validate_payload(
            model=Supplier,
            payload=request.get_json(silent=True),
            policy=SUPPLIER_POLICY,
            partial=False,
        )
        enforce_rules_supplier(patch)
        supplier = catalog_service.create_supplier(g.auth_context, patch)
        return jsonify({"data": supplier.to_dict()}), 201
    except LockstockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create supplier")
        return jsonify({"error": "Internal server error", "details": None}), 500


@suppliers_bp.post("/<int:supplier_id>/deactivate")
@require_auth
@require_org_role(ROLE_MANAGER)
def deactivate_supplier_route(supplier_id: int):
    try:
        supplier = catalog_service.deactivate_supplier(g.auth_context, supplier_id)
        return jsonify({"data": supplier.to_dict()}), 200
    except LockstockError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to deactivate supplier")
        return jsonify({"error": "Internal server error", "details": None}), 500
