# Overview: Materials, locations and suppliers; organization-scoped master data.

"""
Catalog Service

MULTI-TENANT: Every record is scoped to an organization via org_id. SKUs are
unique per organization, as are location names and codes. A record of another
organization is reported as not found.

Records are never hard-deleted. Deactivation hides a material from stock
reporting and blocks new movements and purchase order lines; the ledger keeps
its history.

Creation and deactivation require manager role; reads require viewer.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import Conflict, NotFound
from ..models import Location, Material, Supplier
from ..permissions import ROLE_MANAGER
from .authorization_service import AuthorizationContext, require_min_role
from .concurrency import run_in_transaction
from .stock_service import get_balances_by_location, get_location_in_org, get_material_in_org
from .stock_status_service import material_stock_rows


# =============================================================================
# MATERIALS
# =============================================================================

def create_material(ctx: AuthorizationContext, patch: dict) -> Material:
    """
    Create a material from a validated patch (see validation.MATERIAL_POLICY).

    Raises:
        Forbidden: actor below manager
        Conflict: SKU already used in this organization
    """
    require_min_role(ctx, ROLE_MANAGER)

    sku = patch["sku"]

    def _op():
        existing = db.session.query(Material.id).filter_by(org_id=ctx.org_id, sku=sku).first()
        if existing:
            raise Conflict(f"SKU {sku} already exists in this organization.", details={"sku": sku})

        material = Material(org_id=ctx.org_id, created_by_user_id=ctx.user_id, **patch)
        db.session.add(material)
        db.session.commit()
        return material

    try:
        material = run_in_transaction(_op)
    except IntegrityError:
        raise Conflict(f"SKU {sku} already exists in this organization.", details={"sku": sku})

    current_app.logger.info("material created id=%s sku=%s org_id=%s", material.id, sku, ctx.org_id)
    return material


def list_materials(
    org_id: int,
    *,
    search: str | None = None,
    include_inactive: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[dict], int]:
    """Material rows decorated with stock classification. Returns (rows, total)."""
    query = db.session.query(Material).filter(Material.org_id == org_id)
    if not include_inactive:
        query = query.filter(Material.is_active.is_(True))
    if search:
        term = f"%{search.strip()}%"
        query = query.filter(or_(Material.sku.ilike(term), Material.name.ilike(term)))

    total = query.count()
    materials = query.order_by(Material.name.asc(), Material.id.asc()).offset(offset).limit(limit).all()
    return material_stock_rows(org_id, materials), total


def get_material_detail(org_id: int, material_id: int) -> dict:
    """Single material with its stock row and per-location balances."""
    material = get_material_in_org(org_id, material_id)
    row = material_stock_rows(org_id, [material])[0]
    row["locations"] = get_balances_by_location(org_id, material_id)
    return row


def deactivate_material(ctx: AuthorizationContext, material_id: int) -> Material:
    require_min_role(ctx, ROLE_MANAGER)

    def _op():
        material = get_material_in_org(ctx.org_id, material_id)
        if material.is_active:
            material.is_active = False
            db.session.commit()
            current_app.logger.info("material deactivated id=%s org_id=%s", material.id, ctx.org_id)
        return material

    return run_in_transaction(_op)


# =============================================================================
# LOCATIONS
# =============================================================================

def create_location(ctx: AuthorizationContext, patch: dict) -> Location:
    """
    Raises:
        Forbidden: actor below manager
        Conflict: name or code already used in this organization
    """
    require_min_role(ctx, ROLE_MANAGER)

    name = patch["name"]
    code = patch.get("code")

    def _op():
        clash = db.session.query(Location.id).filter(
            Location.org_id == ctx.org_id,
            or_(Location.name == name, Location.code == code) if code else Location.name == name,
        ).first()
        if clash:
            raise Conflict("A location with this name or code already exists.", details={"name": name, "code": code})

        location = Location(org_id=ctx.org_id, created_by_user_id=ctx.user_id, **patch)
        db.session.add(location)
        db.session.commit()
        return location

    try:
        return run_in_transaction(_op)
    except IntegrityError:
        raise Conflict("A location with this name or code already exists.", details={"name": name, "code": code})


def list_locations(org_id: int, *, include_inactive: bool = False) -> list[Location]:
    query = db.session.query(Location).filter(Location.org_id == org_id)
    if not include_inactive:
        query = query.filter(Location.is_active.is_(True))
    return query.order_by(Location.name.asc()).all()


def deactivate_location(ctx: AuthorizationContext, location_id: int) -> Location:
    require_min_role(ctx, ROLE_MANAGER)

    def _op():
        location = get_location_in_org(ctx.org_id, location_id)
        if location.is_active:
            location.is_active = False
            db.session.commit()
            current_app.logger.info("location deactivated id=%s org_id=%s", location.id, ctx.org_id)
        return location

    return run_in_transaction(_op)


# =============================================================================
# SUPPLIERS
# =============================================================================

def get_supplier_in_org(org_id: int, supplier_id: int) -> Supplier:
    supplier = db.session.get(Supplier, supplier_id)
    if supplier is None or supplier.org_id != org_id:
        raise NotFound("Supplier not found.", details={"supplier_id": supplier_id})
    return supplier


def create_supplier(ctx: AuthorizationContext, patch: dict) -> Supplier:
    require_min_role(ctx, ROLE_MANAGER)

    def _op():
        supplier = Supplier(org_id=ctx.org_id, created_by_user_id=ctx.user_id, **patch)
        db.session.add(supplier)
        db.session.commit()
        return supplier

    supplier = run_in_transaction(_op)
    current_app.logger.info("supplier created id=%s org_id=%s", supplier.id, ctx.org_id)
    return supplier


def list_suppliers(org_id: int, *, search: str | None = None, include_inactive: bool = False) -> list[Supplier]:
    query = db.session.query(Supplier).filter(Supplier.org_id == org_id)
    if not include_inactive:
        query = query.filter(Supplier.is_active.is_(True))
    if search:
        query = query.filter(Supplier.name.ilike(f"%{search.strip()}%"))
    return query.order_by(Supplier.name.asc()).all()


def deactivate_supplier(ctx: AuthorizationContext, supplier_id: int) -> Supplier:
    require_min_role(ctx, ROLE_MANAGER)

    def _op():
        supplier = get_supplier_in_org(ctx.org_id, supplier_id)
        if supplier.is_active:
            supplier.is_active = False
            db.session.commit()
        return supplier

    return run_in_transaction(_op)
