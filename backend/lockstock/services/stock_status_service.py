# Overview: Read-side stock classification, low-stock alerts and health summary.

"""
Inventory classification.

classify_stock() is a pure function of (total_on_hand, min_stock):

    total_on_hand <= 0          -> out-of-stock   (absolute floor, checked first)
    total_on_hand <= min_stock  -> low-stock
    otherwise                   -> in-stock

total_on_hand is always the ledger balance of a material summed across every
location of its organization. Nothing in this module writes.
"""

from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..models import Material
from .stock_service import get_primary_locations, get_total_quantities
from lockstock.quantity_utils import ZERO, quantity_to_json, to_decimal


STOCK_IN = "in-stock"
STOCK_LOW = "low-stock"
STOCK_OUT = "out-of-stock"

STOCK_STATUSES = (STOCK_IN, STOCK_LOW, STOCK_OUT)


def classify_stock(total_on_hand: Decimal, min_stock: Decimal) -> str:
    if total_on_hand <= 0:
        return STOCK_OUT
    if total_on_hand <= min_stock:
        return STOCK_LOW
    return STOCK_IN


def stock_deficit(total_on_hand: Decimal, min_stock: Decimal) -> Decimal:
    return max(ZERO, to_decimal(min_stock) - to_decimal(total_on_hand))


def _active_materials(org_id: int) -> list[Material]:
    return db.session.query(Material).filter(
        Material.org_id == org_id,
        Material.is_active.is_(True),
    ).order_by(Material.sku.asc()).all()


def material_stock_rows(org_id: int, materials: list[Material]) -> list[dict]:
    """
    Decorate materials with total_quantity, stock_status, primary_location and
    deficit (deficit is only non-zero for low/out rows).
    """
    ids = [m.id for m in materials]
    totals = get_total_quantities(org_id, ids)
    primary = get_primary_locations(org_id, ids)

    rows = []
    for material in materials:
        total = totals.get(material.id, ZERO)
        status = classify_stock(total, material.min_stock)
        row = material.to_dict()
        row["total_quantity"] = quantity_to_json(total)
        row["stock_status"] = status
        row["primary_location"] = primary.get(material.id)
        row["deficit"] = quantity_to_json(stock_deficit(total, material.min_stock) if status != STOCK_IN else ZERO)
        rows.append(row)
    return rows


def low_stock_alerts(org_id: int) -> list[dict]:
    """Active materials classified low-stock or out-of-stock, largest deficit first."""
    materials = _active_materials(org_id)
    totals = get_total_quantities(org_id, [m.id for m in materials])

    alerts = []
    for material in materials:
        total = totals.get(material.id, ZERO)
        status = classify_stock(total, material.min_stock)
        if status == STOCK_IN:
            continue
        alerts.append({
            "material_id": material.id,
            "sku": material.sku,
            "name": material.name,
            "min_stock": quantity_to_json(material.min_stock),
            "quantity": quantity_to_json(total),
            "stock_status": status,
            "deficit": quantity_to_json(stock_deficit(total, material.min_stock)),
        })

    alerts.sort(key=lambda a: (-a["deficit"], a["sku"]))
    return alerts


def stock_health_report(org_id: int) -> dict:
    """
    Aggregate health across active materials.

    low_stock counts every material at or below its threshold, out-of-stock
    ones included, so it always equals len(low_stock_alerts(org_id)).
    out_of_stock is the subset with nothing on hand. in_stock + low_stock ==
    total_materials.
    """
    materials = _active_materials(org_id)
    totals = get_total_quantities(org_id, [m.id for m in materials])

    summary = {
        "total_materials": 0,
        "total_quantity": ZERO,
        "in_stock": 0,
        "low_stock": 0,
        "out_of_stock": 0,
    }
    for material in materials:
        total = totals.get(material.id, ZERO)
        summary["total_materials"] += 1
        summary["total_quantity"] += total
        status = classify_stock(total, material.min_stock)
        if status == STOCK_IN:
            summary["in_stock"] += 1
            continue
        summary["low_stock"] += 1
        if status == STOCK_OUT:
            summary["out_of_stock"] += 1

    summary["total_quantity"] = quantity_to_json(summary["total_quantity"])
    return summary
