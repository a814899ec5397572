from flask import Blueprint, jsonify, g

from lockstock.decorators import require_auth, require_org_role
from lockstock.permissions import ROLE_VIEWER
from lockstock.services import stock_status_service


reports_bp = Blueprint("reports", __name__, url_prefix="/api")


@reports_bp.get("/alerts/low-stock")
@require_auth
@require_org_role(ROLE_VIEWER)
def low_stock_alerts():
    alerts = stock_status_service.low_stock_alerts(g.org_id)
    return jsonify({"data": alerts, "count": len(alerts)}), 200


@reports_bp.get("/reports/stock-health")
@require_auth
@require_org_role(ROLE_VIEWER)
def stock_health_report():
    return jsonify({"data": stock_status_service.stock_health_report(g.org_id)}), 200
