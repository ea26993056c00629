# routes/maintenance.py
import hmac
from datetime import datetime

from flask import Blueprint, jsonify, request, current_app

from tasks.expire_tickets import expire_tickets_for_past_events

maintenance_bp = Blueprint("maintenance", __name__)


def _check_token():
    expected = current_app.config.get("MAINTENANCE_API_TOKEN")
    if not expected:
        current_app.logger.error("[maintenance] MAINTENANCE_API_TOKEN is not configured")
        return jsonify(error="Maintenance endpoint is not configured"), 503

    header = request.headers.get("Authorization", "")
    token = header.split(" ", 1)[1].strip() if header.startswith("Bearer ") else ""
    if not token or not hmac.compare_digest(token, expected):
        current_app.logger.warning("[maintenance] rejected token from %s", request.remote_addr)
        return jsonify(error="Unauthorized"), 401
    return None


@maintenance_bp.route("/expire-tickets", methods=["POST"])
def expire_tickets_route():
    denied = _check_token()
    if denied:
        return denied

    started = datetime.utcnow()
    result = expire_tickets_for_past_events()
    return jsonify(
        success=True,
        message=f"Expired {result['updated']} tickets",
        updated=result["updated"],
        errors=result["errors"],
        startedAt=started.strftime("%Y-%m-%dT%H:%M:%SZ"),
    ), 200


@maintenance_bp.route("/expire-tickets", methods=["GET"])
def expire_tickets_health():
    denied = _check_token()
    if denied:
        return denied
    return jsonify(
        status="ok",
        endpoint="expire-tickets",
        usage="POST with Authorization: Bearer <token> to expire tickets for past sessions",
    ), 200
