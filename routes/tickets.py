# routes/tickets.py
from __future__ import annotations

from flask import Blueprint, jsonify, request, current_app, g

from auth_guard import require_user
from models.ticket import Ticket
from services.booking import cancel_tickets
from services.entry import verify_entry
from services.errors import ZestError
from services.ticket_validator import display_status, validate_ticket
from utils.qr import read_qr_payload

tickets_bp = Blueprint("tickets", __name__)


def _error(e: ZestError):
    return jsonify(e.to_dict()), e.status


def _ticket_number_from(data: dict):
    """Scanners send either the printed number or the signed QR payload."""
    number = (data.get("ticketNumber") or "").strip()
    if number:
        return number, None
    qr = data.get("qrCode")
    if not qr:
        return None, None
    try:
        return read_qr_payload(qr)["ticketNumber"], None
    except ValueError as e:
        current_app.logger.warning("[entry] rejected qr payload: %s", e)
        return None, (jsonify(success=False, error="Invalid QR code", code="INVALID_QR"), 400)


# ─────────── door scan ─────────────────────────────────────────────────────
@tickets_bp.route("/verify-entry", methods=["POST"])
@require_user
def verify_entry_route():
    data = request.get_json(silent=True) or {}
    number, bad = _ticket_number_from(data)
    if bad:
        return bad

    # scannerId must be the signed-in user
    scanner_id = data.get("scannerId")
    if scanner_id and scanner_id != g.uid:
        current_app.logger.warning("[entry] scannerId %s does not match token uid %s", scanner_id, g.uid)
        return jsonify(success=False, error="scannerId does not match the signed-in user", code="UNAUTHORIZED"), 403

    decision = verify_entry(
        number,
        scanner_id,
        data.get("scannerType"),
        data.get("eventId"),
        data.get("scannerLocation"),
    )
    return jsonify(decision.body), decision.http_status


# ─────────── read-only preview (no state change) ──────────────────────────
@tickets_bp.route("/validate", methods=["POST"])
def validate_route():
    data = request.get_json(silent=True) or {}
    number, bad = _ticket_number_from(data)
    if bad:
        return bad
    if not number:
        return jsonify(success=False, error="ticketNumber is required", code="MISSING_FIELDS"), 400

    result = validate_ticket(number, data.get("scannerLocation"), data.get("scannerId"))
    return jsonify(result.to_dict()), result.http_status


# ─────────── my tickets ────────────────────────────────────────────────────
@tickets_bp.route("", methods=["GET"])
@require_user
def my_tickets():
    wanted = (request.args.get("status") or "").lower() or None
    rows = (
        Ticket.query
        .filter(Ticket.user_id == g.uid)
        .order_by(Ticket.created_at.desc(), Ticket.id.desc())
        .all()
    )
    out = []
    for t in rows:
        shown = display_status(t)
        if wanted and shown["status"] != wanted:
            continue
        item = t.to_dict()
        item["display"] = shown
        out.append(item)
    return jsonify(tickets=out, count=len(out)), 200


@tickets_bp.route("/cancel", methods=["POST"])
@require_user
def cancel_route():
    data = request.get_json(silent=True) or {}
    ids = data.get("ticketIds") or []
    if not isinstance(ids, list) or not ids:
        return jsonify(success=False, error="ticketIds must be a non-empty list", code="MISSING_FIELDS"), 400
    try:
        ids = [int(i) for i in ids]
    except (TypeError, ValueError):
        return jsonify(success=False, error="ticketIds must be integers", code="MISSING_FIELDS"), 400

    try:
        result = cancel_tickets(ids, reason=(data.get("reason") or "cancelled by user"), cancelled_by=g.uid)
    except ZestError as e:
        return _error(e)

    return jsonify(
        success=True,
        cancelledTicketIds=result.cancelled_ticket_ids,
        refundTotal=float(result.refund_total),
    ), 200
