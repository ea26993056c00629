# routes/bookings.py
from __future__ import annotations

import re
import secrets
import time
from decimal import Decimal

from flask import Blueprint, jsonify, request, current_app, g

from auth_guard import require_user
from db import db
from models.event import Event, Session
from models.ticket import TicketTarget
from services.booking import (
    AttendeeInfo,
    TicketSelection,
    can_manage,
    can_scan,
    create_booking,
    parse_quantity,
    session_stats,
    to_money,
)
from services.errors import ZestError
from services.notify_ticket import notify_booking_confirmed
from services.ticket_generator import create_tickets_for_booking

bookings_bp = Blueprint("bookings", __name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MANUAL_MAX_QUANTITY = 50


def _error(e: ZestError):
    return jsonify(e.to_dict()), e.status


def _contact(raw) -> AttendeeInfo | None:
    raw = raw or {}
    name = (raw.get("name") or "").strip()
    email = (raw.get("email") or "").strip()
    phone = (raw.get("phone") or "").strip()
    if not name or not email or not EMAIL_RE.match(email):
        return None
    return AttendeeInfo(name=name, email=email, phone=phone or None)


def _guests(raw) -> list[AttendeeInfo]:
    out = []
    for item in raw or []:
        info = _contact(item) if isinstance(item, dict) else None
        if info is not None:
            out.append(info)
    return out


def issue_tickets(booking_id: int) -> tuple[list[int], str | None]:
    """
    Tickets are minted after the booking commits. A failure here leaves a
    paid booking without tickets, which a retry of this call repairs.
    """
    try:
        ids = create_tickets_for_booking(booking_id)
    except Exception:
        current_app.logger.exception("[booking] ticket generation failed for booking=%s", booking_id)
        return [], "Booking confirmed but tickets are still being generated"
    notify_booking_confirmed(booking_id)
    return ids, None


# ─────────── 1) capacity-checked booking ───────────────────────────────────
@bookings_bp.route("/bookings", methods=["POST"])
@require_user
def create_booking_route():
    data = request.get_json(silent=True) or {}
    event_id      = data.get("eventId")
    activity_id   = data.get("activityId")
    session_id    = data.get("sessionId")
    user_id       = data.get("userId")
    selected      = data.get("selectedTickets")
    total_amount  = data.get("totalAmount")

    if not (event_id or activity_id) or not session_id or not user_id or not selected or not total_amount:
        return jsonify(success=False, error="Missing required fields"), 400
    if user_id != g.uid:
        return jsonify(success=False, error="userId does not match the signed-in user", code="UNAUTHORIZED"), 403

    attendee = _contact(data.get("userInfo"))
    if attendee is None or not attendee.phone:
        return jsonify(success=False, error="Complete user information is required"), 400
    if not isinstance(selected, dict) or not selected:
        return jsonify(success=False, error="At least one ticket must be selected"), 400

    try:
        quantities = {str(name): parse_quantity(q) for name, q in selected.items()}
        total = to_money(total_amount)
    except ZestError as e:
        return _error(e)
    except (TypeError, ValueError, ArithmeticError):
        return jsonify(success=False, error="Invalid amount", code="INVALID_AMOUNT"), 400
    seats = sum(quantities.values())
    if seats <= 0:
        return jsonify(success=False, error="At least one ticket must be selected"), 400

    # client-side pricing is averaged across seats
    unit = to_money(total / seats)
    selections = [TicketSelection(name, q, unit) for name, q in quantities.items()]
    target = TicketTarget.event(event_id) if event_id else TicketTarget.activity(activity_id)
    payment_id = data.get("paymentId") or f"temp_{int(time.time() * 1000)}_{secrets.token_hex(4)}"

    try:
        result = create_booking(
            target, session_id,
            user_id=user_id,
            attendee=attendee,
            selections=selections,
            payment_id=payment_id,
            total_amount=total,
            payment_status="completed" if data.get("paymentId") else "pending",
            guests=_guests(data.get("guests")),
        )
    except ZestError as e:
        return _error(e)

    ticket_ids, warning = issue_tickets(result.booking_id)
    body = {
        "success": True,
        "message": "Booking created successfully",
        "data": {
            "attendeeIds":      result.attendee_ids,
            "totalTickets":     result.total_tickets,
            "sessionId":        result.session_id,
            "bookingReference": result.booking_reference,
            "ticketIds":        ticket_ids,
        },
    }
    if warning:
        body["warning"] = warning
    return jsonify(body), 201


# ─────────── 2) organizer dashboard stats ──────────────────────────────────
@bookings_bp.route("/bookings/sessions/<session_id>/stats", methods=["GET"])
@require_user
def session_stats_route(session_id):
    sess = db.session.get(Session, session_id)
    if not sess:
        return jsonify(success=False, error="Session not found", code="SESSION_NOT_FOUND"), 404
    if not can_scan(sess.parent, g.uid):
        return jsonify(success=False, error="Not allowed to view this session", code="UNAUTHORIZED"), 403
    try:
        return jsonify(success=True, stats=session_stats(session_id)), 200
    except ZestError as e:
        return _error(e)


# ─────────── 3) organizer adds attendees by hand ───────────────────────────
@bookings_bp.route("/events/<event_id>/attendees/manual", methods=["POST"])
@require_user
def add_manual_attendee(event_id):
    data = request.get_json(silent=True) or {}
    name        = (data.get("name") or "").strip()
    email       = (data.get("email") or "").strip()
    phone       = (data.get("phone") or "").strip()
    ticket_type = (data.get("ticketType") or "").strip()
    quantity    = data.get("quantity", 1)

    if not name or not email or not phone or not ticket_type:
        return jsonify(success=False, error="Missing required fields"), 400
    if not EMAIL_RE.match(email):
        return jsonify(success=False, error="Invalid email address"), 400
    if isinstance(quantity, bool) or not isinstance(quantity, int) or not 1 <= quantity <= MANUAL_MAX_QUANTITY:
        return jsonify(success=False, error=f"Quantity must be between 1 and {MANUAL_MAX_QUANTITY}"), 400

    event = db.session.get(Event, event_id)
    if not event:
        return jsonify(success=False, error="Event not found", code="EVENT_NOT_FOUND"), 404
    if not can_manage(event, g.uid):
        current_app.logger.warning("[booking] manual attendee denied uid=%s event=%s", g.uid, event_id)
        return jsonify(
            success=False,
            error="Unauthorized: You do not have permission to add attendees to this event",
            code="UNAUTHORIZED",
        ), 403

    session_id = data.get("sessionId")
    if not session_id:
        match = next((s for s in event.sessions if s.ticket_type_named(ticket_type)), None)
        if match is None:
            return jsonify(
                success=False,
                error=f'Ticket type "{ticket_type}" not found for this event',
                code="TICKET_TYPE_NOT_FOUND",
            ), 400
        session_id = match.id

    sess = db.session.get(Session, session_id)
    tt = sess.ticket_type_named(ticket_type) if sess else None
    price = tt.unit_price if tt else Decimal("0")

    try:
        result = create_booking(
            TicketTarget.event(event_id), session_id,
            user_id=data.get("userId") or None,
            attendee=AttendeeInfo(name=name, email=email, phone=phone),
            selections=[TicketSelection(ticket_type, quantity, price)],
            payment_id=f"manual_{secrets.token_hex(8)}",
            total_amount=price * quantity,
            payment_status="manual",
            added_manually=True,
        )
    except ZestError as e:
        return _error(e)

    ticket_ids, warning = issue_tickets(result.booking_id)
    current_app.logger.info(
        "[booking] manual attendees added event=%s qty=%d by=%s ref=%s",
        event_id, quantity, g.uid, result.booking_reference,
    )
    body = {
        "success": True,
        "message": f"{quantity} ticket{'s' if quantity > 1 else ''} added",
        "bookingReference": result.booking_reference,
        "attendeeIds": result.attendee_ids,
        "ticketIds": ticket_ids,
        "attendee": {
            "name": name,
            "email": email,
            "phone": phone,
            "ticketType": ticket_type,
            "quantity": quantity,
            "totalAmount": float(to_money(price * quantity)),
        },
    }
    if warning:
        body["warning"] = warning
    return jsonify(body), 201
