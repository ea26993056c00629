# routes/payments.py
from __future__ import annotations

import re

from dateutil import parser as dtparser
from flask import Blueprint, jsonify, request, current_app

from models.booking import Booking
from models.ticket import TicketTarget
from routes.bookings import EMAIL_RE, issue_tickets
from services.booking import (
    AttendeeInfo,
    calculate_amount,
    create_booking,
    load_session,
    selections_from_map,
    to_money,
)
from services.errors import ZestError
from services.payments import create_order, verify_signature

payments_bp = Blueprint("payments", __name__)

DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _error(e: ZestError):
    return jsonify(e.to_dict()), e.status


def _session_id(booking: dict):
    return (
        booking.get("sessionId")
        or (booking.get("selectedSession") or {}).get("id")
        or (booking.get("selectedTimeSlot") or {}).get("session_id")
    )


def _validate_booking_data(booking: dict, booking_type: str) -> str | None:
    """Return an error message, or None if the pending booking is well formed."""
    parent_key = "eventId" if booking_type == "event" else "activityId"
    missing = [k for k in (parent_key, "userId", "name", "email", "tickets", "totalAmount") if not booking.get(k)]
    if missing:
        return f"Missing booking fields: {', '.join(missing)}"
    if not _session_id(booking):
        return "Missing booking fields: sessionId"
    if not EMAIL_RE.match(str(booking.get("email")).strip()):
        return "Invalid email address"

    selected_date = booking.get("selectedDate")
    if selected_date:
        if not isinstance(selected_date, str) or not DATE_RE.match(selected_date):
            return "selectedDate must be YYYY-MM-DD"
        try:
            dtparser.isoparse(selected_date)
        except ValueError:
            return "selectedDate must be YYYY-MM-DD"

    tickets = booking.get("tickets")
    if isinstance(tickets, dict):
        if not tickets:
            return "At least one ticket must be selected"
    elif isinstance(tickets, bool) or not isinstance(tickets, int) or tickets <= 0:
        return "Invalid ticket quantity"
    return None


# ─────────── 1) create order ────────────────────────────────────────────────
@payments_bp.route("/create-order", methods=["POST"])
def create_order_route():
    data = request.get_json(silent=True) or {}
    try:
        order = create_order(
            data.get("amount"),
            currency=data.get("currency") or "INR",
            receipt=data.get("receipt"),
            notes=data.get("notes"),
        )
    except ZestError as e:
        return jsonify(error=e.message, code=e.code), e.status

    current_app.logger.info("[payment] order %s created amount=%s", order["id"], order["amount"])
    return jsonify(order), 200


# ─────────── 2) verify + book ───────────────────────────────────────────────
@payments_bp.route("/verify", methods=["POST"])
def verify_payment_route():
    data = request.get_json(silent=True) or {}
    order_id     = data.get("razorpay_order_id")
    payment_id   = data.get("razorpay_payment_id")
    signature    = data.get("razorpay_signature")
    booking      = data.get("bookingData") or {}
    booking_type = (data.get("bookingType") or "event").lower()

    if not order_id or not payment_id or not signature or not booking:
        return jsonify(error="Missing payment verification data"), 400
    if booking_type not in ("event", "activity"):
        return jsonify(error="Invalid booking type"), 400

    try:
        if not verify_signature(order_id, payment_id, signature):
            current_app.logger.warning("[payment] signature mismatch order=%s payment=%s", order_id, payment_id)
            return jsonify(error="Payment verification failed"), 400
    except ZestError as e:
        return jsonify(error=e.message, code=e.code), e.status

    if Booking.query.filter_by(payment_id=payment_id).first() is not None:
        current_app.logger.warning("[payment] duplicate payment %s (order=%s)", payment_id, order_id)
        return jsonify(
            error="Payment has already been processed",
            code="DUPLICATE_PAYMENT",
            paymentId=payment_id[-8:],
        ), 409

    problem = _validate_booking_data(booking, booking_type)
    if problem:
        current_app.logger.warning("[payment] booking validation failed: %s", problem)
        return jsonify(error=problem), 400

    target = (
        TicketTarget.event(booking["eventId"]) if booking_type == "event"
        else TicketTarget.activity(booking["activityId"])
    )
    session_id = _session_id(booking)

    try:
        server_amount, breakdown = calculate_amount(target, session_id, booking["tickets"])
        if abs(server_amount - to_money(booking["totalAmount"])) > to_money("0.01"):
            current_app.logger.warning(
                "[payment] price discrepancy calculated=%s paid=%s payment=%s",
                server_amount, booking["totalAmount"], payment_id,
            )
        session = load_session(target, session_id)
        prices = {b["ticketType"]: to_money(b["price"]) for b in breakdown}
        result = create_booking(
            target, session_id,
            user_id=booking["userId"],
            attendee=AttendeeInfo(
                name=str(booking["name"]).strip(),
                email=str(booking["email"]).strip(),
                phone=(booking.get("phone") or "").strip() or None,
            ),
            selections=selections_from_map(booking["tickets"], session, prices),
            payment_id=payment_id,
            total_amount=server_amount,
            order_id=order_id,
        )
    except ZestError as e:
        return _error(e)

    ticket_ids, warning = issue_tickets(result.booking_id)
    current_app.logger.info(
        "[payment] verified payment=%s booking=%s tickets=%d", payment_id, result.booking_reference, len(ticket_ids),
    )

    body = {
        "success": True,
        "bookingId": result.booking_id,
        "bookingReference": result.booking_reference,
        "ticketIds": ticket_ids,
        "amount": float(server_amount),
        "breakdown": breakdown,
        "groupBookingInfo": {
            "totalTickets": result.total_tickets,
            "isGroupBooking": result.total_tickets > 1,
            "attendeeIds": result.attendee_ids,
        },
    }
    if warning:
        body["warning"] = warning
    return jsonify(body), 200
