# services/ticket_generator.py
from __future__ import annotations

import secrets
import time
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from db import db
from models.booking import Booking
from models.ticket import Ticket, TicketStatus
from services.booking import CENT, to_money
from services.errors import NotFoundError, TransactionFailedError
from utils.qr import build_qr_payload

_B36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36(n: int) -> str:
    if n <= 0:
        return "0"
    out = []
    while n:
        n, r = divmod(n, 36)
        out.append(_B36[r])
    return "".join(reversed(out))


def generate_ticket_number(prefix: Optional[str] = None) -> str:
    """ZST-<ms base36>-<16 hex>-<4 hex>, upper-cased."""
    prefix = prefix or current_app.config.get("TICKET_PREFIX", "ZST")
    ms = int(time.time() * 1000)
    return f"{prefix}-{_base36(ms)}-{secrets.token_hex(8)}-{secrets.token_hex(2)}".upper()


def split_amount(total, seats: int) -> List[Decimal]:
    """
    Uniform per-seat split rounded to paise; the last seat takes the
    remainder so the parts always add back to the total.
    """
    if seats <= 0:
        return []
    total = to_money(total)
    each = (total / seats).quantize(CENT)
    parts = [each] * (seats - 1)
    parts.append(total - each * (seats - 1))
    return parts


def _build_tickets(booking: Booking, now: datetime) -> List[Ticket]:
    session = booking.session
    parent = session.parent if session else None
    attendees = list(booking.attendees)
    amounts = split_amount(booking.total_amount, len(attendees))

    tickets: List[Ticket] = []
    for att, amount in zip(attendees, amounts):
        t = Ticket(
            ticket_number            = generate_ticket_number(),
            status                   = TicketStatus.ACTIVE,
            event_id                 = booking.event_id,
            activity_id              = booking.activity_id,
            title                    = parent.title if parent else att.event_title,
            venue                    = att.venue,
            session_id               = booking.session_id,
            selected_date            = att.session_starts_at.strftime("%Y-%m-%d") if att.session_starts_at else None,
            starts_at                = att.session_starts_at,
            ends_at                  = att.session_ends_at,
            attendee_id              = att.id,
            booking_id               = booking.id,
            booking_reference        = booking.reference,
            total_tickets_in_booking = len(attendees),
            user_id                  = booking.user_id,
            user_name                = att.name,
            user_email               = att.email,
            user_phone               = att.phone,
            ticket_type              = att.ticket_type,
            amount                   = amount,
            payment_id               = booking.payment_id,
            payment_status           = booking.payment_status,
            added_manually           = bool(booking.added_manually),
            validation_history       = [],
        )
        t.append_history("created", at=now, location="system")
        tickets.append(t)
    return tickets


def create_tickets_for_booking(booking_id: int) -> List[int]:
    """
    Mint one ticket per attendee seat of a committed booking, in one commit.

    The ticket number carries a unique constraint; if an insert collides the
    whole batch is rolled back and rebuilt with fresh numbers, so a booking
    ends up with every seat ticketed or none. Calling this again for a
    booking that already has tickets returns the existing ids; a concurrent
    call for the same booking trips the unique seat link instead and picks up
    the winner's tickets on the next pass.
    """
    attempts = int(current_app.config.get("TICKET_NUMBER_ATTEMPTS", 5))

    for attempt in range(1, attempts + 1):
        booking = db.session.get(Booking, booking_id)
        if booking is None:
            raise NotFoundError(f"Booking {booking_id} not found", code="BOOKING_NOT_FOUND")

        existing = Ticket.query.filter_by(booking_id=booking.id).order_by(Ticket.id).all()
        if existing:
            return [t.id for t in existing]

        now = datetime.utcnow()
        tickets = _build_tickets(booking, now)
        try:
            db.session.add_all(tickets)
            db.session.flush()  # ids are part of the QR payload
            for t in tickets:
                t.qr_code = build_qr_payload(t, issued_at=now)
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            current_app.logger.warning(
                "[tickets] insert conflict for booking=%s (attempt %d/%d); retrying",
                booking_id, attempt, attempts,
            )
            continue
        except Exception:
            db.session.rollback()
            raise

        current_app.logger.info(
            "[tickets] issued %d tickets for booking=%s ref=%s",
            len(tickets), booking.id, booking.reference,
        )
        return [t.id for t in tickets]

    raise TransactionFailedError("Could not generate unique ticket numbers", attempts=attempts)
