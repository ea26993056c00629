# services/notify_ticket.py
from __future__ import annotations

from typing import Optional

from flask import current_app

from db import db
from models.booking import Booking
from models.ticket import _iso_z
from services.notify_fcm import notify_user_tickets_issued


def notify_booking_confirmed(booking_id: int) -> bool:
    """
    Fire-and-forget push to the buyer once their tickets exist. Skipped for
    bookings without an account (manual / phone-only) and when DISABLE_PUSH is set.
    """
    if current_app.config.get("DISABLE_PUSH"):
        return False

    b: Optional[Booking] = db.session.get(Booking, booking_id)
    if not b or not b.user_id:
        return False

    sess = b.session
    title = sess.parent.title if sess and sess.parent else None
    try:
        notify_user_tickets_issued(
            user_id=b.user_id,
            booking_reference=b.reference,
            ticket_count=b.seat_count,
            title=title,
            starts_at=_iso_z(sess.starts_at) if sess else None,
        )
        current_app.logger.info("[push] tickets_issued topic ok booking=%s user=%s", b.id, b.user_id)
        return True
    except Exception:
        current_app.logger.exception("[push] tickets_issued topic failed (booking=%s)", b.id)
        return False
