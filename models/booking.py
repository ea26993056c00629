# models/booking.py
from __future__ import annotations

import secrets
from datetime import datetime

from sqlalchemy.sql import func

from db import db


def new_booking_reference() -> str:
    """Shared reference stamped on every seat of one purchase."""
    return f"BK-{int(datetime.utcnow().timestamp() * 1000):x}-{secrets.token_hex(4)}".upper()


class Booking(db.Model):
    __tablename__ = "bookings"

    id             = db.Column(db.Integer, primary_key=True, autoincrement=True)
    reference      = db.Column(db.String(48), nullable=False, unique=True, default=new_booking_reference)

    event_id       = db.Column(db.String(64), db.ForeignKey("events.id", ondelete="CASCADE"), nullable=True, index=True)
    activity_id    = db.Column(db.String(64), db.ForeignKey("activities.id", ondelete="CASCADE"), nullable=True, index=True)
    session_id     = db.Column(db.String(64), db.ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True)

    user_id        = db.Column(db.String(128), nullable=True, index=True)
    name           = db.Column(db.String(120), nullable=False)
    email          = db.Column(db.String(254), nullable=False)
    phone          = db.Column(db.String(32), nullable=True)

    tickets        = db.Column(db.JSON, nullable=False, default=dict)      # {"General": 2, "VIP": 1}
    total_amount   = db.Column(db.Numeric(12, 2), nullable=False)

    payment_id     = db.Column(db.String(64), nullable=False, unique=True)
    order_id       = db.Column(db.String(64), nullable=True)
    payment_status = db.Column(db.String(16), nullable=False, default="completed")
    status         = db.Column(db.String(16), nullable=False, default="confirmed")
    added_manually = db.Column(db.Boolean, nullable=False, default=False, server_default=db.text("0"))

    # bumped by every check-in so concurrent scans of one group conflict
    checkin_count  = db.Column(db.Integer, nullable=False, default=0, server_default=db.text("0"))
    version        = db.Column(db.Integer, nullable=False, default=1)

    created_at     = db.Column(db.DateTime, server_default=func.now(), nullable=False)

    session   = db.relationship("Session")
    attendees = db.relationship(
        "Attendee",
        back_populates="booking",
        order_by="Attendee.id",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        db.CheckConstraint(
            "(event_id IS NULL) <> (activity_id IS NULL)",
            name="ck_bookings_single_target",
        ),
    )

    @property
    def seat_count(self) -> int:
        return sum(int(q) for q in (self.tickets or {}).values())


class Attendee(db.Model):
    """One row per purchased seat; carries the check-in flag."""
    __tablename__ = "attendees"

    id                       = db.Column(db.Integer, primary_key=True, autoincrement=True)
    booking_id               = db.Column(db.Integer, db.ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    booking_reference        = db.Column(db.String(48), nullable=False, index=True)

    event_id                 = db.Column(db.String(64), nullable=True, index=True)
    activity_id              = db.Column(db.String(64), nullable=True, index=True)
    session_id               = db.Column(db.String(64), nullable=False, index=True)

    user_id                  = db.Column(db.String(128), nullable=True, index=True)
    name                     = db.Column(db.String(120), nullable=False)
    email                    = db.Column(db.String(254), nullable=False)
    phone                    = db.Column(db.String(32), nullable=True)

    # denormalized for dashboard queries
    event_title              = db.Column(db.String(200), nullable=True)
    session_title            = db.Column(db.String(200), nullable=True)
    session_starts_at        = db.Column(db.DateTime, nullable=True)
    session_ends_at          = db.Column(db.DateTime, nullable=True)
    venue                    = db.Column(db.String(255), nullable=True)

    ticket_type              = db.Column(db.String(80), nullable=False)
    individual_amount        = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    ticket_index             = db.Column(db.Integer, nullable=False, default=1)
    total_tickets_in_booking = db.Column(db.Integer, nullable=False, default=1)

    # companion seat bought under the purchaser's name, no identity of its own
    is_guest                 = db.Column(db.Boolean, nullable=False, default=False, server_default=db.text("0"))

    checked_in               = db.Column(db.Boolean, nullable=False, default=False, server_default=db.text("0"), index=True)
    checked_in_at            = db.Column(db.DateTime, nullable=True)
    checked_in_by            = db.Column(db.String(128), nullable=True)

    status                   = db.Column(db.String(16), nullable=False, default="confirmed", index=True)
    created_at               = db.Column(db.DateTime, server_default=func.now(), nullable=False)

    booking = db.relationship("Booking", back_populates="attendees")
