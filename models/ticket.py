# models/ticket.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, NamedTuple, Optional

from sqlalchemy.sql import func

from db import db


class TicketStatus:
    ACTIVE    = "active"
    USED      = "used"
    CANCELLED = "cancelled"
    EXPIRED   = "expired"

    ALL = (ACTIVE, USED, CANCELLED, EXPIRED)


class TicketTarget(NamedTuple):
    """What a ticket admits to: ("event", id) or ("activity", id)."""
    kind: str
    id: str

    @classmethod
    def event(cls, event_id: str) -> "TicketTarget":
        return cls("event", str(event_id))

    @classmethod
    def activity(cls, activity_id: str) -> "TicketTarget":
        return cls("activity", str(activity_id))

    def columns(self) -> Dict[str, Optional[str]]:
        return {
            "event_id":    self.id if self.kind == "event" else None,
            "activity_id": self.id if self.kind == "activity" else None,
        }


def _iso_z(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    dt = dt.astimezone(timezone.utc) if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")


class Ticket(db.Model):
    __tablename__ = "tickets"

    id                       = db.Column(db.Integer, primary_key=True, autoincrement=True)
    ticket_number            = db.Column(db.String(64), nullable=False, unique=True, index=True)
    qr_code                  = db.Column(db.Text, nullable=True)

    status                   = db.Column(
        db.Enum(*TicketStatus.ALL, name="ticket_status"),
        nullable=False,
        default=TicketStatus.ACTIVE,
        server_default=TicketStatus.ACTIVE,
        index=True,
    )

    event_id                 = db.Column(db.String(64), db.ForeignKey("events.id", ondelete="CASCADE"), nullable=True, index=True)
    activity_id              = db.Column(db.String(64), db.ForeignKey("activities.id", ondelete="CASCADE"), nullable=True, index=True)
    title                    = db.Column(db.String(200), nullable=True)
    venue                    = db.Column(db.String(255), nullable=True)

    session_id               = db.Column(db.String(64), nullable=True, index=True)
    selected_date            = db.Column(db.String(10), nullable=True)           # YYYY-MM-DD
    starts_at                = db.Column(db.DateTime, nullable=True)
    ends_at                  = db.Column(db.DateTime, nullable=True)

    attendee_id              = db.Column(db.Integer, db.ForeignKey("attendees.id", ondelete="SET NULL"), nullable=True, unique=True, index=True)
    booking_id               = db.Column(db.Integer, db.ForeignKey("bookings.id", ondelete="CASCADE"), nullable=True, index=True)
    booking_reference        = db.Column(db.String(48), nullable=True, index=True)
    total_tickets_in_booking = db.Column(db.Integer, nullable=False, default=1)

    # holder snapshot at issuance (not a live reference)
    user_id                  = db.Column(db.String(128), nullable=True, index=True)
    user_name                = db.Column(db.String(120), nullable=True)
    user_email               = db.Column(db.String(254), nullable=True)
    user_phone               = db.Column(db.String(32), nullable=True)

    ticket_type              = db.Column(db.String(80), nullable=False, default="General")
    amount                   = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    payment_id               = db.Column(db.String(64), nullable=True, index=True)
    payment_status           = db.Column(db.String(16), nullable=True)
    added_manually           = db.Column(db.Boolean, nullable=False, default=False, server_default=db.text("0"))

    used_at                  = db.Column(db.DateTime, nullable=True)
    used_by                  = db.Column(db.String(128), nullable=True)
    use_location             = db.Column(db.String(120), nullable=True)
    expired_at               = db.Column(db.DateTime, nullable=True)
    expired_reason           = db.Column(db.String(64), nullable=True)
    cancelled_at             = db.Column(db.DateTime, nullable=True)
    cancel_reason            = db.Column(db.String(200), nullable=True)

    validation_history       = db.Column(db.JSON, nullable=False, default=list)
    version                  = db.Column(db.Integer, nullable=False, default=1)

    created_at               = db.Column(db.DateTime, server_default=func.now(), nullable=False)
    updated_at               = db.Column(db.DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    attendee = db.relationship("Attendee", foreign_keys=[attendee_id])
    booking  = db.relationship("Booking", foreign_keys=[booking_id])

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        db.CheckConstraint(
            "(event_id IS NULL) <> (activity_id IS NULL)",
            name="ck_tickets_single_target",
        ),
    )

    # ── Helpers ─────────────────────────────────────────────────────────────
    @property
    def target(self) -> TicketTarget:
        if self.event_id:
            return TicketTarget.event(self.event_id)
        return TicketTarget.activity(self.activity_id)

    def append_history(self, action: str, *, at: Optional[datetime] = None, **extra: Any) -> None:
        # JSON columns only notice reassignment, so build a new list
        entry = {"timestamp": _iso_z(at or datetime.utcnow()), "action": action}
        entry.update({k: v for k, v in extra.items() if v is not None})
        self.validation_history = list(self.validation_history or []) + [entry]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id":                    self.id,
            "ticketNumber":          self.ticket_number,
            "qrCode":                self.qr_code,
            "status":                self.status,
            "type":                  self.target.kind,
            "eventId":               self.event_id,
            "activityId":            self.activity_id,
            "title":                 self.title,
            "venue":                 self.venue,
            "sessionId":             self.session_id,
            "selectedDate":          self.selected_date,
            "startsAt":              _iso_z(self.starts_at),
            "endsAt":                _iso_z(self.ends_at),
            "userId":                self.user_id,
            "userName":              self.user_name,
            "userEmail":             self.user_email,
            "userPhone":             self.user_phone,
            "ticketType":            self.ticket_type,
            "amount":                float(self.amount or 0),
            "paymentId":             self.payment_id,
            "bookingId":             self.booking_id,
            "bookingReference":      self.booking_reference,
            "totalTicketsInBooking": int(self.total_tickets_in_booking or 1),
            "usedAt":                _iso_z(self.used_at),
            "usedBy":                self.used_by,
            "expiredAt":             _iso_z(self.expired_at),
            "expiredReason":         self.expired_reason,
            "validationHistory":     list(self.validation_history or []),
            "createdAt":             _iso_z(self.created_at),
        }
