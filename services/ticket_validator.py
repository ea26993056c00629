# services/ticket_validator.py
"""
Read-and-classify for door scans, plus the single active -> used transition.

``validate_ticket`` never writes: expiry is computed from the session clock
(or the parent being cancelled) and reported, while persisting it is left to
the expiry sweep. ``mark_ticket_used`` is the only path that flips a ticket
to ``used``; it re-reads inside a version-checked transaction so two
simultaneous scans cannot both win.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from dateutil import parser as dtparser
from flask import current_app

from db import db
from models.event import Activity, Event
from models.ticket import Ticket, TicketStatus
from services.errors import BusinessRuleError, ZestError
from services.transaction import run_in_transaction


@dataclass
class ValidationResult:
    is_valid: bool
    code: str
    message: str
    http_status: int = 200
    status: Optional[str] = None
    ticket: Optional[Ticket] = None
    security_flags: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "success": self.is_valid,
            "code": self.code,
            "status": self.status,
            "securityFlags": list(self.security_flags),
        }
        out["message" if self.is_valid else "error"] = self.message
        if self.ticket is not None:
            out["ticket"] = self.ticket.to_dict()
        return out


def _deny(code: str, message: str, http_status: int, ticket=None, status=None, flags=None) -> ValidationResult:
    return ValidationResult(
        is_valid=False, code=code, message=message, http_status=http_status,
        status=status, ticket=ticket, security_flags=list(flags or []),
    )


def _parent(ticket: Ticket):
    if ticket.event_id:
        return db.session.get(Event, ticket.event_id)
    if ticket.activity_id:
        return db.session.get(Activity, ticket.activity_id)
    return None


def _selected_day(ticket: Ticket) -> Optional[datetime]:
    if ticket.selected_date:
        try:
            return dtparser.isoparse(ticket.selected_date).replace(tzinfo=None)
        except ValueError:
            return None
    if ticket.starts_at:
        return ticket.starts_at.replace(hour=0, minute=0, second=0, microsecond=0)
    return None


def expiry_reason(ticket: Ticket, now: Optional[datetime] = None) -> Optional[str]:
    """Why this ticket is (or should be) expired, or None while it is still good."""
    if ticket.status == TicketStatus.EXPIRED:
        return ticket.expired_reason or "expired"
    now = now or datetime.utcnow()

    parent = _parent(ticket)
    if parent is not None and (parent.status or "") == "cancelled":
        return "event_cancelled"

    if ticket.ends_at:
        grace = timedelta(hours=float(current_app.config.get("ENTRY_GRACE_HOURS", 2)))
        if now > ticket.ends_at + grace:
            return "session_time_passed"
        return None

    day = _selected_day(ticket)
    if day is not None and now >= day + timedelta(days=1):
        return "event_date_passed"
    return None


def effective_status(ticket: Ticket, now: Optional[datetime] = None) -> str:
    if ticket.status == TicketStatus.ACTIVE and expiry_reason(ticket, now):
        return TicketStatus.EXPIRED
    return ticket.status


_DISPLAY = {
    TicketStatus.ACTIVE:    ("Active", True),
    TicketStatus.USED:      ("Used", False),
    TicketStatus.EXPIRED:   ("Expired", False),
    TicketStatus.CANCELLED: ("Cancelled", False),
}


def display_status(ticket: Ticket, now: Optional[datetime] = None) -> Dict[str, Any]:
    status = effective_status(ticket, now)
    text, can_use = _DISPLAY.get(status, ("Unknown", False))
    return {"status": status, "displayText": text, "canUse": can_use}


def security_flags(ticket: Ticket, now: Optional[datetime] = None) -> List[str]:
    """Anomalies worth showing the door staff; none of them deny entry."""
    now = now or datetime.utcnow()
    window = int(current_app.config.get("RAPID_SCAN_WINDOW_S", 300))
    history = list(ticket.validation_history or [])
    flags: List[str] = []

    scans = [h for h in history if h.get("action") != "created"]
    if scans:
        try:
            last = dtparser.isoparse(scans[-1]["timestamp"]).replace(tzinfo=None)
        except (KeyError, TypeError, ValueError):
            last = None
        if last is not None and (now - last).total_seconds() < window:
            flags.append("RAPID_SCAN_ATTEMPT")

    if any(h.get("action") == "validated" for h in history):
        flags.append("PREVIOUS_USE_DETECTED")
    if ticket.added_manually:
        flags.append("MANUALLY_CREATED")
    if not ticket.user_id:
        flags.append("PHONE_ONLY_TICKET")
    return flags


def validate_ticket(
    ticket_number: str,
    scanner_location: Optional[str] = None,
    scanner_id: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> ValidationResult:
    now = now or datetime.utcnow()
    number = (ticket_number or "").strip()
    if not number:
        return _deny("VALIDATION_ERROR", "Ticket number is required", 400)

    ticket = Ticket.query.filter_by(ticket_number=number).first()
    if ticket is None:
        return _deny("TICKET_NOT_FOUND", "Invalid ticket number", 404)

    flags = security_flags(ticket, now)

    if ticket.status == TicketStatus.USED:
        return _deny("ALREADY_USED", "Ticket has already been used", 409, ticket, TicketStatus.USED, flags)
    if ticket.status == TicketStatus.CANCELLED:
        return _deny("TICKET_CANCELLED", "Ticket has been cancelled", 403, ticket, TicketStatus.CANCELLED, flags)
    if ticket.status == TicketStatus.EXPIRED or expiry_reason(ticket, now):
        return _deny("TICKET_EXPIRED", "Ticket has expired", 410, ticket, TicketStatus.EXPIRED, flags)
    if ticket.status != TicketStatus.ACTIVE:
        return _deny("UNKNOWN_STATUS", "Unknown ticket status", 400, ticket, ticket.status, flags)
    if not (ticket.event_id or ticket.activity_id):
        return _deny("VALIDATION_ERROR", "Ticket is missing its event", 400, ticket, ticket.status, flags)

    early = timedelta(hours=float(current_app.config.get("EARLY_ENTRY_HOURS", 2)))
    if ticket.starts_at and now < ticket.starts_at - early:
        return _deny(
            "TOO_EARLY",
            f"Entry opens {early.total_seconds() / 3600:g} hours before start. "
            f"Session starts at {ticket.starts_at:%H:%M} UTC",
            400, ticket, ticket.status, flags,
        )
    day = _selected_day(ticket)
    if not ticket.starts_at and day is not None and now < day:
        return _deny(
            "FUTURE_DATE",
            f"This ticket is for {day:%Y-%m-%d}. Cannot enter before event date.",
            400, ticket, ticket.status, flags,
        )

    current_app.logger.debug(
        "[validate] %s ok scanner=%s location=%s flags=%s",
        number, scanner_id, scanner_location, flags,
    )
    return ValidationResult(
        is_valid=True,
        code="VALID_ACTIVE",
        message="Valid ticket - ready for entry",
        status=TicketStatus.ACTIVE,
        ticket=ticket,
        security_flags=flags,
    )


def mark_ticket_used(ticket_number: str, scanner_id: str, location: Optional[str] = None,
                     *, check: Optional[Callable[[Ticket], None]] = None) -> bool:
    """
    active -> used, conditioned on the ticket's version. Returns False when the
    ticket is no longer usable (including a concurrent scan that got there
    first) or the transaction could not be completed.

    ``check`` runs inside the same transaction, after the ticket is re-read,
    and refuses the write by raising a ``ZestError``. Every check-in also bumps
    the booking's version, so two seats of one group scanned at once conflict
    and the loser re-runs ``check`` against the winner's committed state.
    """
    def _body() -> bool:
        now = datetime.utcnow()
        ticket = Ticket.query.filter_by(ticket_number=ticket_number).first()
        if ticket is None:
            raise BusinessRuleError("Ticket not found", code="TICKET_NOT_FOUND")
        if ticket.status != TicketStatus.ACTIVE or expiry_reason(ticket, now):
            raise BusinessRuleError(f"Ticket is {effective_status(ticket, now)}", code="NOT_ACTIVE")
        # read before the check so a check-in committed after it makes this write stale
        booking = ticket.booking
        if check is not None:
            check(ticket)

        ticket.status = TicketStatus.USED
        ticket.used_at = now
        ticket.used_by = scanner_id
        ticket.use_location = location[:120] if location else None
        ticket.append_history("validated", at=now, location=location or "entry", scannerId=scanner_id)

        att = ticket.attendee
        if att is not None:
            att.checked_in = True
            att.checked_in_at = now
            att.checked_in_by = scanner_id

        if booking is not None:
            booking.checkin_count = int(booking.checkin_count or 0) + 1

        db.session.flush()
        return True

    try:
        return run_in_transaction(_body, tag="mark-used")
    except ZestError as e:
        current_app.logger.warning("[validate] mark-used %s refused: %s (%s)", ticket_number, e.message, e.code)
        return False
