# services/entry.py
"""
Door-scanner entry decision.

validate -> right event -> authorized scanner -> group-booking rules
-> mark used -> (best effort) entry log + live dashboard push.
The first failing step decides the answer.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from flask import current_app

from db import db
from models.booking import Attendee
from models.entry_log import EntryLog
from models.ticket import Ticket, TicketStatus, _iso_z
from realtime import emit_checkin
from services.booking import can_scan, load_target
from services.errors import BusinessRuleError, NotFoundError
from services.ticket_validator import effective_status, expiry_reason, mark_ticket_used, validate_ticket


@dataclass
class EntryDecision:
    success: bool
    http_status: int
    body: Dict[str, Any] = field(default_factory=dict)


def _fail(http_status: int, code: str, error: str, **extra) -> EntryDecision:
    body = {"success": False, "error": error, "code": code}
    body.update({k: v for k, v in extra.items() if v is not None})
    return EntryDecision(False, http_status, body)


def _group_denial(ticket: Ticket) -> Optional[EntryDecision]:
    if not ticket.booking_reference:
        return None

    checked_in: List[Attendee] = (
        Attendee.query
        .filter_by(booking_reference=ticket.booking_reference, checked_in=True)
        .all()
    )

    seat = ticket.attendee
    if seat is not None:
        person = None if seat.is_guest else (seat.email, seat.user_id)
    else:
        person = (ticket.user_email, ticket.user_id)

    # one person, one entry, however many seats of the group they hold
    for att in checked_in:
        if person is not None and not att.is_guest and (att.email, att.user_id) == person:
            current_app.logger.warning(
                "[entry] duplicate group check-in ref=%s email=%s ticket=%s",
                ticket.booking_reference, ticket.user_email, ticket.ticket_number,
            )
            return _fail(
                400, "DUPLICATE_GROUP_CHECKIN",
                "This person has already checked in with another ticket from the same booking",
                checkedInAt=_iso_z(att.checked_in_at),
            )

    total = int(ticket.total_tickets_in_booking or 1)
    if len(checked_in) >= total:
        current_app.logger.warning(
            "[entry] booking %s fully checked in (%d/%d)", ticket.booking_reference, len(checked_in), total,
        )
        return _fail(
            400, "BOOKING_FULLY_CHECKED_IN",
            f"All {total} tickets from this booking have already been used",
        )
    return None


def _group_guard(ticket: Ticket) -> None:
    denial = _group_denial(ticket)
    if denial is not None:
        raise BusinessRuleError(denial.body["error"], code=denial.body["code"])


def _log_entry(ticket: Ticket, scanner_id: str, scanner_type: str,
               scanner_location: Optional[str], flags: List[str]) -> None:
    try:
        db.session.add(EntryLog(
            ticket_id        = ticket.id,
            ticket_number    = ticket.ticket_number,
            event_id         = ticket.target.id,
            target_kind      = ticket.target.kind,
            scanner_id       = scanner_id,
            scanner_type     = scanner_type,
            scanner_location = scanner_location,
            attendee_name    = ticket.user_name,
            attendee_id      = ticket.user_id,
            security_flags   = list(flags),
        ))
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("[entry] entry log append failed for %s", ticket.ticket_number)


def _push_checkin(ticket: Ticket, scanner_id: str) -> None:
    try:
        emit_checkin(ticket.target.id, {
            "ticketNumber": ticket.ticket_number,
            "userName":     ticket.user_name,
            "ticketType":   ticket.ticket_type,
            "scannerId":    scanner_id,
            "entryTime":    _iso_z(ticket.used_at),
        })
    except Exception:
        current_app.logger.exception("[entry] check-in emit failed for %s", ticket.ticket_number)


def _refused_write(ticket_number: str) -> EntryDecision:
    """Explain a mark-used refusal from the state that is committed now."""
    db.session.expire_all()
    current = Ticket.query.filter_by(ticket_number=ticket_number).first()
    if current is None:
        return _fail(500, "UPDATE_FAILED", "Failed to update ticket status")
    if current.status == TicketStatus.USED:
        return _fail(
            409, "ALREADY_USED", "Ticket has already been used",
            usedAt=_iso_z(current.used_at), usedBy=current.used_by,
        )
    now = datetime.utcnow()
    if effective_status(current, now) == TicketStatus.EXPIRED:
        return _fail(
            410, "TICKET_EXPIRED", "Ticket has expired",
            status=TicketStatus.EXPIRED,
            expiredAt=_iso_z(current.expired_at),
            expiredReason=current.expired_reason or expiry_reason(current, now),
        )
    denial = _group_denial(current)
    if denial is not None:
        return denial
    return _fail(500, "UPDATE_FAILED", "Failed to update ticket status")


def verify_entry(
    ticket_number: Optional[str],
    scanner_id: Optional[str],
    scanner_type: Optional[str],
    event_id: Optional[str],
    scanner_location: Optional[str] = None,
) -> EntryDecision:
    if not (ticket_number and scanner_id and scanner_type and event_id):
        return _fail(
            400, "MISSING_FIELDS",
            "Missing required fields: ticketNumber, scannerId, scannerType, eventId",
        )

    result = validate_ticket(ticket_number, scanner_location, scanner_id)
    if not result.is_valid:
        t = result.ticket
        return _fail(
            result.http_status, result.code, result.message,
            status=result.status,
            securityFlags=result.security_flags,
            usedAt=_iso_z(t.used_at) if t else None,
            usedBy=t.used_by if t else None,
            expiredAt=_iso_z(t.expired_at) if t else None,
            expiredReason=t.expired_reason if t else None,
        )

    ticket = result.ticket
    flags = result.security_flags

    if ticket.target.id != str(event_id):
        current_app.logger.warning(
            "[entry] %s scanned at %s but belongs to %s %s",
            ticket.ticket_number, event_id, ticket.target.kind, ticket.target.id,
        )
        return _fail(403, "WRONG_EVENT", "This ticket is not valid for this event")

    try:
        parent = load_target(ticket.target)
    except NotFoundError:
        return _fail(404, "EVENT_NOT_FOUND", "Event not found")
    if not can_scan(parent, scanner_id):
        current_app.logger.warning("[entry] scanner %s not authorized for %s", scanner_id, parent.id)
        return _fail(403, "UNAUTHORIZED", "Scanner is not authorized for this event")

    denial = _group_denial(ticket)
    if denial is not None:
        return denial

    if not mark_ticket_used(ticket.ticket_number, scanner_id, scanner_location, check=_group_guard):
        return _refused_write(ticket.ticket_number)

    db.session.refresh(ticket)
    _log_entry(ticket, scanner_id, scanner_type, scanner_location, flags)
    _push_checkin(ticket, scanner_id)

    current_app.logger.info(
        "[entry] admitted %s to %s by %s flags=%s",
        ticket.ticket_number, event_id, scanner_id, flags,
    )
    return EntryDecision(True, 200, {
        "success": True,
        "message": "Entry granted",
        "ticket": {
            "id":           ticket.id,
            "ticketNumber": ticket.ticket_number,
            "userName":     ticket.user_name,
            "eventTitle":   ticket.title,
            "ticketType":   ticket.ticket_type,
            "amount":       float(ticket.amount or 0),
            "selectedDate": ticket.selected_date,
            "startsAt":     _iso_z(ticket.starts_at),
            "endsAt":       _iso_z(ticket.ends_at),
            "entryTime":    _iso_z(ticket.used_at or datetime.utcnow()),
        },
        "securityFlags": flags,
    })
