# services/booking.py
"""
Capacity-aware booking.

This is where a confirmed payment becomes held inventory plus per-seat
attendee rows, in one all-or-nothing unit of work:

  read parent + session  ->  check every ticket type has room
  ->  insert booking + one attendee per seat  ->  decrement available_capacity
  ->  commit (version-checked; conflicting writers re-run the whole body)

Events and activities go through the same path. No other code decrements
``TicketType.available_capacity``; cancellation is the only path that gives
seats back.

Public API:
  - create_booking(target, session_id, *, user_id, attendee, selections,
                   payment_id, total_amount, ...) -> BookingResult
  - cancel_tickets(ticket_ids, *, reason, cancelled_by) -> CancelResult
  - calculate_amount(target, session_id, tickets) -> (Decimal, breakdown)
  - session_stats(session_id) -> dict
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Optional, Tuple, Union

from flask import current_app
from sqlalchemy.exc import IntegrityError

from db import db
from models.booking import Attendee, Booking, new_booking_reference
from models.event import Activity, Event, Session, TicketType
from models.ticket import Ticket, TicketStatus, TicketTarget
from services.errors import (
    AuthorizationError,
    BusinessRuleError,
    InsufficientCapacityError,
    NotFoundError,
)
from services.transaction import run_in_transaction

CENT = Decimal("0.01")


def to_money(x) -> Decimal:
    return Decimal(str(x or 0)).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class TicketSelection:
    name: str
    quantity: int
    unit_price: Decimal = Decimal("0")


@dataclass
class AttendeeInfo:
    name: str
    email: str
    phone: Optional[str] = None


@dataclass
class BookingResult:
    booking_id: int
    booking_reference: str
    attendee_ids: List[int]
    total_tickets: int
    session_id: str


@dataclass
class CancelResult:
    cancelled_ticket_ids: List[int] = field(default_factory=list)
    refund_total: Decimal = Decimal("0")


# ---------- lookups ----------

def load_target(target: TicketTarget) -> Union[Event, Activity]:
    if target.kind == "event":
        parent = db.session.get(Event, target.id)
        if not parent:
            raise NotFoundError("Event not found", code="EVENT_NOT_FOUND")
    elif target.kind == "activity":
        parent = db.session.get(Activity, target.id)
        if not parent:
            raise NotFoundError("Activity not found", code="ACTIVITY_NOT_FOUND")
    else:
        raise BusinessRuleError(f"unknown booking type {target.kind!r}", code="INVALID_BOOKING_TYPE")
    return parent


def load_session(target: TicketTarget, session_id: str) -> Session:
    sess = db.session.get(Session, session_id) if session_id else None
    owner = (sess.event_id if target.kind == "event" else sess.activity_id) if sess else None
    if not sess or owner != target.id:
        raise NotFoundError(f"Session {session_id} not found", code="SESSION_NOT_FOUND")
    return sess


def selections_from_map(tickets: Union[Dict[str, int], int], session: Session,
                        unit_prices: Optional[Dict[str, Decimal]] = None) -> List[TicketSelection]:
    """
    Turn the client's ``{ticketTypeName: quantity}`` map into selections.
    Activity clients send a bare seat count; that books the session's first tier.
    """
    if isinstance(tickets, bool):
        raise BusinessRuleError("Invalid ticket selection", code="INVALID_SELECTION")
    if isinstance(tickets, (int, float)):
        if not session.ticket_types:
            raise NotFoundError("No ticket types configured for this session", code="TICKET_TYPE_NOT_FOUND")
        tickets = {session.ticket_types[0].name: int(tickets)}

    out: List[TicketSelection] = []
    for name, qty in (tickets or {}).items():
        price = (unit_prices or {}).get(name)
        if price is None:
            tt = session.ticket_type_named(name)
            price = tt.unit_price if tt else Decimal("0")
        out.append(TicketSelection(name=str(name), quantity=parse_quantity(qty), unit_price=to_money(price)))
    return out


def parse_quantity(qty) -> int:
    if isinstance(qty, bool):
        raise BusinessRuleError("Ticket quantities must be whole numbers", code="INVALID_SELECTION")
    try:
        n = int(qty)
    except (TypeError, ValueError):
        raise BusinessRuleError("Ticket quantities must be whole numbers", code="INVALID_SELECTION")
    if n != qty and not isinstance(qty, str):
        raise BusinessRuleError("Ticket quantities must be whole numbers", code="INVALID_SELECTION")
    return n


def _merge(selections: Iterable[TicketSelection]) -> List[TicketSelection]:
    merged: Dict[str, TicketSelection] = {}
    for sel in selections:
        if sel.quantity <= 0:
            raise BusinessRuleError(
                f"Quantity for {sel.name} must be at least 1", code="INVALID_SELECTION"
            )
        if sel.name in merged:
            merged[sel.name].quantity += sel.quantity
        else:
            merged[sel.name] = TicketSelection(sel.name, int(sel.quantity), to_money(sel.unit_price))
    return list(merged.values())


def _check_bookable(parent, session: Session, now: datetime) -> None:
    if (parent.status or "active") == "cancelled":
        raise BusinessRuleError(f"{parent.display_name} has been cancelled", code="EVENT_CANCELLED")
    if (session.ends_at or session.starts_at) < now:
        raise BusinessRuleError("Cannot book a session that has already ended", code="SESSION_ENDED")
    if isinstance(parent, Activity):
        day = session.starts_at.strftime("%Y-%m-%d")
        if day in (parent.closed_dates or []):
            raise BusinessRuleError("Activity is not available on selected date", code="ACTIVITY_CLOSED")


# ---------- booking transaction ----------

def _seat_holder(seat: int, purchaser: AttendeeInfo,
                 guests: Optional[List[AttendeeInfo]]) -> Tuple[AttendeeInfo, bool]:
    if seat == 0:
        return purchaser, False
    guests = guests or []
    if seat - 1 < len(guests) and guests[seat - 1].email:
        return guests[seat - 1], False
    return AttendeeInfo(f"{purchaser.name} (guest {seat})", purchaser.email, purchaser.phone), True


def create_booking(
    target: TicketTarget,
    session_id: str,
    *,
    user_id: Optional[str],
    attendee: AttendeeInfo,
    selections: List[TicketSelection],
    payment_id: str,
    total_amount,
    order_id: Optional[str] = None,
    payment_status: str = "completed",
    added_manually: bool = False,
    guests: Optional[List[AttendeeInfo]] = None,
) -> BookingResult:
    """
    The first seat belongs to the purchaser. Further seats take the named
    ``guests`` in order; any seat left over is an anonymous companion seat
    (``is_guest``) under the purchaser's contact details.
    """
    selections = _merge(selections)
    if not selections:
        raise BusinessRuleError("At least one ticket must be selected", code="INVALID_SELECTION")

    total_tickets = sum(s.quantity for s in selections)
    max_tickets = int(current_app.config.get("MAX_TICKETS_PER_BOOKING", 50))
    if total_tickets > max_tickets:
        raise BusinessRuleError(
            f"Group bookings are limited to {max_tickets} tickets",
            code="BOOKING_TOO_LARGE",
            maxTickets=max_tickets,
        )
    if not payment_id:
        raise BusinessRuleError("payment id is required", code="INVALID_PAYMENT")

    def _body() -> BookingResult:
        if Booking.query.filter_by(payment_id=payment_id).first() is not None:
            raise BusinessRuleError(
                "Payment has already been processed", code="DUPLICATE_PAYMENT", status=409
            )

        parent = load_target(target)
        session = load_session(target, session_id)
        _check_bookable(parent, session, datetime.utcnow())

        resolved: List[Tuple[TicketSelection, TicketType]] = []
        for sel in selections:
            tt = session.ticket_type_named(sel.name)
            if tt is None:
                raise NotFoundError(
                    f'Ticket type "{sel.name}" not found in session',
                    code="TICKET_TYPE_NOT_FOUND",
                )
            if int(tt.available_capacity) < sel.quantity:
                raise InsufficientCapacityError(sel.name, tt.available_capacity, sel.quantity)
            resolved.append((sel, tt))

        booking = Booking(
            reference      = new_booking_reference(),
            session_id     = session.id,
            user_id        = user_id,
            name           = attendee.name,
            email          = attendee.email,
            phone          = attendee.phone,
            tickets        = {sel.name: sel.quantity for sel in selections},
            total_amount   = to_money(total_amount),
            payment_id     = payment_id,
            order_id       = order_id,
            payment_status = payment_status,
            status         = "confirmed",
            added_manually = bool(added_manually),
            **target.columns(),
        )
        db.session.add(booking)

        seat = 0
        for sel, _tt in resolved:
            for i in range(sel.quantity):
                holder, is_guest = _seat_holder(seat, attendee, guests)
                seat += 1
                booking.attendees.append(Attendee(
                    booking_reference        = booking.reference,
                    session_id               = session.id,
                    user_id                  = user_id if seat == 1 else None,
                    name                     = holder.name,
                    email                    = holder.email,
                    phone                    = holder.phone,
                    is_guest                 = is_guest,
                    event_title              = parent.title,
                    session_title            = session.title,
                    session_starts_at        = session.starts_at,
                    session_ends_at          = session.ends_at,
                    venue                    = session.venue or parent.venue,
                    ticket_type              = sel.name,
                    individual_amount        = sel.unit_price,
                    ticket_index             = i + 1,
                    total_tickets_in_booking = total_tickets,
                    checked_in               = False,
                    status                   = "confirmed",
                    **target.columns(),
                ))

        # version-checked: a concurrent decrement turns this flush stale
        for sel, tt in resolved:
            tt.available_capacity = int(tt.available_capacity) - sel.quantity

        db.session.flush()
        return BookingResult(
            booking_id        = booking.id,
            booking_reference = booking.reference,
            attendee_ids      = [a.id for a in booking.attendees],
            total_tickets     = total_tickets,
            session_id        = session.id,
        )

    try:
        result = run_in_transaction(_body, tag="booking")
    except IntegrityError:
        # lost the race against another request carrying the same payment id
        if Booking.query.filter_by(payment_id=payment_id).first() is not None:
            raise BusinessRuleError(
                "Payment has already been processed", code="DUPLICATE_PAYMENT", status=409
            )
        raise

    current_app.logger.info(
        "[booking] %s %s session=%s ref=%s seats=%d payment=%s",
        target.kind, target.id, result.session_id, result.booking_reference,
        result.total_tickets, payment_id,
    )
    return result


# ---------- cancellation ----------

def can_manage(parent, uid: Optional[str]) -> bool:
    """Owner or owning organization of an event/activity."""
    if not uid:
        return False
    return uid in {parent.owner_id, parent.organization_id}


def can_scan(parent, uid: Optional[str]) -> bool:
    if can_manage(parent, uid):
        return True
    return bool(uid) and uid in (parent.authorized_staff or [])


def cancel_tickets(ticket_ids: List[int], *, reason: str, cancelled_by: str) -> CancelResult:
    """
    Cancel individual seats (whole booking or part of a group). Seats go back
    to their ticket type in the same transaction, which keeps
    ``capacity - available_capacity`` equal to the non-cancelled tickets.
    """
    ids = sorted({int(i) for i in ticket_ids})
    if not ids:
        raise BusinessRuleError("No tickets given", code="INVALID_SELECTION")

    def _body() -> CancelResult:
        tickets = Ticket.query.filter(Ticket.id.in_(ids)).order_by(Ticket.id).all()
        if len(tickets) != len(ids):
            found = {t.id for t in tickets}
            missing = [i for i in ids if i not in found]
            raise NotFoundError(f"Ticket {missing[0]} not found", code="TICKET_NOT_FOUND")

        for t in tickets:
            if t.status != TicketStatus.ACTIVE:
                raise BusinessRuleError(
                    f"Ticket {t.ticket_number} is {t.status} and cannot be cancelled",
                    code="TICKET_NOT_CANCELLABLE",
                    status=409,
                )
            if cancelled_by != t.user_id and not can_manage(load_target(t.target), cancelled_by):
                raise AuthorizationError("Not allowed to cancel this ticket")

        now = datetime.utcnow()
        released: Dict[Tuple[str, str], int] = {}
        refund = Decimal("0")
        for t in tickets:
            t.status = TicketStatus.CANCELLED
            t.cancelled_at = now
            t.cancel_reason = (reason or "")[:200] or None
            t.append_history("cancelled", at=now, location="system", reason=reason, cancelledBy=cancelled_by)
            if t.attendee is not None:
                t.attendee.status = "cancelled"
            refund += to_money(t.amount)
            key = (t.session_id, t.ticket_type)
            released[key] = released.get(key, 0) + 1

        for (session_id, type_name), n in released.items():
            tt = TicketType.query.filter_by(session_id=session_id, name=type_name).first()
            if tt is not None:
                tt.available_capacity = min(int(tt.capacity), int(tt.available_capacity) + n)

        db.session.flush()
        return CancelResult(cancelled_ticket_ids=[t.id for t in tickets], refund_total=refund)

    result = run_in_transaction(_body, tag="cancel")
    current_app.logger.info(
        "[booking] cancelled tickets=%s by=%s refund=%s",
        result.cancelled_ticket_ids, cancelled_by, result.refund_total,
    )
    return result


# ---------- pricing / stats ----------

def calculate_amount(target: TicketTarget, session_id: str,
                     tickets: Union[Dict[str, int], int]) -> Tuple[Decimal, List[dict]]:
    """Server-side total from the catalogue, ignoring whatever the client claims."""
    parent = load_target(target)
    session = load_session(target, session_id)
    if not session.ticket_types:
        raise NotFoundError(f"No tickets found for session {session_id}", code="TICKET_TYPE_NOT_FOUND")

    total = Decimal("0")
    breakdown: List[dict] = []
    for sel in selections_from_map(tickets, session):
        tt = session.ticket_type_named(sel.name)
        if tt is None:
            available = ", ".join(t.name for t in session.ticket_types)
            raise NotFoundError(
                f"Invalid ticket type: {sel.name}. Available tickets: {available}",
                code="TICKET_TYPE_NOT_FOUND",
            )
        price = tt.unit_price
        if isinstance(parent, Activity) and not price:
            price = to_money(parent.price_per_slot)
        subtotal = to_money(price * sel.quantity)
        total += subtotal
        breakdown.append({
            "ticketType": sel.name,
            "quantity":   sel.quantity,
            "price":      float(price),
            "subtotal":   float(subtotal),
            "sessionId":  session.id,
        })
    return to_money(total), breakdown


def session_stats(session_id: str) -> dict:
    sess = db.session.get(Session, session_id)
    if not sess:
        raise NotFoundError(f"Session {session_id} not found", code="SESSION_NOT_FOUND")

    total_capacity = sum(int(t.capacity) for t in sess.ticket_types)
    available = sum(int(t.available_capacity) for t in sess.ticket_types)
    total_sold = total_capacity - available

    attendees = Attendee.query.filter_by(session_id=session_id, status="confirmed").count()
    checked_in = Attendee.query.filter_by(session_id=session_id, status="confirmed", checked_in=True).count()

    return {
        "sessionId":         sess.id,
        "title":             sess.title,
        "startsAt":          sess.starts_at.isoformat() if sess.starts_at else None,
        "endsAt":            sess.ends_at.isoformat() if sess.ends_at else None,
        "totalCapacity":     total_capacity,
        "totalSold":         total_sold,
        "availableCapacity": available,
        "attendees":         attendees,
        "checkedInCount":    checked_in,
        "utilizationRate":   (total_sold / total_capacity * 100) if total_capacity else 0,
        "checkInRate":       (checked_in / attendees * 100) if attendees else 0,
        "ticketTypes": [
            {"name": t.name, "price": float(t.price or 0), "capacity": int(t.capacity),
             "availableCapacity": int(t.available_capacity)}
            for t in sess.ticket_types
        ],
    }
