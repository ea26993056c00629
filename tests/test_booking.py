# tests/test_booking.py
from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import BUYER, OWNER, reload
from db import db
from models.booking import Attendee, Booking
from models.event import TicketType
from models.ticket import Ticket, TicketStatus, TicketTarget
from services.booking import (
    AttendeeInfo,
    TicketSelection,
    calculate_amount,
    cancel_tickets,
    create_booking,
    session_stats,
)
from services.errors import AuthorizationError, BusinessRuleError, InsufficientCapacityError, NotFoundError
from services.ticket_validator import mark_ticket_used

BUYER_INFO = AttendeeInfo("Asha Rao", "asha@example.com", "9876543210")


def _book(event, sess, selections, payment_id="pay_1", **kw):
    return create_booking(
        TicketTarget.event(event.id), sess.id,
        user_id=BUYER,
        attendee=BUYER_INFO,
        selections=selections,
        payment_id=payment_id,
        total_amount=kw.pop("total_amount", Decimal("1000")),
        **kw,
    )


def test_booking_decrements_capacity_and_creates_attendees(make_event):
    event, sess = make_event()

    result = _book(event, sess, [TicketSelection("General", 2, Decimal("500"))])

    assert result.total_tickets == 2
    assert result.session_id == sess.id
    assert len(result.attendee_ids) == 2
    assert reload(sess.ticket_types[0]).available_capacity == 3

    booking = db.session.get(Booking, result.booking_id)
    assert booking.reference == result.booking_reference
    assert booking.tickets == {"General": 2}
    seats = Attendee.query.filter_by(booking_id=booking.id).order_by(Attendee.id).all()
    assert [a.booking_reference for a in seats] == [booking.reference] * 2
    assert seats[0].user_id == BUYER and not seats[0].is_guest
    assert seats[1].user_id is None and seats[1].is_guest
    assert seats[0].event_title == "Sunburn Arena"
    assert all(a.total_tickets_in_booking == 2 for a in seats)


def test_named_guests_get_their_own_seats(make_event):
    event, sess = make_event()
    guest = AttendeeInfo("Ravi Menon", "ravi@example.com", None)

    result = _book(event, sess, [TicketSelection("General", 2, Decimal("500"))], guests=[guest])

    seats = Attendee.query.filter(Attendee.id.in_(result.attendee_ids)).order_by(Attendee.id).all()
    assert seats[1].email == "ravi@example.com"
    assert not seats[1].is_guest


def test_insufficient_capacity_reports_what_is_left(make_event):
    event, sess = make_event(types={"General": ("500", 2)})

    with pytest.raises(InsufficientCapacityError) as exc:
        _book(event, sess, [TicketSelection("General", 3)])

    assert exc.value.available == 2
    assert exc.value.status == 409
    assert reload(sess.ticket_types[0]).available_capacity == 2
    assert Booking.query.count() == 0


def test_booking_is_all_or_nothing_across_ticket_types(make_event):
    event, sess = make_event(types={"General": ("500", 5), "VIP": ("2000", 1)})

    with pytest.raises(InsufficientCapacityError):
        _book(event, sess, [TicketSelection("General", 2), TicketSelection("VIP", 2)])

    db.session.expire_all()
    levels = {t.name: t.available_capacity for t in TicketType.query.filter_by(session_id=sess.id)}
    assert levels == {"General": 5, "VIP": 1}
    assert Attendee.query.count() == 0


def test_unknown_session_and_ticket_type(make_event):
    event, sess = make_event()

    with pytest.raises(NotFoundError) as exc:
        create_booking(
            TicketTarget.event(event.id), "no-such-session",
            user_id=BUYER, attendee=BUYER_INFO,
            selections=[TicketSelection("General", 1)], payment_id="pay_x", total_amount=500,
        )
    assert exc.value.code == "SESSION_NOT_FOUND"

    with pytest.raises(NotFoundError) as exc:
        _book(event, sess, [TicketSelection("Backstage", 1)])
    assert exc.value.code == "TICKET_TYPE_NOT_FOUND"

    with pytest.raises(NotFoundError) as exc:
        create_booking(
            TicketTarget.event("missing"), sess.id,
            user_id=BUYER, attendee=BUYER_INFO,
            selections=[TicketSelection("General", 1)], payment_id="pay_y", total_amount=500,
        )
    assert exc.value.code == "EVENT_NOT_FOUND"


def test_group_size_is_capped(make_event, app):
    app.config["MAX_TICKETS_PER_BOOKING"] = 3
    event, sess = make_event(types={"General": ("100", 10)})

    with pytest.raises(BusinessRuleError) as exc:
        _book(event, sess, [TicketSelection("General", 4)])

    assert exc.value.code == "BOOKING_TOO_LARGE"
    assert reload(sess.ticket_types[0]).available_capacity == 10


def test_duplicate_payment_is_rejected(make_event):
    event, sess = make_event()
    _book(event, sess, [TicketSelection("General", 1)], payment_id="pay_same")

    with pytest.raises(BusinessRuleError) as exc:
        _book(event, sess, [TicketSelection("General", 1)], payment_id="pay_same")

    assert exc.value.code == "DUPLICATE_PAYMENT"
    assert exc.value.status == 409
    assert reload(sess.ticket_types[0]).available_capacity == 4


def test_cannot_book_a_finished_session(make_event):
    event, sess = make_event(starts_in=-timedelta(hours=6), hours=2)

    with pytest.raises(BusinessRuleError) as exc:
        _book(event, sess, [TicketSelection("General", 1)])

    assert exc.value.code == "SESSION_ENDED"


def test_capacity_is_never_oversold(make_event):
    event, sess = make_event(types={"General": ("500", 3)})
    accepted = 0
    for i in range(6):
        try:
            _book(event, sess, [TicketSelection("General", 1)], payment_id=f"pay_{i}")
            accepted += 1
        except InsufficientCapacityError:
            pass

    tt = reload(sess.ticket_types[0])
    assert accepted == 3
    assert tt.available_capacity == 0
    assert tt.capacity - tt.available_capacity == Attendee.query.filter_by(status="confirmed").count()


def test_activities_book_through_the_same_transaction(make_activity):
    act, sess = make_activity(capacity=2)

    result = create_booking(
        TicketTarget.activity(act.id), sess.id,
        user_id=BUYER, attendee=BUYER_INFO,
        selections=[TicketSelection("Slot", 2, Decimal("300"))],
        payment_id="pay_act", total_amount=600,
    )

    assert result.total_tickets == 2
    assert reload(sess.ticket_types[0]).available_capacity == 0
    with pytest.raises(InsufficientCapacityError):
        create_booking(
            TicketTarget.activity(act.id), sess.id,
            user_id=BUYER, attendee=BUYER_INFO,
            selections=[TicketSelection("Slot", 1)], payment_id="pay_act_2", total_amount=300,
        )


def test_cancel_restores_capacity(make_event, book):
    event, sess = make_event()
    _, tickets = book(event, sess, {"General": 3})
    assert reload(sess.ticket_types[0]).available_capacity == 2

    result = cancel_tickets([tickets[0].id, tickets[1].id], reason="plans changed", cancelled_by=BUYER)

    assert result.cancelled_ticket_ids == [tickets[0].id, tickets[1].id]
    assert result.refund_total == Decimal("1000.00")
    tt = reload(sess.ticket_types[0])
    assert tt.available_capacity == 4
    live = Ticket.query.filter(Ticket.status.in_([TicketStatus.ACTIVE, TicketStatus.USED])).count()
    assert tt.capacity - tt.available_capacity == live
    first = reload(tickets[0])
    assert first.status == TicketStatus.CANCELLED
    assert first.validation_history[-1]["action"] == "cancelled"
    assert first.attendee.status == "cancelled"


def test_used_tickets_cannot_be_cancelled(make_event, book):
    event, sess = make_event()
    _, (ticket,) = book(event, sess, {"General": 1})
    assert mark_ticket_used(ticket.ticket_number, OWNER, "Gate 1")

    with pytest.raises(BusinessRuleError) as exc:
        cancel_tickets([ticket.id], reason="", cancelled_by=BUYER)

    assert exc.value.code == "TICKET_NOT_CANCELLABLE"
    assert reload(sess.ticket_types[0]).available_capacity == 4


def test_strangers_cannot_cancel(make_event, book):
    event, sess = make_event()
    _, (ticket,) = book(event, sess, {"General": 1})

    with pytest.raises(AuthorizationError):
        cancel_tickets([ticket.id], reason="", cancelled_by="someone-else")

    # the organizer can
    cancel_tickets([ticket.id], reason="refund", cancelled_by=OWNER)
    assert reload(ticket).status == TicketStatus.CANCELLED


def test_calculate_amount_uses_catalogue_prices(make_event, make_activity):
    event, sess = make_event(types={"General": ("499.50", 5), "VIP": ("1500", 2)})
    total, breakdown = calculate_amount(TicketTarget.event(event.id), sess.id, {"General": 2, "VIP": 1})
    assert total == Decimal("2499.00")
    assert [b["ticketType"] for b in breakdown] == ["General", "VIP"]

    act, asess = make_activity(price_per_slot=Decimal("300"))
    total, _ = calculate_amount(TicketTarget.activity(act.id), asess.id, 3)
    assert total == Decimal("900.00")

    with pytest.raises(NotFoundError):
        calculate_amount(TicketTarget.event(event.id), sess.id, {"Backstage": 1})


def test_session_stats(make_event, book):
    event, sess = make_event(types={"General": ("500", 4)})
    _, tickets = book(event, sess, {"General": 2})
    mark_ticket_used(tickets[0].ticket_number, OWNER)

    stats = session_stats(sess.id)

    assert stats["totalCapacity"] == 4
    assert stats["totalSold"] == 2
    assert stats["availableCapacity"] == 2
    assert stats["attendees"] == 2
    assert stats["checkedInCount"] == 1
    assert stats["utilizationRate"] == 50
    assert stats["checkInRate"] == 50
