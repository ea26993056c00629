# tests/conftest.py
# ----------------------------------------------------------------------------------------------------
# Shared fixtures: an app on in-memory sqlite (TestingConfig), a test client, Firebase token
# verification replaced by "the bearer token *is* the uid", and factories for events, sessions,
# ticket types and paid bookings with their tickets.
# ----------------------------------------------------------------------------------------------------
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

import auth_guard
from app import create_app
from config import TestingConfig
from db import db
from models.event import Activity, Event, Session, TicketType
from models.ticket import Ticket, TicketTarget
from services.booking import AttendeeInfo, TicketSelection, create_booking
from services.ticket_generator import create_tickets_for_booking

OWNER = "owner-uid"
STAFF = "staff-uid"
BUYER = "buyer-uid"


@pytest.fixture
def app():
    app = create_app(TestingConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture(autouse=True)
def fake_firebase(monkeypatch):
    """Bearer tokens are taken verbatim as the Firebase uid."""
    def _verify(token):
        if token == "expired":
            raise ValueError("expired")
        return {"uid": token, "email": f"{token}@example.com"}

    monkeypatch.setattr(auth_guard, "verify_bearer", _verify)


def bearer(uid):
    return {"Authorization": f"Bearer {uid}"}


@pytest.fixture
def make_event(app):
    """
    make_event(types={"General": (price, capacity)}, starts_in=timedelta, hours=3)
    -> (event, session). Default session starts in 1h, so entry is already open.
    """
    def _make(types=None, starts_in=timedelta(hours=1), hours=3, owner=OWNER, staff=(STAFF,), title="Sunburn Arena"):
        types = types or {"General": (Decimal("500.00"), 5)}
        start = datetime.utcnow().replace(microsecond=0) + starts_in
        event = Event(title=title, venue="Jio Garden", owner_id=owner, authorized_staff=list(staff))
        sess = Session(title="Evening", starts_at=start, ends_at=start + timedelta(hours=hours), venue="Hall A")
        for name, (price, capacity) in types.items():
            sess.ticket_types.append(
                TicketType(name=name, price=Decimal(str(price)), capacity=capacity, available_capacity=capacity)
            )
        event.sessions.append(sess)
        db.session.add(event)
        db.session.commit()
        return event, sess

    return _make


@pytest.fixture
def make_activity(app):
    def _make(capacity=4, price_per_slot=Decimal("300.00"), starts_in=timedelta(hours=1)):
        start = datetime.utcnow().replace(microsecond=0) + starts_in
        act = Activity(name="Pottery Workshop", location="Studio 9", owner_id=OWNER, price_per_slot=price_per_slot)
        sess = Session(title="Morning slot", starts_at=start, ends_at=start + timedelta(hours=2))
        sess.ticket_types.append(TicketType(name="Slot", price=Decimal("0"), capacity=capacity, available_capacity=capacity))
        act.sessions.append(sess)
        db.session.add(act)
        db.session.commit()
        return act, sess

    return _make


@pytest.fixture
def book(app):
    """book(event, session, {"General": 2}) -> (BookingResult, [Ticket, ...])"""
    counter = {"n": 0}

    def _book(parent, sess, quantities, total=None, user_id=BUYER, guests=None, email="asha@example.com"):
        counter["n"] += 1
        target = TicketTarget.event(parent.id) if isinstance(parent, Event) else TicketTarget.activity(parent.id)
        selections = []
        computed = Decimal("0")
        for name, qty in quantities.items():
            price = sess.ticket_type_named(name).unit_price
            selections.append(TicketSelection(name, qty, price))
            computed += price * qty
        result = create_booking(
            target, sess.id,
            user_id=user_id,
            attendee=AttendeeInfo("Asha Rao", email, "9876543210"),
            selections=selections,
            payment_id=f"pay_test_{counter['n']}",
            total_amount=computed if total is None else total,
            guests=guests,
        )
        ids = create_tickets_for_booking(result.booking_id)
        tickets = Ticket.query.filter(Ticket.id.in_(ids)).order_by(Ticket.id).all()
        return result, tickets

    return _book


def reload(obj):
    db.session.expire_all()
    return db.session.get(type(obj), obj.id)
