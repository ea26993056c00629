# tests/test_routes_bookings.py
from conftest import BUYER, OWNER, STAFF, bearer, reload
from models.ticket import Ticket, TicketStatus


def _payload(event, sess, **over):
    body = {
        "eventId": event.id,
        "sessionId": sess.id,
        "userId": BUYER,
        "userInfo": {"name": "Asha Rao", "email": "asha@example.com", "phone": "9876543210"},
        "selectedTickets": {"General": 2},
        "totalAmount": 1000,
    }
    body.update(over)
    return body


def test_booking_requires_a_token(client, make_event):
    event, sess = make_event()
    r = client.post("/bookings", json=_payload(event, sess))
    assert r.status_code == 401

    r = client.post("/bookings", json=_payload(event, sess), headers=bearer("expired"))
    assert r.status_code == 401


def test_booking_creates_seats_and_tickets(client, make_event):
    event, sess = make_event()

    r = client.post("/bookings", json=_payload(event, sess), headers=bearer(BUYER))

    assert r.status_code == 201
    data = r.get_json()["data"]
    assert data["totalTickets"] == 2
    assert data["sessionId"] == sess.id
    assert len(data["attendeeIds"]) == 2
    assert len(data["ticketIds"]) == 2
    assert reload(sess.ticket_types[0]).available_capacity == 3


def test_booking_for_someone_else_is_refused(client, make_event):
    event, sess = make_event()
    r = client.post("/bookings", json=_payload(event, sess), headers=bearer("intruder"))
    assert r.status_code == 403


def test_booking_validation_and_capacity_errors(client, make_event):
    event, sess = make_event(types={"General": ("500", 1)})

    r = client.post("/bookings", json=_payload(event, sess, userInfo={"name": "A"}), headers=bearer(BUYER))
    assert r.status_code == 400

    r = client.post("/bookings", json=_payload(event, sess, selectedTickets={}), headers=bearer(BUYER))
    assert r.status_code == 400

    r = client.post("/bookings", json=_payload(event, sess), headers=bearer(BUYER))
    assert r.status_code == 409
    body = r.get_json()
    assert body["code"] == "INSUFFICIENT_CAPACITY"
    assert body["available"] == 1

    r = client.post("/bookings", json=_payload(event, sess, sessionId="nope"), headers=bearer(BUYER))
    assert r.status_code == 404
    assert r.get_json()["code"] == "SESSION_NOT_FOUND"


def test_ticket_quantities_must_be_whole_numbers(client, make_event):
    event, sess = make_event()

    for bad in (1.5, "two", "1.5", True):
        r = client.post("/bookings", json=_payload(event, sess, selectedTickets={"General": bad}), headers=bearer(BUYER))
        assert r.status_code == 400
        assert r.get_json()["code"] == "INVALID_SELECTION"
    assert reload(sess.ticket_types[0]).available_capacity == 5

    r = client.post("/bookings", json=_payload(event, sess, selectedTickets={"General": "2"}), headers=bearer(BUYER))
    assert r.status_code == 201
    assert r.get_json()["data"]["totalTickets"] == 2
    assert reload(sess.ticket_types[0]).available_capacity == 3


def test_my_tickets_and_cancel(client, make_event, book):
    event, sess = make_event()
    _, tickets = book(event, sess, {"General": 2})

    r = client.get("/tickets", headers=bearer(BUYER))
    assert r.status_code == 200
    assert r.get_json()["count"] == 2
    assert r.get_json()["tickets"][0]["display"]["canUse"] is True

    r = client.post("/tickets/cancel", json={"ticketIds": [tickets[0].id]}, headers=bearer("intruder"))
    assert r.status_code == 403

    r = client.post("/tickets/cancel", json={"ticketIds": [tickets[0].id], "reason": "sick"}, headers=bearer(BUYER))
    assert r.status_code == 200
    assert r.get_json()["cancelledTicketIds"] == [tickets[0].id]
    assert reload(sess.ticket_types[0]).available_capacity == 4

    r = client.get("/tickets?status=active", headers=bearer(BUYER))
    assert r.get_json()["count"] == 1


def test_session_stats_for_staff_only(client, make_event, book):
    event, sess = make_event()
    book(event, sess, {"General": 1})

    assert client.get(f"/bookings/sessions/{sess.id}/stats", headers=bearer(BUYER)).status_code == 403
    r = client.get(f"/bookings/sessions/{sess.id}/stats", headers=bearer(STAFF))
    assert r.status_code == 200
    assert r.get_json()["stats"]["totalSold"] == 1


def test_manual_attendees(client, make_event):
    event, sess = make_event(types={"General": ("250", 5)})
    body = {"name": "Meera", "email": "meera@example.com", "phone": "9000000000", "ticketType": "General", "quantity": 2}

    r = client.post(f"/events/{event.id}/attendees/manual", json=body, headers=bearer(STAFF))
    assert r.status_code == 403

    r = client.post(f"/events/{event.id}/attendees/manual", json={**body, "quantity": 51}, headers=bearer(OWNER))
    assert r.status_code == 400

    r = client.post(f"/events/{event.id}/attendees/manual", json=body, headers=bearer(OWNER))
    assert r.status_code == 201
    data = r.get_json()
    assert data["attendee"]["totalAmount"] == 500.0
    assert len(data["ticketIds"]) == 2

    tickets = Ticket.query.filter(Ticket.id.in_(data["ticketIds"])).all()
    assert all(t.added_manually and t.payment_id.startswith("manual_") for t in tickets)
    assert all(t.status == TicketStatus.ACTIVE for t in tickets)
    assert reload(sess.ticket_types[0]).available_capacity == 3
