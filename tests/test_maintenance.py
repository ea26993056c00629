# tests/test_maintenance.py
from datetime import datetime, timedelta

from conftest import reload
from db import db
from models.ticket import Ticket, TicketStatus
from tasks.expire_tickets import expire_tickets_for_past_events

TOKEN = {"Authorization": "Bearer maint-test-token"}


def _age(ticket, hours_ago_end):
    t = db.session.get(Ticket, ticket.id)
    t.ends_at = datetime.utcnow() - timedelta(hours=hours_ago_end)
    t.starts_at = t.ends_at - timedelta(hours=2)
    db.session.commit()


def test_sweep_persists_expiry(make_event, book):
    event, sess = make_event()
    _, (old, fresh) = book(event, sess, {"General": 2})
    _age(old, hours_ago_end=5)

    result = expire_tickets_for_past_events()

    assert result == {"updated": 1, "errors": 0}
    old = reload(old)
    assert old.status == TicketStatus.EXPIRED
    assert old.expired_reason == "session_time_passed"
    assert old.validation_history[-1]["action"] == "expired"
    assert old.validation_history[-1]["triggeredBy"] == "batch_expiration"
    assert reload(fresh).status == TicketStatus.ACTIVE


def test_sweep_leaves_used_tickets_alone(make_event, book):
    event, sess = make_event()
    _, (t,) = book(event, sess, {"General": 1})
    t = db.session.get(Ticket, t.id)
    t.status = TicketStatus.USED
    db.session.commit()
    _age(t, hours_ago_end=5)

    assert expire_tickets_for_past_events()["updated"] == 0
    assert reload(t).status == TicketStatus.USED


def test_endpoint_requires_token(client, app):
    assert client.post("/maintenance/expire-tickets").status_code == 401
    assert client.post("/maintenance/expire-tickets", headers={"Authorization": "Bearer nope"}).status_code == 401

    app.config["MAINTENANCE_API_TOKEN"] = None
    assert client.post("/maintenance/expire-tickets", headers=TOKEN).status_code == 503


def test_endpoint_runs_sweep(client, make_event, book):
    event, sess = make_event()
    _, (t,) = book(event, sess, {"General": 1})
    _age(t, hours_ago_end=5)

    r = client.post("/maintenance/expire-tickets", headers=TOKEN)

    assert r.status_code == 200
    assert r.get_json()["updated"] == 1
    assert client.get("/maintenance/expire-tickets", headers=TOKEN).get_json()["status"] == "ok"


def test_cli_command(app, make_event, book):
    event, sess = make_event()
    _, (t,) = book(event, sess, {"General": 1})
    _age(t, hours_ago_end=5)

    out = app.test_cli_runner().invoke(args=["expire-tickets"])

    assert "Expired 1 tickets" in out.output
    assert reload(t).status == TicketStatus.EXPIRED
