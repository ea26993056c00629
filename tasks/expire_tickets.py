from datetime import datetime

from flask import current_app

from db import db
from models.ticket import Ticket, TicketStatus
from services.ticket_validator import expiry_reason


def expire_tickets_for_past_events(now=None):
    """
    Persist the expiry the validator already computes on read: every active
    ticket whose session (plus grace) is over, or whose event was cancelled,
    moves to `expired`. Returns {"updated": n, "errors": n}.
    """
    now = now or datetime.utcnow()
    updated = 0
    errors = 0

    tickets = Ticket.query.filter(Ticket.status == TicketStatus.ACTIVE).order_by(Ticket.id).all()
    for t in tickets:
        try:
            reason = expiry_reason(t, now)
            if not reason:
                continue
            t.status = TicketStatus.EXPIRED
            t.expired_at = now
            t.expired_reason = reason
            t.append_history("expired", at=now, location="system", reason=reason, triggeredBy="batch_expiration")
            updated += 1
        except Exception:
            errors += 1
            current_app.logger.exception("[sweep] could not evaluate ticket %s", t.ticket_number)

    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("[sweep] commit failed; %d tickets left unchanged", updated)
        return {"updated": 0, "errors": errors + updated}

    current_app.logger.info("[sweep] expired %d tickets (%d errors)", updated, errors)
    return {"updated": updated, "errors": errors}
