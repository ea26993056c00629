# models/entry_log.py
from db import db
from sqlalchemy.sql import func


class EntryLog(db.Model):
    __tablename__ = "entry_logs"

    id               = db.Column(db.Integer, primary_key=True, autoincrement=True)
    ticket_id        = db.Column(db.Integer, nullable=True, index=True)
    ticket_number    = db.Column(db.String(64), nullable=False, index=True)
    event_id         = db.Column(db.String(64), nullable=False, index=True)
    target_kind      = db.Column(db.String(16), nullable=True)

    scanner_id       = db.Column(db.String(128), nullable=False)
    scanner_type     = db.Column(db.String(32), nullable=True)
    scanner_location = db.Column(db.String(120), nullable=True)

    attendee_name    = db.Column(db.String(120), nullable=True)
    attendee_id      = db.Column(db.String(128), nullable=True)
    security_flags   = db.Column(db.JSON, nullable=False, default=list)

    created_at       = db.Column(db.DateTime, server_default=func.now(), nullable=False, index=True)
