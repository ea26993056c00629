# models/event.py
from __future__ import annotations

import uuid
from decimal import Decimal

from sqlalchemy.sql import func

from db import db


def _new_id() -> str:
    return uuid.uuid4().hex[:20]


class Event(db.Model):
    __tablename__ = "events"

    id               = db.Column(db.String(64), primary_key=True, default=_new_id)
    title            = db.Column(db.String(200), nullable=False)
    venue            = db.Column(db.String(255), nullable=True)

    # "createdBy" in the client apps; the organizer's auth uid
    owner_id         = db.Column(db.String(128), nullable=False, index=True)
    organization_id  = db.Column(db.String(128), nullable=True, index=True)
    authorized_staff = db.Column(db.JSON, nullable=False, default=list)

    status           = db.Column(db.String(16), nullable=False, default="active", server_default="active")

    created_at       = db.Column(db.DateTime, server_default=func.now(), nullable=False)
    updated_at       = db.Column(db.DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    sessions = db.relationship(
        "Session",
        back_populates="event",
        order_by="Session.starts_at",
        cascade="all, delete-orphan",
    )

    @property
    def display_name(self) -> str:
        return self.title or "Event"


class Activity(db.Model):
    __tablename__ = "activities"

    id               = db.Column(db.String(64), primary_key=True, default=_new_id)
    name             = db.Column(db.String(200), nullable=False)
    location         = db.Column(db.String(255), nullable=True)

    owner_id         = db.Column(db.String(128), nullable=False, index=True)
    organization_id  = db.Column(db.String(128), nullable=True, index=True)
    authorized_staff = db.Column(db.JSON, nullable=False, default=list)

    price_per_slot   = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    closed_dates     = db.Column(db.JSON, nullable=False, default=list)   # ["YYYY-MM-DD", ...]

    status           = db.Column(db.String(16), nullable=False, default="active", server_default="active")

    created_at       = db.Column(db.DateTime, server_default=func.now(), nullable=False)
    updated_at       = db.Column(db.DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    sessions = db.relationship(
        "Session",
        back_populates="activity",
        order_by="Session.starts_at",
        cascade="all, delete-orphan",
    )

    # events and activities are read through the same attributes by the services
    @property
    def title(self) -> str:
        return self.name

    @property
    def venue(self) -> str | None:
        return self.location

    @property
    def display_name(self) -> str:
        return self.name or "Activity"


class Session(db.Model):
    """
    One scheduled occurrence of an event or activity. Owns its ticket-type
    inventory; exactly one of event_id / activity_id is set.
    """
    __tablename__ = "sessions"

    id          = db.Column(db.String(64), primary_key=True, default=_new_id)
    event_id    = db.Column(db.String(64), db.ForeignKey("events.id", ondelete="CASCADE"), nullable=True, index=True)
    activity_id = db.Column(db.String(64), db.ForeignKey("activities.id", ondelete="CASCADE"), nullable=True, index=True)

    title       = db.Column(db.String(200), nullable=True)
    starts_at   = db.Column(db.DateTime, nullable=False)
    ends_at     = db.Column(db.DateTime, nullable=True)
    venue       = db.Column(db.String(255), nullable=True)

    event    = db.relationship("Event", back_populates="sessions")
    activity = db.relationship("Activity", back_populates="sessions")

    ticket_types = db.relationship(
        "TicketType",
        back_populates="session",
        order_by="TicketType.id",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        db.CheckConstraint(
            "(event_id IS NULL) <> (activity_id IS NULL)",
            name="ck_sessions_single_parent",
        ),
    )

    @property
    def parent(self):
        return self.event if self.event_id else self.activity

    def ticket_type_named(self, name: str) -> "TicketType | None":
        for tt in self.ticket_types:
            if tt.name == name:
                return tt
        return None


class TicketType(db.Model):
    """
    Per-session price tier. available_capacity is the live counter; every
    write is conditioned on `version` so concurrent decrements cannot both win.
    """
    __tablename__ = "ticket_types"

    id                 = db.Column(db.Integer, primary_key=True, autoincrement=True)
    session_id         = db.Column(db.String(64), db.ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    name               = db.Column(db.String(80), nullable=False)
    price              = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    capacity           = db.Column(db.Integer, nullable=False)
    available_capacity = db.Column(db.Integer, nullable=False)
    version            = db.Column(db.Integer, nullable=False, default=1)

    session = db.relationship("Session", back_populates="ticket_types")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        db.UniqueConstraint("session_id", "name", name="uq_ticket_types_session_name"),
        db.CheckConstraint("available_capacity >= 0", name="ck_ticket_types_available_non_negative"),
        db.CheckConstraint("available_capacity <= capacity", name="ck_ticket_types_available_lte_capacity"),
    )

    @property
    def sold(self) -> int:
        return int(self.capacity) - int(self.available_capacity)

    @property
    def unit_price(self) -> Decimal:
        return Decimal(str(self.price or 0))
