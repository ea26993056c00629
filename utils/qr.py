# utils/qr.py
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Optional

from flask import current_app
from itsdangerous import BadSignature, URLSafeSerializer

SALT_TICKET_QR = "ticket-qr-v1"


def _serializer() -> URLSafeSerializer:
    return URLSafeSerializer(current_app.config["QR_SECRET"], salt=SALT_TICKET_QR)


def _iso_z(dt):
    dt = dt.astimezone(timezone.utc) if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")


def build_qr_payload(ticket, *, issued_at: Optional[datetime] = None) -> str:
    """
    Signed, URL-safe payload printed into the ticket QR. Holds the ticket id,
    its number, the platform marker and when it was generated.
    """
    payload = {
        "version": 1,
        "type": "ticket",
        "id": int(ticket.id),
        "ticketNumber": ticket.ticket_number,
        "platform": current_app.config.get("QR_PLATFORM_MARKER", "ZEST"),
        "issuedAt": _iso_z(issued_at or datetime.utcnow()),
    }
    return _serializer().dumps(json.dumps(payload, separators=(",", ":")))


def read_qr_payload(token: str) -> dict:
    """Return the decoded payload, or raise ValueError for anything we did not sign."""
    tok = (token or "").strip()
    if not tok:
        raise ValueError("missing qr payload")
    try:
        data = json.loads(_serializer().loads(tok))
    except (BadSignature, ValueError, TypeError):
        raise ValueError("invalid qr payload")
    if data.get("type") != "ticket" or not data.get("ticketNumber"):
        raise ValueError("invalid qr payload")
    if data.get("platform") != current_app.config.get("QR_PLATFORM_MARKER", "ZEST"):
        raise ValueError("qr payload from another platform")
    return data
