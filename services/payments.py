# services/payments.py
from __future__ import annotations

import hashlib
import hmac
import secrets
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

import requests
from flask import current_app

from services.errors import BusinessRuleError, PaymentGatewayError


def _credentials():
    key_id = current_app.config.get("RAZORPAY_KEY_ID")
    key_secret = current_app.config.get("RAZORPAY_KEY_SECRET")
    if not key_id or not key_secret:
        current_app.logger.error("[payment] Razorpay credentials are not configured")
        raise PaymentGatewayError("Payment gateway is not configured", code="PAYMENT_NOT_CONFIGURED", status=503)
    return key_id, key_secret


def new_receipt() -> str:
    return f"ZST_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


def validate_order_request(amount, currency: str = "INR", notes=None) -> Decimal:
    ceiling = int(current_app.config.get("PAYMENT_MAX_AMOUNT", 1_000_000))
    if isinstance(amount, bool) or not isinstance(amount, (int, float, Decimal)):
        raise BusinessRuleError(f"Invalid amount. Must be a positive number less than ₹{ceiling:,}", code="INVALID_AMOUNT")
    try:
        value = Decimal(str(amount))
    except InvalidOperation:
        raise BusinessRuleError(f"Invalid amount. Must be a positive number less than ₹{ceiling:,}", code="INVALID_AMOUNT")
    if not value.is_finite() or value <= 0 or value > ceiling:
        raise BusinessRuleError(f"Invalid amount. Must be a positive number less than ₹{ceiling:,}", code="INVALID_AMOUNT")

    if currency != current_app.config.get("PAYMENT_CURRENCY", "INR"):
        raise BusinessRuleError("Only INR currency is supported", code="INVALID_CURRENCY")
    if notes is not None and not isinstance(notes, dict):
        raise BusinessRuleError("Notes must be an object", code="INVALID_NOTES")
    return value


def create_order(amount, currency: str = "INR", receipt: Optional[str] = None,
                 notes: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Create a Razorpay order; the gateway wants the amount in paise."""
    value = validate_order_request(amount, currency, notes)
    key_id, key_secret = _credentials()

    body = {
        "amount":   int((value * 100).to_integral_value()),
        "currency": currency,
        "receipt":  receipt or new_receipt(),
        "notes":    notes or {},
    }
    url = current_app.config.get("RAZORPAY_API_URL", "https://api.razorpay.com/v1").rstrip("/") + "/orders"
    timeout = float(current_app.config.get("PAYMENT_TIMEOUT_S", 5.0))

    t0 = time.perf_counter()
    try:
        r = requests.post(url, json=body, auth=(key_id, key_secret), timeout=(timeout, timeout))
    except requests.RequestException as e:
        current_app.logger.warning("[payment] create-order failed: %s", e)
        raise PaymentGatewayError("Failed to create payment order")

    dt_ms = int((time.perf_counter() - t0) * 1000)
    current_app.logger.info(
        "[payment] POST /orders status=%s in=%dms receipt=%s", r.status_code, dt_ms, body["receipt"],
    )
    if r.status_code >= 300:
        txt = r.text[:500] if isinstance(r.text, str) else str(r.text)
        current_app.logger.error("[payment] Razorpay error %s – %s", r.status_code, txt)
        raise PaymentGatewayError("Failed to create payment order")

    try:
        order = r.json()
    except ValueError:
        current_app.logger.warning("[payment] non-JSON response from Razorpay")
        raise PaymentGatewayError("Failed to create payment order")

    return {
        "id":       order.get("id"),
        "amount":   order.get("amount", body["amount"]),
        "currency": order.get("currency", currency),
        "receipt":  order.get("receipt", body["receipt"]),
        "status":   order.get("status"),
    }


def expected_signature(order_id: str, payment_id: str) -> str:
    _, key_secret = _credentials()
    payload = f"{order_id}|{payment_id}".encode("utf-8")
    return hmac.new(key_secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_signature(order_id: str, payment_id: str, signature: str) -> bool:
    if not (order_id and payment_id and signature):
        return False
    return hmac.compare_digest(expected_signature(order_id, payment_id), str(signature))
