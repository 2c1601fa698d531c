# utils/stripe_client.py
# Thin Stripe REST client: Checkout Session creation + webhook signature checks.

import hmac
import json
import time
import hashlib
import logging
from typing import Any, Dict

import requests
from flask import current_app

from .error_handler import ProviderError, ServiceUnavailable, ValidationError

log = logging.getLogger(__name__)


def _flatten(prefix: str, value, out: Dict[str, Any]):
    """Encode nested dicts/lists the way Stripe's form API expects (a[b][0][c]=...)."""
    if isinstance(value, dict):
        for k, v in value.items():
            _flatten(f"{prefix}[{k}]" if prefix else k, v, out)
    elif isinstance(value, (list, tuple)):
        for i, v in enumerate(value):
            _flatten(f"{prefix}[{i}]", v, out)
    elif value is not None:
        out[prefix] = value
    return out


def create_checkout_session(params: Dict[str, Any]) -> Dict[str, Any]:
    """POST /checkout/sessions and return the session object."""
    cfg = current_app.config
    secret = cfg.get("STRIPE_SECRET_KEY")
    if not secret:
        raise ServiceUnavailable("Payments are not configured")

    url = f"{cfg['STRIPE_API_BASE']}/checkout/sessions"
    try:
        r = requests.post(
            url,
            data=_flatten("", params, {}),
            auth=(secret, ""),
            timeout=cfg["REQUEST_TIMEOUT"],
        )
    except requests.exceptions.RequestException as e:
        log.error(f"❌ Stripe request failed: {e}")
        raise ProviderError("Failed to create checkout session")

    if r.status_code >= 400:
        log.error(f"❌ Stripe API error {r.status_code}: {r.text[:300]}")
        raise ProviderError("Failed to create checkout session")
    session = r.json()
    log.info(f"✅ Stripe checkout session {session.get('id')} created")
    return session


def construct_event(payload: bytes, sig_header: str) -> Dict[str, Any]:
    """
    Verify a webhook payload against the Stripe-Signature header and return the event.
    Signature = HMAC-SHA256(secret, f"{t}.{payload}"); any v1 entry may match.
    """
    cfg = current_app.config
    secret = cfg.get("STRIPE_WEBHOOK_SECRET")
    if not secret:
        raise ServiceUnavailable("Webhook secret not configured")
    if not sig_header:
        raise ValidationError("No signature provided")

    timestamp, signatures = None, []
    for part in sig_header.split(","):
        key, _, val = part.strip().partition("=")
        if key == "t":
            timestamp = val
        elif key == "v1":
            signatures.append(val)
    if not timestamp or not signatures:
        raise ValidationError("Webhook Error: malformed signature header")

    signed = f"{timestamp}.".encode() + payload
    expected = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    if not any(hmac.compare_digest(expected, s) for s in signatures):
        raise ValidationError("Webhook Error: signature verification failed")

    try:
        age = abs(time.time() - int(timestamp))
    except ValueError:
        raise ValidationError("Webhook Error: bad timestamp")
    if age > cfg["STRIPE_WEBHOOK_TOLERANCE"]:
        raise ValidationError("Webhook Error: timestamp outside tolerance")

    try:
        return json.loads(payload.decode("utf-8"))
    except ValueError:
        raise ValidationError("Webhook Error: invalid payload")


def sign_payload(payload: bytes, secret: str, timestamp: int | None = None) -> str:
    """Build a Stripe-Signature header value (used by tests and local replay tools)."""
    ts = int(timestamp if timestamp is not None else time.time())
    sig = hmac.new(secret.encode(), f"{ts}.".encode() + payload, hashlib.sha256).hexdigest()
    return f"t={ts},v1={sig}"
