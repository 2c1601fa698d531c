"""
stripe_router.py
────────────────────────────────────────────
Lesson-pack checkout through Stripe.

Endpoints:
 • POST /stripe/create-checkout-session  (dancer)
 • POST /stripe/webhook                  (public, signature-verified)

A completed checkout becomes a lesson-pack purchase; replays of
the same session id resolve to the existing purchase.
────────────────────────────────────────────
"""

import logging
from flask import Blueprint, current_app, jsonify, request

from . import lesson_packs
from .auth import current_student, public, requires
from .utils import json_body, str_or_none
from .utils import stripe_client
from .utils.error_handler import NotFound, ValidationError

bp = Blueprint("stripe_bp", __name__)
log = logging.getLogger(__name__)


@bp.route("/create-checkout-session", methods=["POST"])
@requires("dancer")
def create_checkout_session():
    data = json_body()
    pack_id = str_or_none(data.get("lesson_pack_id"))
    instructor_id = str_or_none(data.get("instructor_id"))
    if not pack_id or not instructor_id:
        raise ValidationError("lesson_pack_id and instructor_id are required")

    pack = lesson_packs.get_pack(pack_id)
    if not pack or not pack["is_active"]:
        raise NotFound("Lesson pack not found")
    student = current_student()

    base_url = current_app.config["PUBLIC_BASE_URL"]
    session = stripe_client.create_checkout_session({
        "mode": "payment",
        "payment_method_types": ["card"],
        "line_items": [{
            "quantity": 1,
            "price_data": {
                "currency": current_app.config["CHECKOUT_CURRENCY"],
                "unit_amount": int(round(float(pack["price"]) * 100)),
                "product_data": {
                    "name": pack["name"],
                    "description": f"{pack['lesson_count']} private lessons",
                },
            },
        }],
        "success_url": f"{base_url}/dancer/lesson-packs?success=true&session_id={{CHECKOUT_SESSION_ID}}",
        "cancel_url": f"{base_url}/dancer/lesson-packs?canceled=true",
        "metadata": {
            "student_id": student["id"],
            "lesson_pack_id": pack_id,
            "instructor_id": instructor_id,
            "lesson_count": str(pack["lesson_count"]),
        },
    })
    return jsonify({"ok": True, "session_id": session.get("id"), "url": session.get("url")})


def _paid_lesson_count(metadata):
    """Lesson count the customer paid for, as stamped on the checkout session."""
    try:
        count = int(metadata.get("lesson_count") or 0)
    except (TypeError, ValueError):
        return None
    return count if count > 0 else None


@bp.route("/webhook", methods=["POST"])
@public
def webhook():
    payload = request.get_data()
    event = stripe_client.construct_event(payload, request.headers.get("Stripe-Signature", ""))
    event_type = event.get("type")

    if event_type == "checkout.session.completed":
        session = (event.get("data") or {}).get("object") or {}
        metadata = session.get("metadata") or {}
        student_id = metadata.get("student_id")
        pack_id = metadata.get("lesson_pack_id")
        if not student_id or not pack_id:
            log.warning(f"⚠️ Checkout {session.get('id')} completed without metadata")
            raise ValidationError("Missing metadata")

        purchase = lesson_packs.purchase_pack(
            student_id,
            pack_id,
            checkout_session_id=session.get("id"),
            instructor_id=metadata.get("instructor_id"),
            lesson_count=_paid_lesson_count(metadata),
        )
        log.info(f"✅ Checkout {session.get('id')} → purchase {purchase['id']}")
    else:
        log.info(f"[stripe] ignoring event {event_type}")

    return jsonify({"received": True})
