"""
places_router.py
────────────────────────────────────────────
Address lookup for studio and class forms.

Endpoints (authenticated):
 • POST /places/search    { query }
 • GET  /places/details   ?place_id=
────────────────────────────────────────────
"""

import logging
from flask import Blueprint, jsonify, request

from .utils import json_body
from .utils import places_client
from .utils.error_handler import ValidationError

bp = Blueprint("places_bp", __name__)
log = logging.getLogger(__name__)

MIN_QUERY_LENGTH = 3


@bp.route("/search", methods=["POST"])
def search():
    query = str(json_body().get("query") or "").strip()
    if len(query) < MIN_QUERY_LENGTH:
        return jsonify({"ok": True, "predictions": []})
    return jsonify({"ok": True, "predictions": places_client.autocomplete(query)})


@bp.route("/details", methods=["GET"])
def details():
    place_id = request.args.get("place_id")
    if not place_id:
        raise ValidationError("place_id is required")
    return jsonify({"ok": True, "place": places_client.place_details(place_id)})
