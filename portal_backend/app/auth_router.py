"""
auth_router.py
────────────────────────────────────────────
Sign-up, sign-in and "who am I".

Endpoints:
 • POST /auth/signup   (public)
 • POST /auth/signin   (public)
 • GET  /auth/me
────────────────────────────────────────────
"""

import logging
from flask import Blueprint, jsonify

from .auth import authenticate, current_profile, public, register_profile
from .utils import json_body

bp = Blueprint("auth_bp", __name__)
log = logging.getLogger(__name__)


@bp.route("/signup", methods=["POST"])
@public
def signup():
    result = register_profile(json_body())
    return jsonify({"ok": True, **result}), 201


@bp.route("/signin", methods=["POST"])
@public
def signin():
    data = json_body()
    result = authenticate(data.get("email"), data.get("password"))
    log.info(f"[auth] signin {result['profile']['id']} ({result['profile']['role']})")
    return jsonify({"ok": True, **result})


@bp.route("/me", methods=["GET"])
def me():
    return jsonify({"ok": True, "profile": current_profile()})
