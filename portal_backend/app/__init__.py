"""
__init__.py – Dance Portal Backend
────────────────────────────────────────────────────────────
Initialises the Flask app, binds the database and registers
all feature blueprints behind the capability gate.

✅ Includes:
 • auth_router        → sign-up / sign-in / me
 • students_router    → instructor student management
 • studios_router     → studios + studio owner dashboard
 • classes_router     → classes, pricing, enrollments, earnings
 • dancer_router      → dancer self-service + lesson packs
 • instructor_router  → private lesson requests
 • notes_router       → notes + AI formatting / voice notes
 • payments_router    → payments (instructor + studio views)
 • waivers_router     → waiver templates, waivers, signatures
 • stripe_router      → lesson-pack checkout + webhook
 • inquiries_router   → studio inquiries + Gmail threads
 • admin_router       → admin console + instructor access requests
 • places_router      → address lookup
────────────────────────────────────────────────────────────
"""

import os
import logging
from flask import Flask

from . import config
from .auth import enforce_capability, public
from .db import init_db
from .settings import MAX_AUDIO_BYTES
from .utils.error_handler import register_error_handlers


# ─────────────────────────────────────────────────────────────
# Flask App Factory
# ─────────────────────────────────────────────────────────────
def create_app(overrides: dict | None = None):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.update(config.as_dict())
    app.config["MAX_CONTENT_LENGTH"] = MAX_AUDIO_BYTES + 1024 * 1024
    if overrides:
        app.config.update(overrides)

    # ── Configure logging ───────────────────────────────
    logging.basicConfig(
        level=getattr(logging, str(app.config["LOG_LEVEL"]).upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    # ── Database ────────────────────────────────────────
    init_db(app.config["DATABASE_URL"], create_tables=app.config["AUTO_CREATE_TABLES"])

    # ── Errors + capability gate ────────────────────────
    register_error_handlers(app)
    app.before_request(enforce_capability)

    # ── Register Blueprints ─────────────────────────────
    from .auth_router import bp as auth_bp
    from .students_router import bp as students_bp
    from .studios_router import bp as studios_bp, dashboard_bp as studio_dashboard_bp
    from .classes_router import bp as classes_bp
    from .dancer_router import bp as dancer_bp
    from .instructor_router import bp as instructor_bp
    from .notes_router import bp as notes_bp
    from .payments_router import bp as payments_bp, studio_bp as studio_payments_bp
    from .waivers_router import bp as waivers_bp, templates_bp as waiver_templates_bp
    from .stripe_router import bp as stripe_bp
    from .inquiries_router import bp as inquiries_bp, admin_bp as inquiries_admin_bp
    from .admin_router import bp as admin_bp, access_bp
    from .places_router import bp as places_bp

    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(students_bp, url_prefix="/students")
    app.register_blueprint(studios_bp, url_prefix="/studios")
    app.register_blueprint(classes_bp, url_prefix="/classes")
    app.register_blueprint(dancer_bp, url_prefix="/dancer")
    app.register_blueprint(instructor_bp, url_prefix="/instructor")
    app.register_blueprint(notes_bp, url_prefix="/notes")
    app.register_blueprint(payments_bp, url_prefix="/payments")
    app.register_blueprint(studio_payments_bp, url_prefix="/studio")
    app.register_blueprint(studio_dashboard_bp, url_prefix="/studio")
    app.register_blueprint(waiver_templates_bp, url_prefix="/waiver-templates")
    app.register_blueprint(waivers_bp, url_prefix="/waivers")
    app.register_blueprint(stripe_bp, url_prefix="/stripe")
    app.register_blueprint(inquiries_bp, url_prefix="/studio-inquiries")
    app.register_blueprint(inquiries_admin_bp, url_prefix="/admin/studio-inquiries")
    app.register_blueprint(admin_bp, url_prefix="/admin")
    app.register_blueprint(access_bp, url_prefix="/instructor-access-request")
    app.register_blueprint(places_bp, url_prefix="/places")

    # ── Root health check ───────────────────────────────
    @app.route("/health", methods=["GET"])
    @public
    def health_root():
        return {"status": "ok", "service": "Dance Portal Backend", "blueprints": sorted(app.blueprints)}, 200

    return app


if __name__ == "__main__":
    port = int(os.getenv("PORT", 5000))
    create_app().run(host="0.0.0.0", port=port, debug=False)
