# app/config.py
import os, logging


# ── Helpers ───────────────────────────────────────────────────────────────────
def _flag(env_val: str | None, default: str = "0") -> bool:
    return (env_val if env_val is not None else default).strip().lower() in ("1", "true", "yes")

def _int(env_val: str | None, default: int) -> int:
    try:
        return int(env_val) if env_val not in (None, "") else default
    except ValueError:
        return default


# ── Database ─────────────────────────────────────────────────────────────────
DATABASE_URL       = os.environ.get("DATABASE_URL", "sqlite:///dance_portal.db")
AUTO_CREATE_TABLES = _flag(os.environ.get("AUTO_CREATE_TABLES"), "0")

# ── Sessions ─────────────────────────────────────────────────────────────────
SECRET_KEY      = os.environ.get("SECRET_KEY", "dev-secret-change-me")
SESSION_MAX_AGE = _int(os.environ.get("SESSION_MAX_AGE"), 7 * 24 * 3600)

# ── App ──────────────────────────────────────────────────────────────────────
LOG_LEVEL       = os.environ.get("LOG_LEVEL", "INFO").upper()
PUBLIC_BASE_URL = os.environ.get("PUBLIC_BASE_URL", "http://localhost:5000").rstrip("/")
REQUEST_TIMEOUT = _int(os.environ.get("REQUEST_TIMEOUT"), 20)
SIGNATURE_DIR   = os.environ.get("SIGNATURE_DIR", os.path.join(os.getcwd(), "waiver-signatures"))

# ── Stripe ───────────────────────────────────────────────────────────────────
STRIPE_SECRET_KEY        = os.environ.get("STRIPE_SECRET_KEY", "")
STRIPE_WEBHOOK_SECRET    = os.environ.get("STRIPE_WEBHOOK_SECRET", "")
STRIPE_API_BASE          = os.environ.get("STRIPE_API_BASE", "https://api.stripe.com/v1")
STRIPE_WEBHOOK_TOLERANCE = _int(os.environ.get("STRIPE_WEBHOOK_TOLERANCE"), 300)
CHECKOUT_CURRENCY        = os.environ.get("CHECKOUT_CURRENCY", "usd")

# ── Gmail (studio inquiry threads) ───────────────────────────────────────────
GMAIL_ACCESS_TOKEN  = os.environ.get("GMAIL_ACCESS_TOKEN", "")
GMAIL_API_BASE      = os.environ.get("GMAIL_API_BASE", "https://gmail.googleapis.com/gmail/v1")
STUDIO_EMAIL_DOMAIN = os.environ.get("STUDIO_EMAIL_DOMAIN", "")

# ── Google Places ────────────────────────────────────────────────────────────
GOOGLE_PLACES_API_KEY = os.environ.get("GOOGLE_PLACES_API_KEY", "")
PLACES_API_BASE       = os.environ.get("PLACES_API_BASE", "https://maps.googleapis.com/maps/api/place")
PLACES_COUNTRY        = os.environ.get("PLACES_COUNTRY", "us")

# ── OpenAI ───────────────────────────────────────────────────────────────────
OPENAI_API_KEY          = os.environ.get("OPENAI_API_KEY", "")
OPENAI_MODEL            = os.environ.get("OPENAI_MODEL", "gpt-4o-mini")
OPENAI_TRANSCRIBE_MODEL = os.environ.get("OPENAI_TRANSCRIBE_MODEL", "whisper-1")


def as_dict() -> dict:
    """Snapshot of every upper-case setting, used to seed app.config."""
    return {k: v for k, v in globals().items() if k.isupper()}


# ── Startup logging ──────────────────────────────────────────────────────────
logger = logging.getLogger(__name__)
logger.info(f"[CONFIG] Loaded DATABASE_URL scheme={DATABASE_URL.split(':', 1)[0]}, LOG_LEVEL={LOG_LEVEL}")
