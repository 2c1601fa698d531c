# app/settings.py

# ──────────────────────────────────────────────────────────────
# Central studio settings
# Update these values when packs, prompts or role groups change
# ──────────────────────────────────────────────────────────────

DEFAULT_LESSON_PACKS = [
    {"name": "2 Lesson Pack", "lesson_count": 2, "price": 39.99},
    {"name": "5 Lesson Pack", "lesson_count": 5, "price": 89.99},
    {"name": "10 Lesson Pack", "lesson_count": 10, "price": 159.99},
]

# Roles and the groups that share privileges (admin is in every group)
ROLES = ("instructor", "dancer", "guardian", "studio", "admin")
SIGNUP_ROLES = ("instructor", "dancer", "guardian", "studio")
ROLE_GROUPS = {
    "instructor": {"instructor", "admin"},
    "dancer": {"dancer", "guardian", "admin"},
    "studio": {"studio", "admin"},
    "admin": {"admin"},
}

PRICING_MODELS = ("per_person", "per_class", "per_hour", "tiered")
CLASS_TYPES = ("group", "private", "workshop", "master_class")
NOTE_VISIBILITIES = ("private", "shared_with_student", "shared_with_guardian", "shared_with_studio")
PAYMENT_STATUSES = ("pending", "confirmed", "disputed", "cancelled")
PAYMENT_METHODS = ("stripe", "cash", "check", "other")
PAYMENT_RECIPIENT_TYPES = ("student", "studio")
LESSON_REQUEST_STATUSES = ("pending", "approved", "scheduled", "declined")
INQUIRY_STATUSES = ("new", "contacted", "responded", "closed")

MIN_PASSWORD_LENGTH = 8

# Whisper upload limit
MAX_AUDIO_BYTES = 25 * 1024 * 1024

NOTE_FORMAT_PROMPT = """You are a formatting assistant for dance instruction notes. Your job is to make notes easier to read by breaking up dense text.

FORMATTING RULES:
1. Identify distinct feedback points, observations, or topics
2. Break long paragraphs into separate <p> tags, one per thought
3. Turn multiple pieces of feedback into bullet points (<ul><li>)
4. Use numbered lists (<ol><li>) for sequences, steps, or progressions
5. Bold (<strong>) key dance moves or critical points sparingly

CONTENT RULES:
- Fix spelling and grammar except for proper names and dance move names
- Keep dance terminology accurate (pirouette, plié, chassé, relevé)
- Preserve the original meaning and tone
- Do NOT add new information, headers or titles

Return ONLY the formatted HTML content, nothing else."""

VOICE_CLEANING_PROMPT = """You are a dance note-taker. Clean up this spoken note lightly: fix grammar, punctuation, and capitalization, but keep the original wording and meaning.

Preserve dance terms exactly as spoken (plié, chassé, port de bras, tendu, relevé, développé, arabesque, fouetté, pirouette, grand jeté, rond de jambe, battement, spotting, turnout, musicality, phrasing, counts).

Format rules:
- Keep combinations and counts in the order spoken
- Use simple HTML: <p> for paragraphs, <strong> for emphasis, <ul>/<li> for lists
- Do not add text that was not in the original

Return ONLY the cleaned HTML content, no markdown, no explanations."""
