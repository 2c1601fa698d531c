# utils/gmail_client.py
# Gmail REST calls: studio-inquiry threads and payment reminders.

import base64
import logging
from email.message import EmailMessage
from typing import Any, Dict, List, Optional

import requests
from flask import current_app

from .error_handler import ProviderError, ServiceUnavailable

log = logging.getLogger(__name__)


def _headers() -> Dict[str, str]:
    token = current_app.config.get("GMAIL_ACCESS_TOKEN")
    if not token:
        raise ServiceUnavailable("Email is not configured")
    return {"Authorization": f"Bearer {token}", "Accept": "application/json"}


def _call(method: str, path: str, **kwargs) -> Dict[str, Any]:
    cfg = current_app.config
    url = f"{cfg['GMAIL_API_BASE']}/users/me/{path}"
    try:
        r = requests.request(method, url, headers=_headers(), timeout=cfg["REQUEST_TIMEOUT"], **kwargs)
    except requests.exceptions.RequestException as e:
        log.error(f"❌ Gmail {method} {path} failed: {e}")
        raise ProviderError("Email provider unreachable")
    if r.status_code >= 400:
        log.error(f"❌ Gmail API error {r.status_code}: {r.text[:300]}")
        raise ProviderError(f"Email provider error ({r.status_code})")
    return r.json() if r.text else {}


def send_email(
    to: str,
    subject: str,
    html_body: str,
    thread_id: Optional[str] = None,
    in_reply_to: Optional[str] = None,
) -> Dict[str, str]:
    """Send an HTML email, threaded when thread_id / in_reply_to are given."""
    msg = EmailMessage()
    msg["To"] = to
    msg["Subject"] = subject
    if in_reply_to:
        msg["In-Reply-To"] = in_reply_to
        msg["References"] = in_reply_to
    msg.set_content(html_body, subtype="html")

    raw = base64.urlsafe_b64encode(msg.as_bytes()).decode().rstrip("=")
    body: Dict[str, Any] = {"raw": raw}
    if thread_id:
        body["threadId"] = thread_id

    data = _call("POST", "messages/send", json=body)
    log.info(f"📤 Email sent → {to} (thread {data.get('threadId')})")
    return {"thread_id": data.get("threadId", ""), "message_id": data.get("id", "")}


def _decode_body(payload: Dict[str, Any]) -> str:
    data = (payload.get("body") or {}).get("data")
    if not data:
        for part in payload.get("parts") or []:
            if part.get("mimeType") in ("text/plain", "text/html"):
                data = (part.get("body") or {}).get("data")
                if data:
                    break
    if not data:
        return ""
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")


def get_thread_messages(thread_id: str) -> List[Dict[str, Any]]:
    """Messages of a thread, oldest first, with is_from_me resolved."""
    data = _call("GET", f"threads/{thread_id}", params={"format": "full"})
    own_domain = (current_app.config.get("STUDIO_EMAIL_DOMAIN") or "").lower()

    messages = []
    for msg in data.get("messages") or []:
        payload = msg.get("payload") or {}
        headers = {h.get("name", "").lower(): h.get("value", "") for h in payload.get("headers") or []}
        sender = headers.get("from", "")
        is_from_me = "SENT" in (msg.get("labelIds") or []) or bool(own_domain and own_domain in sender.lower())
        messages.append({
            "id": msg.get("id", ""),
            "from": sender,
            "to": headers.get("to", ""),
            "subject": headers.get("subject", ""),
            "date": headers.get("date", ""),
            "snippet": msg.get("snippet", ""),
            "body": _decode_body(payload),
            "is_from_me": is_from_me,
        })
    return messages
