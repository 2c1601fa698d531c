# utils/llm_client.py
# OpenAI calls behind the note formatter and voice-to-notes.

import io
import logging
from typing import Optional

import openai
from openai import OpenAI
from flask import current_app

from .error_handler import ApiError, ProviderError, ServiceUnavailable

log = logging.getLogger(__name__)


def _client() -> OpenAI:
    key = current_app.config.get("OPENAI_API_KEY")
    if not key:
        raise ServiceUnavailable("AI features are not configured. Please contact support.")
    return OpenAI(api_key=key)


def _translate(e: Exception, label: str) -> ApiError:
    if isinstance(e, openai.AuthenticationError):
        return ServiceUnavailable("AI features are not properly configured.")
    if isinstance(e, openai.RateLimitError):
        return ApiError("Too many requests. Please wait a moment and try again.", 429)
    log.error(f"❌ OpenAI {label} failed: {e}")
    return ProviderError(f"Failed to {label}")


def complete(system_prompt: str, user_content: str, max_tokens: int = 2000, temperature: float = 0.3) -> Optional[str]:
    """Single-turn chat completion; returns the stripped text or None when empty."""
    client = _client()
    try:
        completion = client.chat.completions.create(
            model=current_app.config["OPENAI_MODEL"],
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_content},
            ],
            temperature=temperature,
            max_tokens=max_tokens,
        )
    except openai.OpenAIError as e:
        raise _translate(e, "format text")

    if not completion.choices:
        return None
    content = completion.choices[0].message.content
    return content.strip() if content else None


def transcribe(audio: bytes, filename: str = "audio.webm") -> str:
    """Speech-to-text for a recorded note."""
    client = _client()
    buf = io.BytesIO(audio)
    buf.name = filename
    try:
        result = client.audio.transcriptions.create(
            model=current_app.config["OPENAI_TRANSCRIBE_MODEL"],
            file=buf,
            language="en",
            response_format="text",
        )
    except openai.OpenAIError as e:
        raise _translate(e, "transcribe audio")
    text = result if isinstance(result, str) else getattr(result, "text", "")
    return (text or "").strip()
