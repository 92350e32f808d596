"""Validation helpers for generation prompts."""

from typing import Iterable

from models.errors import ValidationError

MIN_PROMPT_LENGTH = 3
MAX_PROMPT_LENGTH = 1000
BLOCKED_TERMS = ("violence", "explicit", "harmful")


def validate_prompt(prompt: object, blocked_terms: Iterable[str] = BLOCKED_TERMS) -> str:
    """Return the stripped prompt or raise ValidationError."""
    if not isinstance(prompt, str) or not prompt.strip():
        raise ValidationError("Prompt must be a non-empty string")
    cleaned = prompt.strip()
    if len(cleaned) < MIN_PROMPT_LENGTH:
        raise ValidationError(f"Prompt must be at least {MIN_PROMPT_LENGTH} characters long")
    if len(cleaned) > MAX_PROMPT_LENGTH:
        raise ValidationError(f"Prompt must be at most {MAX_PROMPT_LENGTH} characters long")
    lowered = cleaned.lower()
    for term in blocked_terms:
        if term in lowered:
            raise ValidationError(f"Prompt contains blocked content: {term}")
    return cleaned
