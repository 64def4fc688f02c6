"""Validated decoding of language-model JSON replies.

Models are not schema-constrained at the transport level, so every reply is
fence-stripped, parsed and validated against a pydantic model. The result is
a ``Decoded`` value rather than an exception; call sites pick their own
fallback when ``ok`` is False.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Generic, TypeVar

from pydantic import BaseModel, ValidationError

T = TypeVar("T", bound=BaseModel)

_LEADING_FENCE_RE = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_TRAILING_FENCE_RE = re.compile(r"\s*```\s*$")


@dataclass(frozen=True)
class Decoded(Generic[T]):
    """Outcome of a decode: ``value`` when ``ok``, otherwise a ``reason``."""

    ok: bool
    value: T | None = None
    reason: str = ""

    @classmethod
    def success(cls, value: T) -> Decoded[T]:
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, reason: str) -> Decoded[T]:
        return cls(ok=False, reason=reason)


def strip_code_fences(raw: str) -> str:
    """Remove a surrounding ```json … ``` fence, if present."""
    text = raw.strip()
    text = _LEADING_FENCE_RE.sub("", text)
    text = _TRAILING_FENCE_RE.sub("", text)
    return text.strip()


def decode_json(raw: str, schema: type[T]) -> Decoded[T]:
    """Parse *raw* as JSON and validate it against *schema*."""
    text = strip_code_fences(raw)
    if not text:
        return Decoded.failure("empty reply")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        return Decoded.failure(f"invalid JSON: {exc.msg}")
    try:
        return Decoded.success(schema.model_validate(data))
    except ValidationError as exc:
        return Decoded.failure(f"unexpected shape: {exc.error_count()} validation error(s)")
