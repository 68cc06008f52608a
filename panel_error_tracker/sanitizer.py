# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Redaction of sensitive fields from captured request context."""

from collections.abc import Mapping
from typing import Any

REDACTED = "[REDACTED]"

SENSITIVE_KEYS = ("password", "token", "secret", "apiKey", "creditCard", "cvv")

SENSITIVE_HEADERS = frozenset(
    {"authorization", "proxy-authorization", "cookie", "set-cookie", "x-api-key"}
)

# Nested context mappings that carry caller-controlled data
_NESTED_SECTIONS = ("body", "query", "params")

_SENSITIVE_KEYS_LOWER = tuple(k.lower() for k in SENSITIVE_KEYS)


def is_sensitive_key(key: Any) -> bool:
    lowered = str(key).lower()
    return any(sensitive in lowered for sensitive in _SENSITIVE_KEYS_LOWER)


def sanitize_body(body: Any) -> Any:
    """Return a copy of ``body`` with sensitive values redacted.

    Only top-level keys are inspected. ``None`` and values that are not
    mappings are returned unchanged; the input is never mutated.
    """
    if body is None or not isinstance(body, Mapping):
        return body

    return {
        key: REDACTED if is_sensitive_key(key) else value
        for key, value in body.items()
    }


def sanitize_headers(headers: Any) -> Any:
    """Redact credential-bearing headers in addition to denylisted names."""
    if headers is None or not isinstance(headers, Mapping):
        return headers

    return {
        key: REDACTED if str(key).lower() in SENSITIVE_HEADERS or is_sensitive_key(key) else value
        for key, value in headers.items()
    }


def sanitize_context(context: Mapping[str, Any] | None) -> dict[str, Any]:
    """Sanitize a capture context before it reaches the buffer or any sink."""
    if not context:
        return {}

    sanitized = sanitize_body(context)
    for section in _NESTED_SECTIONS:
        if section in sanitized and sanitized[section] != REDACTED:
            sanitized[section] = sanitize_body(sanitized[section])
    if "headers" in sanitized:
        sanitized["headers"] = sanitize_headers(sanitized["headers"])
    return sanitized
