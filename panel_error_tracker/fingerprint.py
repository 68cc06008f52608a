# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Fingerprint generation for grouping occurrences of the same error."""

import hashlib

from .models import ErrorCategory, ErrorInfo

MESSAGE_PREFIX_LENGTH = 100
FINGERPRINT_LENGTH = 64


def call_site(stack: str | None) -> str:
    """Return the frame that raised the error, as found in a stack trace.

    A Python traceback lists frames outermost first, so its last
    ``File "...", line N, in fn`` line is the raise site. Other stack formats
    list the throw site first, right below the message; for those the
    trimmed second line is used.
    """
    if not stack:
        return ""
    lines = stack.split("\n")
    frames = [line.strip() for line in lines if line.lstrip().startswith('File "')]
    if frames:
        return frames[-1]
    if len(lines) < 2:
        return ""
    return lines[1].strip()


def generate_fingerprint(error: ErrorInfo, category: ErrorCategory | str) -> str:
    """Derive the grouping key for an error.

    The key combines category, error name, the first 100 characters of the
    message and the call site. Two errors that share all four components are
    grouped together even if the rest of their messages differ.

    Args:
        error: Normalized error
        category: Category the error was classified into

    Returns:
        64-character hex string
    """
    category_value = category.value if isinstance(category, ErrorCategory) else str(category)
    key = ":".join(
        [
            category_value,
            error.name,
            error.message[:MESSAGE_PREFIX_LENGTH],
            error.call_site if error.call_site is not None else call_site(error.stack),
        ]
    )
    return hashlib.sha256(key.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]
