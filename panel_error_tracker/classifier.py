# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Keyword heuristics that infer category and severity from error content."""

from .models import ErrorCategory, ErrorInfo, ErrorSeverity

# Evaluated in order; the first rule with a matching keyword wins.
DATABASE_KEYWORDS = ("prisma", "database", "sql")
NETWORK_KEYWORDS = ("fetch", "network", "econnrefused")
AUTH_KEYWORDS = ("auth", "unauthorized", "forbidden")
VALIDATION_NAME_KEYWORDS = ("validation",)
VALIDATION_KEYWORDS = ("invalid", "required")
PAYMENT_KEYWORDS = ("payment", "stripe", "iyzico")
EXTERNAL_KEYWORDS = ("api", "external")


def _contains_any(text: str, keywords: tuple[str, ...]) -> bool:
    return any(keyword in text for keyword in keywords)


def determine_category(error: ErrorInfo) -> ErrorCategory:
    """Infer an error category from its message and name.

    Priority: database, network, auth, validation, payment, external, then
    runtime as the fallback. A message such as "payment gateway connection
    timeout" therefore lands in ``payment``.
    """
    message = error.message.lower()
    name = error.name.lower()

    if _contains_any(message, DATABASE_KEYWORDS):
        return ErrorCategory.DATABASE
    if _contains_any(message, NETWORK_KEYWORDS):
        return ErrorCategory.NETWORK
    if _contains_any(message, AUTH_KEYWORDS):
        return ErrorCategory.AUTH
    if _contains_any(name, VALIDATION_NAME_KEYWORDS) or _contains_any(message, VALIDATION_KEYWORDS):
        return ErrorCategory.VALIDATION
    if _contains_any(message, PAYMENT_KEYWORDS):
        return ErrorCategory.PAYMENT
    if _contains_any(message, EXTERNAL_KEYWORDS):
        return ErrorCategory.EXTERNAL

    return ErrorCategory.RUNTIME


def determine_severity(error: ErrorInfo, category: ErrorCategory) -> ErrorSeverity:
    """Infer severity with a first-match-wins rule table.

    1. database + "connection" in message -> critical
    2. payment -> high
    3. "ECONNREFUSED" or "timeout" in message -> high
    4. auth -> medium
    5. validation -> low
    6. otherwise medium
    """
    message = error.message

    if category == ErrorCategory.DATABASE and "connection" in message:
        return ErrorSeverity.CRITICAL
    if category == ErrorCategory.PAYMENT:
        return ErrorSeverity.HIGH
    if "ECONNREFUSED" in message or "timeout" in message:
        return ErrorSeverity.HIGH

    if category == ErrorCategory.AUTH:
        return ErrorSeverity.MEDIUM
    if category == ErrorCategory.VALIDATION:
        return ErrorSeverity.LOW

    return ErrorSeverity.MEDIUM
