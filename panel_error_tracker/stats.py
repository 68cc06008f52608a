# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Read-side statistics over persisted error entries."""

from datetime import timedelta

from .gateway import PersistenceGateway
from .models import ErrorCategory, ErrorQuery, ErrorSeverity, ErrorStats, TopError, utcnow

RECENT_WINDOW = timedelta(hours=24)


class StatsAggregator:
    """Composes gateway queries into an ErrorStats summary.

    Every call hits the store; there is no caching. Buffered occurrences that
    have not been flushed yet are not reflected.
    """

    def __init__(self, gateway: PersistenceGateway, top_errors_limit: int = 10):
        self.gateway = gateway
        self.top_errors_limit = top_errors_limit

    def get_stats(self) -> ErrorStats:
        total = self.gateway.count(ErrorQuery())
        unresolved = self.gateway.count(ErrorQuery(resolved=False))
        last_24h = self.gateway.count(ErrorQuery(occurred_since=utcnow() - RECENT_WINDOW))

        by_severity = {severity.value: 0 for severity in ErrorSeverity}
        by_severity.update(self.gateway.group_by("severity"))
        by_category = {category.value: 0 for category in ErrorCategory}
        by_category.update(self.gateway.group_by("category"))

        top = self.gateway.find_many(
            ErrorQuery(resolved=False),
            sort_by="count",
            descending=True,
            limit=self.top_errors_limit,
        )

        return ErrorStats(
            total=total,
            unresolved=unresolved,
            by_severity=by_severity,
            by_category=by_category,
            last_24h=last_24h,
            top_errors=[
                TopError(
                    fingerprint=entry.fingerprint,
                    message=entry.message,
                    count=entry.count,
                    last_occurred=entry.occurred_at,
                )
                for entry in top
            ],
        )
