"""
Per-actor, per-day usage accounting.

Recording never fails the request that triggered it: storage errors are
logged and dropped.
"""

from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

import structlog

from ..storage.db import DEFAULT_DB_PATH
from ..storage.models import UsageAggregate
from ..storage.repository import UsageRepository

logger = structlog.get_logger(__name__)


class UsageAccountant:
    """Maintains the daily UsageAggregate rows and answers usage queries."""

    def __init__(
        self,
        repository: Optional[UsageRepository] = None,
        today: Callable[[], date] = lambda: datetime.now().date(),
    ):
        self.repository = repository or UsageRepository(DEFAULT_DB_PATH)
        self._today = today

    def record(self, actor: str, tokens: int, success: bool, elapsed_ms: float) -> None:
        """Fold one finished request into today's aggregate for the actor."""
        try:
            self.repository.upsert_usage(actor, self._today(), tokens, success, elapsed_ms)
            logger.debug("usage_recorded", actor=actor, tokens=tokens, success=success)
        except Exception:
            logger.exception("usage_record_failed", actor=actor)

    def history(self, actor: str) -> List[UsageAggregate]:
        """Every daily row for an actor, newest first."""
        return self.repository.get_actor_history(actor)

    def recent(self, days: int) -> List[UsageAggregate]:
        """Rows for all actors within the last N days."""
        return self.repository.get_usage_since(self._since(days))

    def total_requests(self, days: int) -> int:
        return self.repository.get_usage_totals(self._since(days))["total_requests"]

    def total_tokens(self, days: int) -> int:
        return self.repository.get_usage_totals(self._since(days))["total_tokens"]

    def top_actors(self, days: int, limit: Optional[int] = None) -> List[Tuple[str, int]]:
        """Actors ranked by request count, ties broken by actor id."""
        return self.repository.get_top_actors(self._since(days), limit)

    def summary(self, days: int) -> Dict[str, Any]:
        """Totals and top actors over the last N days."""
        since = self._since(days)
        totals = self.repository.get_usage_totals(since)
        return {
            "totalRequests": totals["total_requests"],
            "totalTokens": totals["total_tokens"],
            "topUsers": self.repository.get_top_actors(since),
            "period": f"{days} days",
        }

    def _since(self, days: int) -> date:
        if days < 0:
            raise ValueError("days cannot be negative")
        return self._today() - timedelta(days=days)
