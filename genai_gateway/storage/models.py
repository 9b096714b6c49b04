"""
Data models for storage layer.

Defines the generation audit record and the daily usage rollup.
"""

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Optional


class GenerationStatus(Enum):
    """Lifecycle state of a generation record."""
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


class InvalidTransition(Exception):
    """Raised when a record leaves a state it is not allowed to leave."""


@dataclass
class GenerationRecord:
    """Audit row for one generation request.
    
    Created as PENDING before the provider is called and completed exactly
    once, to SUCCESS or ERROR. A completed record is never modified again.
    """
    actor_id: str
    rendered_prompt: str
    model: str
    temperature: Optional[float]
    max_tokens: Optional[int]
    created_at: datetime
    status: GenerationStatus = GenerationStatus.PENDING
    output: Optional[str] = None
    tokens_used: int = 0
    processing_time_ms: Optional[int] = None
    error_message: Optional[str] = None
    id: Optional[int] = None

    def mark_success(self, output: str, tokens_used: int, processing_time_ms: int) -> None:
        self._leave_pending(GenerationStatus.SUCCESS)
        self.output = output
        self.tokens_used = tokens_used
        self.processing_time_ms = processing_time_ms

    def mark_error(self, error_message: str, processing_time_ms: int) -> None:
        self._leave_pending(GenerationStatus.ERROR)
        self.error_message = error_message
        self.tokens_used = 0
        self.processing_time_ms = processing_time_ms

    def _leave_pending(self, target: GenerationStatus) -> None:
        if self.status is not GenerationStatus.PENDING:
            raise InvalidTransition(
                f"record {self.id} is already {self.status.value}, cannot move to {target.value}"
            )
        self.status = target


@dataclass(frozen=True)
class UsageAggregate:
    """Per-actor, per-day rollup of generation traffic.
    
    requests_count always equals successful_requests + failed_requests.
    avg_processing_time_ms is the running mean over every request of the day.
    """
    actor_id: str
    day: date
    requests_count: int
    tokens_used: int
    successful_requests: int
    failed_requests: int
    avg_processing_time_ms: float
