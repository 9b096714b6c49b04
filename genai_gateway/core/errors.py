"""
Error taxonomy for the generation gateway.

ValidationError and AdmissionRejected stop a request before any record is
written. ProviderError never leaves the orchestrator.
"""

from datetime import datetime
from typing import Any, Dict, Optional


class ValidationError(ValueError):
    """Raised when a generation request is malformed or incomplete."""


class AdmissionRejected(Exception):
    """Raised when an actor has exhausted its rate-limit window."""

    def __init__(self, actor: str, remaining: int, reset_time: Optional[datetime]):
        super().__init__(f"Rate limit exceeded for {actor}")
        self.actor = actor
        self.remaining = remaining
        self.reset_time = reset_time

    def to_payload(self) -> Dict[str, Any]:
        """Rejection body returned to the caller in place of a generation."""
        return {
            "error": "Rate limit exceeded",
            "message": "Too many requests. Please try again later.",
            "remaining": self.remaining,
            "resetTime": self.reset_time.isoformat() if self.reset_time else None,
        }


class ProviderError(Exception):
    """Raised for any failed or unusable call to the generation provider."""
