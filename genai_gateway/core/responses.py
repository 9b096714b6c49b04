"""
Response envelopes returned by the orchestrator.

Success and failure share one shape and are told apart by status alone.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

STATUS_SUCCESS = "success"
STATUS_ERROR = "error"


def new_response_id() -> str:
    """Fresh correlation id, independent of the record id."""
    return str(uuid.uuid4())


@dataclass(frozen=True)
class GenerationResponse:
    """Outcome of one generation request.

    type is None for text variants, "analysis" for vision and "generation"
    for image generation. remaining and reset_time are rate-limit hints
    filled in by the gateway.
    """
    id: str
    status: str
    model: Optional[str] = None
    output: Optional[str] = None
    tokens_used: Optional[int] = None
    error: Optional[str] = None
    type: Optional[str] = None
    image_urls: List[str] = field(default_factory=list)
    revised_prompt: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)
    remaining: Optional[int] = None
    reset_time: Optional[datetime] = None

    @property
    def ok(self) -> bool:
        return self.status == STATUS_SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        """Caller-facing body with unset fields omitted."""
        body = {
            "id": self.id,
            "status": self.status,
            "model": self.model,
            "output": self.output,
            "tokensUsed": self.tokens_used,
            "error": self.error,
            "type": self.type,
            "imageUrls": self.image_urls or None,
            "revisedPrompt": self.revised_prompt,
            "timestamp": self.timestamp.isoformat(),
            "remaining": self.remaining,
            "resetTime": self.reset_time.isoformat() if self.reset_time else None,
        }
        return {key: value for key, value in body.items() if value is not None}
