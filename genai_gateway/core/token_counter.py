"""
Token usage reported by the provider.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class TokenUsage:
    """Token counts for one provider call.
    
    Image generation reports no usage, which is represented as all zeros.
    """
    prompt_tokens: int = 0
    completion_tokens: int = 0
    
    @property
    def total_tokens(self) -> int:
        """Total tokens used (prompt + completion)."""
        return self.prompt_tokens + self.completion_tokens


NO_USAGE = TokenUsage()
