"""
OpenAI-compatible generation provider client.

Sends chat-completion and image-generation calls and normalizes the
results. Every failure surfaces as ProviderError.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import openai
from openai import OpenAI

from ..core.errors import ProviderError
from ..core.tasks import GenerationKind, GenerationTask
from ..core.token_counter import NO_USAGE, TokenUsage

DEFAULT_BASE_URL = "https://api.openai.com/v1"


@dataclass(frozen=True)
class ProviderResult:
    """Normalized outcome of a successful provider call."""
    output: str
    usage: TokenUsage = NO_USAGE
    image_urls: List[str] = field(default_factory=list)
    revised_prompt: Optional[str] = None


class ProviderClient:
    """Single-attempt client for an OpenAI-compatible API.

    The SDK sends a bearer Authorization header on every call. Retries are
    disabled, so one task maps to exactly one HTTP request bounded by
    timeout_seconds.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: float = 30.0
    ):
        """Initialize provider client.

        Args:
            api_key: Bearer credential; None reads OPENAI_API_KEY
            base_url: API root, e.g. "https://api.openai.com/v1"
            timeout_seconds: Connect and response timeout for each call

        Raises:
            ValueError: If base_url is empty or timeout is not positive
        """
        if not base_url or not base_url.strip():
            raise ValueError("base_url is required and cannot be empty")
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")

        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.client = OpenAI(
            api_key=api_key,
            base_url=self.base_url,
            timeout=timeout_seconds,
            max_retries=0
        )

    def run(self, task: GenerationTask) -> ProviderResult:
        """Dispatch a task to the endpoint matching its kind."""
        if task.kind is GenerationKind.TEXT or task.kind is GenerationKind.VISION:
            return self.complete(task)
        if task.kind is GenerationKind.IMAGE_GENERATION:
            return self.generate_images(task)
        raise ProviderError(f"Unsupported generation kind: {task.kind}")

    def complete(self, task: GenerationTask) -> ProviderResult:
        """Call POST {base}/chat/completions for a text or vision task.

        Raises:
            ProviderError: On transport failure, non-2xx status, or a response
                missing choices, message content or usage
        """
        try:
            response = self.client.chat.completions.create(
                model=task.model,
                messages=build_messages(task),
                max_tokens=task.max_tokens,
                temperature=task.temperature
            )
        except openai.OpenAIError as e:
            raise ProviderError(str(e)) from e

        if not response.choices:
            raise ProviderError("Provider response contained no choices")
        message = response.choices[0].message
        if message is None or message.content is None:
            raise ProviderError("Provider response missing message content")

        usage = response.usage
        if not usage:
            raise ProviderError("Provider response missing usage information")
        for name in ("prompt_tokens", "completion_tokens"):
            count = getattr(usage, name, None)
            if not isinstance(count, int) or isinstance(count, bool):
                raise ProviderError(f"Provider response has invalid usage.{name}: {count!r}")

        return ProviderResult(
            output=message.content,
            usage=TokenUsage(
                prompt_tokens=usage.prompt_tokens,
                completion_tokens=usage.completion_tokens
            )
        )

    def generate_images(self, task: GenerationTask) -> ProviderResult:
        """Call POST {base}/images/generations for an image task.

        Raises:
            ProviderError: On transport failure, non-2xx status, or a response
                with no image data
        """
        if task.image_options is None:
            raise ProviderError("Image generation task has no image options")
        options = task.image_options

        try:
            response = self.client.images.generate(
                model=task.model,
                prompt=task.rendered_prompt,
                n=options.n,
                size=options.size,
                quality=options.quality,
                style=options.style,
                response_format="url"
            )
        except openai.OpenAIError as e:
            raise ProviderError(str(e)) from e

        if not response.data:
            raise ProviderError("Provider response contained no images")

        image_urls = [image.url for image in response.data if image.url]
        if not image_urls:
            raise ProviderError("Provider response contained no image URLs")

        return ProviderResult(
            output=f"Generated {len(image_urls)} image(s)",
            image_urls=image_urls,
            revised_prompt=response.data[0].revised_prompt
        )


def build_messages(task: GenerationTask) -> List[Dict[str, Any]]:
    """Chat messages for a task.

    Vision tasks send one user message whose content is a text block
    followed by an image_url block.
    """
    if task.kind is GenerationKind.VISION:
        return [{
            "role": "user",
            "content": [
                {"type": "text", "text": task.rendered_prompt},
                {
                    "type": "image_url",
                    "image_url": {"url": task.image_url, "detail": task.image_detail}
                }
            ]
        }]
    return [{"role": "user", "content": task.rendered_prompt}]
