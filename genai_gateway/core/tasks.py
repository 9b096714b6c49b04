"""
Generation requests, tasks and the per-variant prompt rules.

Every public variant turns a caller request into one GenerationTask and
hands it to the orchestrator. Variants differ only in how they render the
prompt and which parameters they force.
"""

import base64
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .errors import ValidationError

ANONYMOUS_ACTOR = "anonymous"

MAX_TEXT_PROMPT_LENGTH = 2000
MAX_IMAGE_PROMPT_LENGTH = 1000

SUMMARY_PREFIX = "Please provide a concise summary of the following text:\n\n"
CREATIVE_PREFIX = "Be creative and imaginative in your response to: "
ANALYSIS_PREFIX = (
    "Please analyze the following text in detail, including tone, themes, "
    "and key insights:\n\n"
)
DEFAULT_VISION_PROMPT = (
    "Please analyze this image in detail, describing what you see, including "
    "objects, people, colors, composition, and any notable features."
)

SUMMARY_MAX_TOKENS = 300
SUMMARY_TEMPERATURE = 0.3
CREATIVE_MAX_TOKENS = 800
CREATIVE_TEMPERATURE = 0.9
ANALYSIS_MAX_TOKENS = 600
ANALYSIS_TEMPERATURE = 0.2

ALLOWED_IMAGE_TYPES = ("image/jpeg", "image/png", "image/gif", "image/webp")
MAX_IMAGE_BYTES = 10 * 1024 * 1024

IMAGE_SIZES = ("256x256", "512x512", "1024x1024", "1792x1024", "1024x1792")
IMAGE_QUALITIES = ("standard", "hd")
IMAGE_STYLES = ("vivid", "natural")


class GenerationKind(Enum):
    """Which provider endpoint a task goes to."""
    TEXT = "text"
    VISION = "vision"
    IMAGE_GENERATION = "image_generation"


def resolve_actor(actor_id: Optional[str]) -> str:
    """Caller identity, falling back to the anonymous sentinel."""
    if actor_id is None or not actor_id.strip():
        return ANONYMOUS_ACTOR
    return actor_id


def _check_prompt(prompt: Optional[str], max_length: int) -> None:
    if prompt is None or not prompt.strip():
        raise ValidationError("Prompt cannot be blank")
    if len(prompt) > max_length:
        raise ValidationError(f"Prompt cannot exceed {max_length} characters")


def _check_sampling(max_tokens: Optional[int], temperature: Optional[float]) -> None:
    if max_tokens is not None and max_tokens <= 0:
        raise ValidationError("max_tokens must be > 0")
    if temperature is not None and not 0.0 <= temperature <= 2.0:
        raise ValidationError("temperature must be between 0.0 and 2.0")


@dataclass(frozen=True)
class GenerationRequest:
    """Caller input for the text variants."""
    prompt: str
    model: Optional[str] = None
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    actor_id: Optional[str] = None

    def __post_init__(self):
        _check_prompt(self.prompt, MAX_TEXT_PROMPT_LENGTH)
        _check_sampling(self.max_tokens, self.temperature)


@dataclass(frozen=True)
class ImageAnalysisRequest:
    """Caller input for vision analysis.

    image_data is either a URL (image_type="url") or base64 bytes
    (image_type="base64") of media type mime_type.
    """
    image_data: str
    image_type: str = "url"
    mime_type: str = "image/jpeg"
    prompt: Optional[str] = None
    model: Optional[str] = None
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    actor_id: Optional[str] = None

    def __post_init__(self):
        if not self.image_data or not self.image_data.strip():
            raise ValidationError("Image URL or base64 data cannot be blank")
        if self.image_type not in ("url", "base64"):
            raise ValidationError("image_type must be 'url' or 'base64'")
        if self.mime_type not in ALLOWED_IMAGE_TYPES:
            raise ValidationError(
                f"Invalid file type. Allowed types: {', '.join(ALLOWED_IMAGE_TYPES)}"
            )
        if self.prompt is not None:
            _check_prompt(self.prompt, MAX_TEXT_PROMPT_LENGTH)
        _check_sampling(self.max_tokens, self.temperature)

    @classmethod
    def from_bytes(cls, data: bytes, content_type: str, **kwargs) -> "ImageAnalysisRequest":
        """Build a base64 request from an uploaded image file.

        Raises:
            ValidationError: If the file is empty, too large or not an image
        """
        if not data:
            raise ValidationError("No file provided")
        if len(data) > MAX_IMAGE_BYTES:
            raise ValidationError(
                f"File size exceeds maximum allowed size of {MAX_IMAGE_BYTES // 1024 // 1024}MB"
            )
        return cls(
            image_data=base64.b64encode(data).decode("ascii"),
            image_type="base64",
            mime_type=(content_type or "").lower(),
            **kwargs
        )

    @property
    def image_url(self) -> str:
        """URL to embed in the multimodal content block."""
        if self.image_type == "base64":
            return f"data:{self.mime_type};base64,{self.image_data}"
        return self.image_data


@dataclass(frozen=True)
class ImageGenerationRequest:
    """Caller input for image generation."""
    prompt: str
    model: Optional[str] = None
    n: Optional[int] = None
    size: Optional[str] = None
    quality: Optional[str] = None
    style: Optional[str] = None
    actor_id: Optional[str] = None

    def __post_init__(self):
        _check_prompt(self.prompt, MAX_IMAGE_PROMPT_LENGTH)
        if self.n is not None and not 1 <= self.n <= 10:
            raise ValidationError("n must be between 1 and 10")
        if self.size is not None and self.size not in IMAGE_SIZES:
            raise ValidationError(f"size must be one of: {list(IMAGE_SIZES)}")
        if self.quality is not None and self.quality not in IMAGE_QUALITIES:
            raise ValidationError(f"quality must be one of: {list(IMAGE_QUALITIES)}")
        if self.style is not None and self.style not in IMAGE_STYLES:
            raise ValidationError(f"style must be one of: {list(IMAGE_STYLES)}")


@dataclass(frozen=True)
class ImageOptions:
    """Image generation parameters after defaults are applied."""
    n: int = 1
    size: str = "1024x1024"
    quality: str = "standard"
    style: str = "vivid"


@dataclass(frozen=True)
class TaskDefaults:
    """Values used when the caller leaves a parameter unset."""
    model: str = "gpt-3.5-turbo"
    vision_model: str = "gpt-4o"
    image_model: str = "dall-e-3"
    max_tokens: int = 1000
    temperature: float = 0.7


@dataclass(frozen=True)
class GenerationTask:
    """Normalized parameter bundle for one orchestrated generation.

    image_url is set only for VISION tasks, image_options only for
    IMAGE_GENERATION tasks. Image generation has no token or temperature
    parameters.
    """
    actor_id: str
    rendered_prompt: str
    model: str
    kind: GenerationKind
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    image_url: Optional[str] = None
    image_detail: str = "high"
    image_options: Optional[ImageOptions] = None


def _text_task(
    request: GenerationRequest,
    defaults: TaskDefaults,
    rendered_prompt: str,
    max_tokens: Optional[int],
    temperature: Optional[float]
) -> GenerationTask:
    return GenerationTask(
        actor_id=resolve_actor(request.actor_id),
        rendered_prompt=rendered_prompt,
        model=request.model or defaults.model,
        kind=GenerationKind.TEXT,
        max_tokens=max_tokens if max_tokens is not None else defaults.max_tokens,
        temperature=temperature if temperature is not None else defaults.temperature,
    )


def direct_task(request: GenerationRequest, defaults: TaskDefaults) -> GenerationTask:
    """Prompt sent as-is with the caller's parameters."""
    return _text_task(request, defaults, request.prompt, request.max_tokens, request.temperature)


def summary_task(request: GenerationRequest, defaults: TaskDefaults) -> GenerationTask:
    """Concise summary; max_tokens and temperature are always forced."""
    return _text_task(
        request,
        defaults,
        SUMMARY_PREFIX + request.prompt,
        SUMMARY_MAX_TOKENS,
        SUMMARY_TEMPERATURE,
    )


def creative_task(request: GenerationRequest, defaults: TaskDefaults) -> GenerationTask:
    """High-temperature creative writing; caller may still cap max_tokens."""
    max_tokens = request.max_tokens if request.max_tokens is not None else CREATIVE_MAX_TOKENS
    return _text_task(
        request,
        defaults,
        CREATIVE_PREFIX + request.prompt,
        max_tokens,
        CREATIVE_TEMPERATURE,
    )


def analysis_task(request: GenerationRequest, defaults: TaskDefaults) -> GenerationTask:
    """Low-temperature detailed analysis; caller may still cap max_tokens."""
    max_tokens = request.max_tokens if request.max_tokens is not None else ANALYSIS_MAX_TOKENS
    return _text_task(
        request,
        defaults,
        ANALYSIS_PREFIX + request.prompt,
        max_tokens,
        ANALYSIS_TEMPERATURE,
    )


def vision_task(request: ImageAnalysisRequest, defaults: TaskDefaults) -> GenerationTask:
    return GenerationTask(
        actor_id=resolve_actor(request.actor_id),
        rendered_prompt=request.prompt or DEFAULT_VISION_PROMPT,
        model=request.model or defaults.vision_model,
        kind=GenerationKind.VISION,
        max_tokens=request.max_tokens if request.max_tokens is not None else defaults.max_tokens,
        temperature=request.temperature if request.temperature is not None else defaults.temperature,
        image_url=request.image_url,
    )


def image_generation_task(request: ImageGenerationRequest, defaults: TaskDefaults) -> GenerationTask:
    fallback = ImageOptions()
    options = ImageOptions(
        n=request.n if request.n is not None else fallback.n,
        size=request.size or fallback.size,
        quality=request.quality or fallback.quality,
        style=request.style or fallback.style,
    )
    return GenerationTask(
        actor_id=resolve_actor(request.actor_id),
        rendered_prompt=request.prompt,
        model=request.model or defaults.image_model,
        kind=GenerationKind.IMAGE_GENERATION,
        image_options=options,
    )
