"""
Generation orchestration shared by every variant.

execute() writes the record twice: once as PENDING before the provider
is called, and once more as SUCCESS or ERROR afterwards. Provider failures
are turned into error responses; nothing raised by the provider reaches
the caller.
"""

import time
from datetime import datetime
from typing import Optional

import structlog

from ..sdk.openai_client import ProviderClient, ProviderResult
from ..storage.db import DEFAULT_DB_PATH
from ..storage.models import GenerationRecord
from ..storage.repository import insert_generation_record, update_generation_record
from .accounting import UsageAccountant
from .responses import STATUS_ERROR, STATUS_SUCCESS, GenerationResponse, new_response_id
from .tasks import (
    GenerationKind,
    GenerationRequest,
    GenerationTask,
    ImageAnalysisRequest,
    ImageGenerationRequest,
    TaskDefaults,
    analysis_task,
    creative_task,
    direct_task,
    image_generation_task,
    summary_task,
    vision_task,
)

logger = structlog.get_logger(__name__)

_RESPONSE_TYPES = {
    GenerationKind.TEXT: None,
    GenerationKind.VISION: "analysis",
    GenerationKind.IMAGE_GENERATION: "generation",
}

_FAILURE_PREFIXES = {
    GenerationKind.TEXT: "Failed to generate AI response",
    GenerationKind.VISION: "Failed to analyze image",
    GenerationKind.IMAGE_GENERATION: "Failed to generate image",
}


class GenerationOrchestrator:
    """Runs generation tasks against the provider and keeps the audit trail.

    Args:
        provider: Client for the external generation API
        accountant: Receives one usage entry per executed task
        db_path: Database holding generation records
        defaults: Parameters used when a request leaves them unset
    """

    def __init__(
        self,
        provider: ProviderClient,
        accountant: UsageAccountant,
        db_path: str = DEFAULT_DB_PATH,
        defaults: Optional[TaskDefaults] = None,
    ):
        self.provider = provider
        self.accountant = accountant
        self.db_path = db_path
        self.defaults = defaults or TaskDefaults()

    def generate(self, request: GenerationRequest) -> GenerationResponse:
        return self.execute(direct_task(request, self.defaults))

    def summarize(self, request: GenerationRequest) -> GenerationResponse:
        return self.execute(summary_task(request, self.defaults))

    def create(self, request: GenerationRequest) -> GenerationResponse:
        return self.execute(creative_task(request, self.defaults))

    def analyze(self, request: GenerationRequest) -> GenerationResponse:
        return self.execute(analysis_task(request, self.defaults))

    def analyze_image(self, request: ImageAnalysisRequest) -> GenerationResponse:
        return self.execute(vision_task(request, self.defaults))

    def generate_image(self, request: ImageGenerationRequest) -> GenerationResponse:
        return self.execute(image_generation_task(request, self.defaults))

    def execute(self, task: GenerationTask) -> GenerationResponse:
        """Run one task end to end.

        Raises only if the record store itself fails. Every provider-side
        failure yields a response with status "error".
        """
        record = GenerationRecord(
            actor_id=task.actor_id,
            rendered_prompt=task.rendered_prompt,
            model=task.model,
            temperature=task.temperature,
            max_tokens=task.max_tokens,
            created_at=datetime.now(),
        )
        insert_generation_record(record, self.db_path)
        started = time.perf_counter()

        log = logger.bind(record_id=record.id, actor=task.actor_id, kind=task.kind.value)
        log.info("provider_call_started", model=task.model)

        try:
            result = self.provider.run(task)
            tokens = result.usage.total_tokens
        except Exception as e:
            elapsed_ms = _elapsed_ms(started)
            log.exception("provider_call_failed", elapsed_ms=elapsed_ms)
            record.mark_error(str(e), elapsed_ms)
            update_generation_record(record, self.db_path)
            self.accountant.record(task.actor_id, 0, False, elapsed_ms)
            return GenerationResponse(
                id=new_response_id(),
                status=STATUS_ERROR,
                error=f"{_FAILURE_PREFIXES[task.kind]}: {e}",
                type=_RESPONSE_TYPES[task.kind],
            )

        elapsed_ms = _elapsed_ms(started)
        record.mark_success(result.output, tokens, elapsed_ms)
        update_generation_record(record, self.db_path)
        self.accountant.record(task.actor_id, tokens, True, elapsed_ms)
        log.info("provider_call_succeeded", tokens=tokens, elapsed_ms=elapsed_ms)
        return self._success_response(task, result, tokens)

    def _success_response(self, task: GenerationTask, result: ProviderResult, tokens: int) -> GenerationResponse:
        is_image = task.kind is GenerationKind.IMAGE_GENERATION
        return GenerationResponse(
            id=new_response_id(),
            status=STATUS_SUCCESS,
            model=task.model,
            output=result.output,
            tokens_used=None if is_image else tokens,
            type=_RESPONSE_TYPES[task.kind],
            image_urls=list(result.image_urls),
            revised_prompt=result.revised_prompt,
        )


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
