"""
Gateway entry points: admission control in front of the orchestrator.

Build one Gateway per process with build_gateway() and share it.
"""

import dataclasses
from typing import Callable, Optional

import structlog

from ..config.loader import GatewayConfig
from ..sdk.openai_client import ProviderClient
from ..storage.repository import UsageRepository, initialize_schema
from .accounting import UsageAccountant
from .errors import AdmissionRejected
from .orchestrator import GenerationOrchestrator
from .rate_limiter import RateLimiter
from .responses import GenerationResponse
from .tasks import (
    GenerationRequest,
    ImageAnalysisRequest,
    ImageGenerationRequest,
    resolve_actor,
)

logger = structlog.get_logger(__name__)

TEXT_VARIANTS = ("direct", "summarize", "creative", "analyze")


class Gateway:
    """Rate-limited access to every generation variant.

    Each call checks the caller's window first. A rejected call raises
    AdmissionRejected and never reaches the orchestrator, so no record is
    written for it. Admitted calls return the orchestrator's response with
    the caller's remaining quota and window reset time attached.
    """

    def __init__(
        self,
        rate_limiter: RateLimiter,
        orchestrator: GenerationOrchestrator,
        accountant: UsageAccountant,
    ):
        self.rate_limiter = rate_limiter
        self.orchestrator = orchestrator
        self.accountant = accountant

    def generate(self, request: GenerationRequest, variant: str = "direct") -> GenerationResponse:
        """Run one of the text variants: direct, summarize, creative, analyze."""
        handlers = {
            "direct": self.orchestrator.generate,
            "summarize": self.orchestrator.summarize,
            "creative": self.orchestrator.create,
            "analyze": self.orchestrator.analyze,
        }
        if variant not in handlers:
            raise ValueError(f"Unknown variant '{variant}'. Expected one of: {list(TEXT_VARIANTS)}")
        return self._admit_and_run(request.actor_id, lambda: handlers[variant](request))

    def analyze_image(self, request: ImageAnalysisRequest) -> GenerationResponse:
        return self._admit_and_run(
            request.actor_id, lambda: self.orchestrator.analyze_image(request)
        )

    def generate_image(self, request: ImageGenerationRequest) -> GenerationResponse:
        return self._admit_and_run(
            request.actor_id, lambda: self.orchestrator.generate_image(request)
        )

    def cleanup(self) -> int:
        """Periodic maintenance hook; drops stale rate-limit windows.

        Failures are logged so a scheduler calling this keeps running.
        """
        try:
            return self.rate_limiter.cleanup()
        except Exception:
            logger.exception("rate_limit_cleanup_failed")
            return 0

    def _admit_and_run(
        self,
        actor_id: Optional[str],
        run: Callable[[], GenerationResponse]
    ) -> GenerationResponse:
        actor = resolve_actor(actor_id)
        if not self.rate_limiter.is_allowed(actor):
            raise AdmissionRejected(
                actor,
                remaining=self.rate_limiter.get_remaining(actor),
                reset_time=self.rate_limiter.get_reset_time(actor),
            )

        response = run()
        return dataclasses.replace(
            response,
            remaining=self.rate_limiter.get_remaining(actor),
            reset_time=self.rate_limiter.get_reset_time(actor),
        )


def build_gateway(config: Optional[GatewayConfig] = None) -> Gateway:
    """Wire a Gateway from configuration and make sure the schema exists."""
    config = config or GatewayConfig.default()
    db_path = config.storage.db_path
    initialize_schema(db_path)

    rate_limiter = RateLimiter(
        limit=config.rate_limit.requests_per_window,
        window_seconds=config.rate_limit.window_seconds,
        enabled=config.rate_limit.enabled,
        stale_after_seconds=config.rate_limit.stale_after_seconds,
    )
    provider = ProviderClient(
        api_key=config.provider.api_key,
        base_url=config.provider.base_url,
        timeout_seconds=config.provider.timeout_seconds,
    )
    accountant = UsageAccountant(UsageRepository(db_path))
    orchestrator = GenerationOrchestrator(
        provider,
        accountant,
        db_path=db_path,
        defaults=config.provider.task_defaults(),
    )
    return Gateway(rate_limiter, orchestrator, accountant)
