"""
Unit tests for the generation orchestrator.

Tests the record lifecycle, usage accounting and response envelopes for
every variant, with the provider mocked and a real SQLite database.
"""

import os
import tempfile
from datetime import date
from unittest.mock import Mock, patch

import pytest

from genai_gateway.core.accounting import UsageAccountant
from genai_gateway.core.errors import ProviderError
from genai_gateway.core.orchestrator import GenerationOrchestrator
from genai_gateway.core.tasks import (
    GenerationKind,
    GenerationRequest,
    ImageAnalysisRequest,
    ImageGenerationRequest,
    TaskDefaults,
)
from genai_gateway.core.token_counter import TokenUsage
from genai_gateway.sdk.openai_client import ProviderClient, ProviderResult
from genai_gateway.storage.models import GenerationStatus
from genai_gateway.storage.repository import (
    UsageRepository,
    fetch_generation_records,
    initialize_schema,
)

TODAY = date(2024, 6, 1)


class TestGenerationOrchestrator:
    """Test execute() and the variant entry points."""

    def setup_method(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self.temp_dir.name, "test.db")
        initialize_schema(self.db_path)

        self.provider = Mock(spec=ProviderClient)
        self.provider.run.return_value = ProviderResult(
            output="Generated text",
            usage=TokenUsage(prompt_tokens=20, completion_tokens=30)
        )
        self.repository = UsageRepository(self.db_path)
        self.accountant = UsageAccountant(self.repository, today=lambda: TODAY)
        self.orchestrator = GenerationOrchestrator(
            self.provider,
            self.accountant,
            db_path=self.db_path,
            defaults=TaskDefaults(model="gpt-3.5-turbo", max_tokens=1000, temperature=0.7)
        )

    def teardown_method(self):
        self.temp_dir.cleanup()

    def _records(self):
        return fetch_generation_records(db_path=self.db_path)

    def _sent_task(self):
        return self.provider.run.call_args[0][0]

    def test_success_completes_record(self):
        response = self.orchestrator.generate(GenerationRequest(prompt="Hello", actor_id="u1"))

        assert response.status == "success"
        assert response.ok
        assert response.output == "Generated text"
        assert response.model == "gpt-3.5-turbo"
        assert response.tokens_used == 50
        assert response.error is None

        [record] = self._records()
        assert record.status == GenerationStatus.SUCCESS
        assert record.actor_id == "u1"
        assert record.rendered_prompt == "Hello"
        assert record.output == "Generated text"
        assert record.tokens_used == 50
        assert record.processing_time_ms is not None
        assert record.error_message is None

    def test_success_updates_usage(self):
        self.orchestrator.generate(GenerationRequest(prompt="Hello", actor_id="u1"))

        usage = self.repository.get_usage("u1", TODAY)
        assert usage.requests_count == 1
        assert usage.successful_requests == 1
        assert usage.tokens_used == 50

    def test_provider_failure_yields_error_record(self):
        """A failed call ends in ERROR with zero tokens accounted."""
        self.provider.run.side_effect = ProviderError("Request timed out.")

        response = self.orchestrator.generate(GenerationRequest(prompt="Hello", actor_id="u1"))

        assert response.status == "error"
        assert not response.ok
        assert response.error == "Failed to generate AI response: Request timed out."
        assert response.output is None

        [record] = self._records()
        assert record.status == GenerationStatus.ERROR
        assert record.error_message == "Request timed out."
        assert record.tokens_used == 0
        assert record.output is None

        usage = self.repository.get_usage("u1", TODAY)
        assert usage.failed_requests == 1
        assert usage.successful_requests == 0
        assert usage.tokens_used == 0

    def test_unexpected_exception_is_contained(self):
        """Any exception from the provider becomes an error response."""
        self.provider.run.side_effect = KeyError("choices")

        response = self.orchestrator.generate(GenerationRequest(prompt="Hello"))

        assert response.status == "error"
        [record] = self._records()
        assert record.status == GenerationStatus.ERROR
        assert record.actor_id == "anonymous"

    def test_unusable_usage_counts_end_in_error(self):
        """Token counts that cannot be summed fail the call, not the caller."""
        self.provider.run.return_value = ProviderResult(
            output="Generated text",
            usage=TokenUsage(prompt_tokens=None, completion_tokens=5)
        )

        response = self.orchestrator.generate(GenerationRequest(prompt="hello", actor_id="u1"))

        assert response.status == "error"
        assert response.error.startswith("Failed to generate AI response: ")
        [record] = self._records()
        assert record.status == GenerationStatus.ERROR
        assert record.tokens_used == 0
        usage = self.repository.get_usage("u1", TODAY)
        assert usage.failed_requests == 1
        assert usage.tokens_used == 0

    def test_no_pending_record_left_behind(self):
        self.orchestrator.generate(GenerationRequest(prompt="one"))
        self.provider.run.side_effect = ProviderError("boom")
        self.orchestrator.generate(GenerationRequest(prompt="two"))

        statuses = sorted(r.status.value for r in self._records())
        assert statuses == ["error", "success"]

    @patch('genai_gateway.core.orchestrator.update_generation_record')
    @patch('genai_gateway.core.orchestrator.insert_generation_record')
    def test_exactly_two_record_writes(self, mock_insert, mock_update):
        """One write before the call and one after, on both paths."""
        self.orchestrator.generate(GenerationRequest(prompt="Hello"))
        assert mock_insert.call_count == 1
        assert mock_update.call_count == 1
        assert mock_update.call_args[0][0].status == GenerationStatus.SUCCESS

        self.provider.run.side_effect = ProviderError("boom")
        self.orchestrator.generate(GenerationRequest(prompt="Hello"))
        assert mock_insert.call_count == 2
        assert mock_update.call_count == 2
        assert mock_update.call_args[0][0].status == GenerationStatus.ERROR

    @patch('genai_gateway.core.orchestrator.insert_generation_record')
    def test_record_store_failure_skips_provider(self, mock_insert):
        """If the pending row cannot be written the provider is never called."""
        mock_insert.side_effect = Exception("disk I/O error")

        with pytest.raises(Exception, match="disk I/O error"):
            self.orchestrator.generate(GenerationRequest(prompt="Hello"))

        self.provider.run.assert_not_called()

    def test_accounting_failure_does_not_change_outcome(self):
        with patch.object(self.repository, 'upsert_usage', side_effect=Exception("locked")):
            response = self.orchestrator.generate(GenerationRequest(prompt="Hello"))

        assert response.status == "success"
        [record] = self._records()
        assert record.status == GenerationStatus.SUCCESS

    def test_summary_forces_parameters(self):
        """Caller temperature 0.9 and max_tokens 50 are replaced."""
        self.orchestrator.summarize(
            GenerationRequest(prompt="hello", temperature=0.9, max_tokens=50)
        )

        task = self._sent_task()
        assert task.temperature == 0.3
        assert task.max_tokens == 300
        assert "hello" in task.rendered_prompt

        [record] = self._records()
        assert record.temperature == 0.3
        assert record.max_tokens == 300
        assert record.rendered_prompt == task.rendered_prompt

    def test_creative_and_analyze(self):
        self.orchestrator.create(GenerationRequest(prompt="a poem"))
        assert self._sent_task().temperature == 0.9
        assert self._sent_task().max_tokens == 800

        self.orchestrator.analyze(GenerationRequest(prompt="a memo", max_tokens=100))
        assert self._sent_task().temperature == 0.2
        assert self._sent_task().max_tokens == 100

    def test_vision_response(self):
        response = self.orchestrator.analyze_image(
            ImageAnalysisRequest(image_data="https://example.com/cat.png", actor_id="u1")
        )

        task = self._sent_task()
        assert task.kind == GenerationKind.VISION
        assert task.image_url == "https://example.com/cat.png"
        assert response.type == "analysis"
        assert response.tokens_used == 50

    def test_vision_failure_message(self):
        self.provider.run.side_effect = ProviderError("invalid image")

        response = self.orchestrator.analyze_image(
            ImageAnalysisRequest(image_data="https://example.com/cat.png")
        )

        assert response.error == "Failed to analyze image: invalid image"
        assert response.type == "analysis"

    def test_image_generation_response(self):
        self.provider.run.return_value = ProviderResult(
            output="Generated 2 image(s)",
            image_urls=["https://img/1.png", "https://img/2.png"],
            revised_prompt="a fox, detailed"
        )

        response = self.orchestrator.generate_image(
            ImageGenerationRequest(prompt="a fox", n=2, actor_id="u1")
        )

        assert response.status == "success"
        assert response.type == "generation"
        assert response.image_urls == ["https://img/1.png", "https://img/2.png"]
        assert response.revised_prompt == "a fox, detailed"
        assert response.tokens_used is None
        assert response.model == "dall-e-3"

        [record] = self._records()
        assert record.output == "Generated 2 image(s)"
        assert record.tokens_used == 0
        assert self.repository.get_usage("u1", TODAY).tokens_used == 0

    def test_image_generation_failure_message(self):
        self.provider.run.side_effect = ProviderError("rejected by safety system")

        response = self.orchestrator.generate_image(ImageGenerationRequest(prompt="a fox"))

        assert response.error == "Failed to generate image: rejected by safety system"

    def test_response_ids_are_fresh(self):
        first = self.orchestrator.generate(GenerationRequest(prompt="a"))
        second = self.orchestrator.generate(GenerationRequest(prompt="b"))
        assert first.id != second.id

    def test_error_envelope_to_dict(self):
        self.provider.run.side_effect = ProviderError("boom")
        body = self.orchestrator.generate(GenerationRequest(prompt="a")).to_dict()

        assert body["status"] == "error"
        assert body["error"] == "Failed to generate AI response: boom"
        assert "output" not in body
        assert "id" in body
