"""
SmartNotes Backend — Gemini Service Unit Tests (Mocked)
=========================================================

What:  Tests for GeminiService with a mocked Google Generative AI SDK.
How:   Patches the genai module and the model to simulate success/failure.

What we test:
    ✅ Circuit breaker state machine
    ✅ JSON output parsing (fenced blocks, wrapped arrays, bad confidence)
    ✅ Successful calls return parsed output
    ✅ Failures surface as LLMServiceError and count against the breaker
    ❌ Real API calls (use integration tests for that)
"""

import time

import pytest
from unittest.mock import patch, MagicMock, AsyncMock

from smartnotes.services.gemini_service import (
    CircuitBreaker,
    GeminiService,
    parse_string_list,
    parse_transcription,
)
from smartnotes.exceptions import CircuitBreakerOpenError, LLMServiceError


class TestCircuitBreaker:
    """Tests for the CircuitBreaker resilience pattern."""

    def test_initial_state_is_closed(self):
        cb = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        assert cb.state == "closed"
        assert cb.failure_count == 0

    def test_stays_closed_under_threshold(self):
        cb = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        for _ in range(4):
            cb.record_failure()
        assert cb.state == "closed"
        assert cb.can_execute() is True

    def test_opens_at_threshold(self):
        cb = CircuitBreaker(failure_threshold=3, recovery_timeout=60)
        for _ in range(3):
            cb.record_failure()
        assert cb.state == "open"

    def test_open_circuit_rejects_calls(self):
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=60)
        cb.record_failure()

        with pytest.raises(CircuitBreakerOpenError) as exc_info:
            cb.can_execute()
        assert 0 < exc_info.value.recovery_time <= 60

    def test_half_open_after_recovery_timeout(self):
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=0)
        cb.record_failure()
        time.sleep(0.01)

        assert cb.can_execute() is True
        assert cb.state == "half_open"

    def test_failure_while_half_open_reopens(self):
        cb = CircuitBreaker(failure_threshold=3, recovery_timeout=0)
        for _ in range(3):
            cb.record_failure()
        time.sleep(0.01)
        cb.can_execute()

        cb.record_failure()
        assert cb.state == "open"

    def test_success_resets_failure_count(self):
        cb = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        cb.record_failure()
        cb.record_failure()
        assert cb.failure_count == 2

        cb.record_success()
        assert cb.failure_count == 0
        assert cb.state == "closed"


class TestResponseParsing:

    def test_string_list_from_bare_array(self):
        assert parse_string_list('["a", " b ", ""]') == ["a", "b"]

    def test_string_list_from_wrapped_object(self):
        assert parse_string_list('{"keywords": ["alpha", "beta"]}', key="keywords") == ["alpha", "beta"]

    def test_string_list_from_fenced_block(self):
        raw = '```json\n["one", "two"]\n```'
        assert parse_string_list(raw) == ["one", "two"]

    def test_string_list_rejects_non_array(self):
        with pytest.raises(ValueError):
            parse_string_list('{"other": 1}', key="keywords")

    def test_transcription_clamps_confidence(self):
        text, confidence = parse_transcription('{"text": "hi there", "confidence": 1.7}')
        assert text == "hi there"
        assert confidence == 1.0

    def test_transcription_defaults(self):
        text, confidence = parse_transcription('{"text": "", "confidence": "unknown"}')
        assert text == "Unable to transcribe audio"
        assert confidence == 0.5

    @pytest.mark.parametrize("raw", ['{"text": "hi", "confidence": 0}', '{"text": "hi"}'])
    def test_transcription_without_reported_confidence(self, raw):
        assert parse_transcription(raw) == ("hi", 0.5)


class TestGeminiServiceMocked:
    """Tests for GeminiService with mocked Gemini API."""

    def _service_with_response(self, mock_genai, text):
        mock_response = MagicMock()
        mock_response.text = text
        mock_model = MagicMock()
        mock_model.generate_content_async = AsyncMock(return_value=mock_response)
        mock_genai.GenerativeModel.return_value = mock_model
        service = GeminiService()
        service.model = mock_model
        return service, mock_model

    @pytest.mark.asyncio
    async def test_summarize_success(self):
        with patch('smartnotes.services.gemini_service.genai') as mock_genai:
            service, mock_model = self._service_with_response(mock_genai, "  Short summary.  ")

            result = await service.summarize("Long meeting notes")

            assert result == "Short summary."
            mock_model.generate_content_async.assert_awaited_once()
            assert service.circuit_breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_extract_keywords_lowercases(self):
        with patch('smartnotes.services.gemini_service.genai') as mock_genai:
            service, _ = self._service_with_response(mock_genai, '["Budget", "Q3 Planning"]')

            assert await service.extract_keywords("text") == ["budget", "q3 planning"]

    @pytest.mark.asyncio
    async def test_unparseable_output_raises_llm_error(self):
        with patch('smartnotes.services.gemini_service.genai') as mock_genai:
            service, _ = self._service_with_response(mock_genai, "not json at all")

            with pytest.raises(LLMServiceError) as exc_info:
                await service.extract_action_items("text")
            assert exc_info.value.context["operation"] == "actions"
            assert service.circuit_breaker.failure_count == 1

    @pytest.mark.asyncio
    async def test_api_failure_wrapped(self):
        with patch('smartnotes.services.gemini_service.genai') as mock_genai:
            service, mock_model = self._service_with_response(mock_genai, "")
            mock_model.generate_content_async.side_effect = RuntimeError("invalid argument")

            with pytest.raises(LLMServiceError):
                await service.summarize("text")
            # Non-transient errors are not retried
            assert mock_model.generate_content_async.await_count == 1

    @pytest.mark.asyncio
    async def test_circuit_breaker_open_blocks_calls(self):
        with patch('smartnotes.services.gemini_service.genai') as mock_genai:
            service, mock_model = self._service_with_response(mock_genai, "unused")
            for _ in range(service.circuit_breaker.failure_threshold):
                service.circuit_breaker.record_failure()

            with pytest.raises(CircuitBreakerOpenError):
                await service.summarize("text")
            mock_model.generate_content_async.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_embed_batches_and_task_type(self):
        with patch('smartnotes.services.gemini_service.genai') as mock_genai:
            mock_genai.embed_content.return_value = {"embedding": [[0.1, 0.2], [0.3, 0.4]]}
            service = GeminiService()

            vectors = await service.embed(["first", "second"])

            assert vectors == [[0.1, 0.2], [0.3, 0.4]]
            assert mock_genai.embed_content.call_args.kwargs["task_type"] == "retrieval_document"

    @pytest.mark.asyncio
    async def test_embed_single_query_vector(self):
        with patch('smartnotes.services.gemini_service.genai') as mock_genai:
            mock_genai.embed_content.return_value = {"embedding": [0.5, 0.5]}
            service = GeminiService()

            vectors = await service.embed(["query"], for_query=True)

            assert vectors == [[0.5, 0.5]]
            assert mock_genai.embed_content.call_args.kwargs["task_type"] == "retrieval_query"

    @pytest.mark.asyncio
    async def test_embed_empty_input_skips_api(self):
        with patch('smartnotes.services.gemini_service.genai') as mock_genai:
            service = GeminiService()
            assert await service.embed([]) == []
            mock_genai.embed_content.assert_not_called()

    @pytest.mark.asyncio
    async def test_health_check_returns_bool(self):
        with patch('smartnotes.services.gemini_service.genai') as mock_genai:
            mock_genai.list_models.side_effect = RuntimeError("no network")

            service = GeminiService()
            assert await service.health_check() is False
