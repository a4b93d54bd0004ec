"""Tests for AI request provenance logging."""

from __future__ import annotations

import uuid
from typing import Any

import pytest

from services.ai.interfaces import GenerationUsage
from services.ai_logger import LoggerContext, log_ai_request


class FakeClock:
    def __init__(self) -> None:
        self.now = 10.0

    def __call__(self) -> float:
        return self.now


class RecordingCRUD:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.records: list[dict[str, Any]] = []

    async def create(self, db: Any, **fields: Any) -> None:
        if self.error is not None:
            raise self.error
        self.records.append(fields)


class TestLoggerContext:
    def test_latency_and_first_token(self) -> None:
        clock = FakeClock()
        context = LoggerContext(action="GENERATE_MODULE", user_id=uuid.uuid4(), clock=clock)

        assert context.get_time_to_first_token_ms() is None
        clock.now += 0.25
        context.mark_first_token()
        clock.now += 0.5
        context.mark_first_token()

        assert context.get_time_to_first_token_ms() == 250
        assert context.get_latency_ms() == 750


class TestLogAIRequest:
    @pytest.mark.asyncio
    async def test_records_provenance(self) -> None:
        clock = FakeClock()
        user_id = uuid.uuid4()
        context = LoggerContext(
            action="ADD_MORE_CONTENT",
            user_id=user_id,
            module_key="addMore_mcqs",
            byok=True,
            clock=clock,
        )
        clock.now += 1.25
        crud = RecordingCRUD()

        await log_ai_request(
            None,  # type: ignore[arg-type]
            context,
            model_id="test-model",
            status="success",
            usage=GenerationUsage(input_tokens=12, output_tokens=34),
            items_generated=5,
            items_added=4,
            crud=crud,  # type: ignore[arg-type]
        )

        [record] = crud.records
        assert record["user_id"] == user_id
        assert record["module_key"] == "addMore_mcqs"
        assert record["byok"] is True
        assert record["input_tokens"] == 12
        assert record["output_tokens"] == 34
        assert record["latency_ms"] == 1250
        assert record["items_added"] == 4

    @pytest.mark.asyncio
    async def test_write_failure_is_logged_not_raised(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        context = LoggerContext(action="GENERATE_MODULE", user_id=uuid.uuid4())

        await log_ai_request(
            None,  # type: ignore[arg-type]
            context,
            model_id="test-model",
            status="error",
            error_message="boom",
            crud=RecordingCRUD(RuntimeError("db down")),  # type: ignore[arg-type]
        )

        assert "Failed to record AI request log" in caplog.text
