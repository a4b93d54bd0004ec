"""Provenance logging for language-model requests.

Records which model served a request, how long it took, time to first token,
token usage and whether the caller brought their own key. Failures to write a
record are logged and never affect the generation they describe.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from crud.ai_request_logs import AIRequestLogCRUD, ai_request_log_crud
from services.ai.interfaces import GenerationUsage


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class LoggerContext:
    """Timing state for one model request."""

    action: str
    user_id: UUID
    interview_id: UUID | None = None
    module_key: str | None = None
    byok: bool = False
    clock: Callable[[], float] = time.perf_counter
    started_at: float = field(init=False)
    first_token_at: float | None = field(default=None, init=False)

    def __post_init__(self) -> None:
        self.started_at = self.clock()

    def mark_first_token(self) -> None:
        if self.first_token_at is None:
            self.first_token_at = self.clock()

    def get_latency_ms(self) -> int:
        return int((self.clock() - self.started_at) * 1000)

    def get_time_to_first_token_ms(self) -> int | None:
        if self.first_token_at is None:
            return None
        return int((self.first_token_at - self.started_at) * 1000)


async def log_ai_request(
    db: AsyncSession,
    context: LoggerContext,
    *,
    model_id: str,
    status: str,
    usage: GenerationUsage | None = None,
    error_message: str | None = None,
    items_generated: int | None = None,
    items_added: int | None = None,
    crud: AIRequestLogCRUD = ai_request_log_crud,
) -> None:
    """Persist a provenance record for ``context``."""
    usage = usage or GenerationUsage()
    try:
        await crud.create(
            db,
            user_id=context.user_id,
            interview_id=context.interview_id,
            action=context.action,
            module_key=context.module_key,
            model_id=model_id,
            status=status,
            error_message=error_message,
            byok=context.byok,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            latency_ms=context.get_latency_ms(),
            time_to_first_token_ms=context.get_time_to_first_token_ms(),
            items_generated=items_generated,
            items_added=items_added,
        )
    except Exception:
        logger.exception(
            "Failed to record AI request log for %s (%s)",
            context.action,
            context.module_key,
        )
        return

    logger.info(
        "AI request %s %s: model=%s status=%s latency=%dms tokens=%d",
        context.action,
        context.module_key,
        model_id,
        status,
        context.get_latency_ms(),
        usage.total_tokens,
    )
