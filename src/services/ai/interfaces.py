"""Interfaces for the language-model generator used by the orchestrator.

The orchestrator only depends on these protocols, so tests can substitute a
scripted generator and production wires in the pydantic-ai implementation.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from schemas.interviews import JobDetails, RevisionTopic


if TYPE_CHECKING:
    from services.generation.modules import ModuleSpec


@dataclass(slots=True)
class GenerationUsage:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(slots=True)
class GenerationContext:
    """Everything the prompt needs about the interview and the request."""

    job_details: JobDetails
    resume_context: str | None = None
    custom_instructions: str | None = None
    instructions: str | None = None
    existing_items: list[str] = field(default_factory=list)
    topic: RevisionTopic | None = None
    style: str | None = None


class GenerationRun(Protocol):
    """One model invocation, used as an async context manager.

    `partials()` is single-pass and non-restartable. `result()` is only valid
    after the partials have been exhausted.
    """

    model_id: str

    async def __aenter__(self) -> GenerationRun: ...

    async def __aexit__(self, *exc_info: Any) -> bool | None: ...

    def partials(self) -> AsyncIterator[Any]: ...

    async def result(self) -> Any: ...

    @property
    def usage(self) -> GenerationUsage: ...


class GeneratorProtocol(Protocol):
    """Factory of generation runs."""

    def generate(
        self,
        spec: ModuleSpec,
        context: GenerationContext,
        count: int | None,
        *,
        api_key: str | None = None,
    ) -> GenerationRun: ...
