"""pydantic-ai backed generator for interview content."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager
from typing import Any

from pydantic_ai import Agent
from pydantic_ai.models import Model

from services.ai.interfaces import GenerationContext, GenerationUsage
from services.ai.model_factory import get_generation_model
from services.ai.prompts import build_user_prompt, system_prompt_for
from services.generation.modules import ModuleSpec


logger = logging.getLogger(__name__)

ModelProvider = Callable[[str | None], Model]


def create_generation_agent(spec: ModuleSpec) -> Agent[None, Any]:
    """Create a pydantic-ai agent producing ``spec.output_type``.

    The model is supplied per run so a bring-your-own-key request can use a
    differently keyed model with the same agent.
    """
    return Agent(
        output_type=spec.output_type,
        system_prompt=system_prompt_for(spec),
    )


class PydanticAIGenerationRun:
    """Streams one structured output from a pydantic-ai agent."""

    def __init__(self, agent: Agent[None, Any], prompt: str, model: Model) -> None:
        self._agent = agent
        self._prompt = prompt
        self._model = model
        self._stream_cm: AbstractAsyncContextManager[Any] | None = None
        self._result: Any | None = None
        self.model_id: str = getattr(model, "model_name", "unknown")

    async def __aenter__(self) -> PydanticAIGenerationRun:
        self._stream_cm = self._agent.run_stream(self._prompt, model=self._model)
        self._result = await self._stream_cm.__aenter__()
        return self

    async def __aexit__(self, *exc_info: Any) -> bool | None:
        if self._stream_cm is None:
            return None
        return await self._stream_cm.__aexit__(*exc_info)

    async def partials(self) -> AsyncIterator[Any]:
        if self._result is None:
            raise RuntimeError("Generation run has not been entered")
        async for output in self._result.stream_output(debounce_by=None):
            yield output

    async def result(self) -> Any:
        if self._result is None:
            raise RuntimeError("Generation run has not been entered")
        return await self._result.get_output()

    @property
    def usage(self) -> GenerationUsage:
        if self._result is None:
            return GenerationUsage()
        usage = self._result.usage()
        return GenerationUsage(
            input_tokens=getattr(usage, "input_tokens", 0) or 0,
            output_tokens=getattr(usage, "output_tokens", 0) or 0,
        )


class PydanticAIGenerator:
    """Production generator: one cached agent per module spec."""

    def __init__(self, model_provider: ModelProvider | None = None) -> None:
        self._model_provider: ModelProvider = model_provider or (
            lambda api_key: get_generation_model(api_key)
        )
        self._agents: dict[ModuleSpec, Agent[None, Any]] = {}

    def _agent_for(self, spec: ModuleSpec) -> Agent[None, Any]:
        agent = self._agents.get(spec)
        if agent is None:
            agent = create_generation_agent(spec)
            self._agents[spec] = agent
        return agent

    def generate(
        self,
        spec: ModuleSpec,
        context: GenerationContext,
        count: int | None,
        *,
        api_key: str | None = None,
    ) -> PydanticAIGenerationRun:
        prompt = build_user_prompt(spec, context, count)
        model = self._model_provider(api_key)
        logger.debug("Starting %s generation (count=%s)", spec.name, count)
        return PydanticAIGenerationRun(self._agent_for(spec), prompt, model)
