"""Model-backed generation services."""

from .agents import PydanticAIGenerator, create_generation_agent


__all__ = [
    "PydanticAIGenerator",
    "create_generation_agent",
]
