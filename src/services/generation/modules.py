"""Registry of generatable interview modules."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel

from schemas.interviews import (
    MCQsOutput,
    OpeningBriefOutput,
    RapidFireOutput,
    RevisionTopicsOutput,
    TopicRegenerationOutput,
)


ModuleKind = Literal["list", "brief", "topic"]


@dataclass(frozen=True, slots=True)
class ModuleSpec:
    """How one module is generated, streamed and persisted.

    Attributes:
        name: Wire name of the module (``mcqs``, ``revisionTopics`` ...).
        kind: ``list`` modules append deduplicated items, ``brief`` replaces a
            single object, ``topic`` rewrites one revision topic.
        output_type: Structured output requested from the model.
        column: Interview attribute the result is written to.
        items_field: Field of ``output_type`` holding the list items.
        label_field: Item field summarised in prompts to avoid repeats.
        initial_count: Items requested by a first generation.
        add_more_count: Items requested by "add more".
    """

    name: str
    kind: ModuleKind
    output_type: type[BaseModel]
    column: str
    items_field: str | None = None
    label_field: str | None = None
    initial_count: int | None = None
    add_more_count: int | None = None

    @property
    def is_list(self) -> bool:
        return self.kind == "list"

    def items(self, output: Any) -> list[Any]:
        """List items of a (possibly partial) output; empty for non-list modules."""
        if self.items_field is None or output is None:
            return []
        return list(getattr(output, self.items_field, None) or [])

    def select(self, output: Any) -> Any:
        """JSON-ready payload of a content frame for ``output``."""
        if output is None:
            return None
        if self.kind == "list":
            return [_dump(item) for item in self.items(output)]
        if self.kind == "topic":
            return getattr(output, "content", None)
        return _dump(output)


def _dump(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return value


OPENING_BRIEF = ModuleSpec(
    name="openingBrief",
    kind="brief",
    output_type=OpeningBriefOutput,
    column="opening_brief",
)
REVISION_TOPICS = ModuleSpec(
    name="revisionTopics",
    kind="list",
    output_type=RevisionTopicsOutput,
    column="revision_topics",
    items_field="topics",
    label_field="title",
    initial_count=8,
    add_more_count=5,
)
MCQS = ModuleSpec(
    name="mcqs",
    kind="list",
    output_type=MCQsOutput,
    column="mcqs",
    items_field="mcqs",
    label_field="question",
    initial_count=10,
    add_more_count=5,
)
RAPID_FIRE = ModuleSpec(
    name="rapidFire",
    kind="list",
    output_type=RapidFireOutput,
    column="rapid_fire",
    items_field="questions",
    label_field="question",
    initial_count=20,
    add_more_count=10,
)
TOPIC_REGENERATION = ModuleSpec(
    name="revisionTopics",
    kind="topic",
    output_type=TopicRegenerationOutput,
    column="revision_topics",
)

MODULES: dict[str, ModuleSpec] = {
    spec.name: spec for spec in (OPENING_BRIEF, REVISION_TOPICS, MCQS, RAPID_FIRE)
}
LIST_MODULES: dict[str, ModuleSpec] = {
    name: spec for name, spec in MODULES.items() if spec.is_list
}


def add_more_key(module: str) -> str:
    return f"addMore_{module}"


def topic_key(topic_id: str) -> str:
    return f"topic_{topic_id}"


def is_known_module_key(module_key: str) -> bool:
    """Whether ``module_key`` names a stream this service can produce."""
    if module_key in MODULES:
        return True
    if module_key.startswith("addMore_"):
        return module_key[len("addMore_") :] in LIST_MODULES
    return module_key.startswith("topic_") and len(module_key) > len("topic_")
