"""Interview content schemas.

These describe both what is persisted in an interview's module columns and
what the language model is asked to produce. List items carry a string `id`
chosen by the model; the deduplicator relies on it.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


TopicStyle = Literal["professional", "construction", "simple"]
TOPIC_STYLES: tuple[str, ...] = ("professional", "construction", "simple")


class JobDetails(BaseModel):
    """Job the interview is for."""

    title: str = Field(..., min_length=1)
    company: str = Field(..., min_length=1)
    description: str = ""
    programming_language: str | None = None


class MCQ(BaseModel):
    id: str = Field(..., description="Stable identifier for the question")
    question: str
    options: list[str] = Field(..., min_length=4, max_length=4)
    answer: str = Field(..., description="The correct option, verbatim")
    explanation: str = ""
    source: Literal["ai", "search"] = "ai"


class RapidFire(BaseModel):
    id: str
    question: str
    answer: str


class RevisionTopic(BaseModel):
    id: str
    title: str
    content: str = Field(..., description="Markdown explanation of the topic")
    style: TopicStyle = "professional"
    reason: str = Field(default="", description="Why this topic matters for the job")
    confidence: Literal["low", "medium", "high"] = "medium"
    status: Literal["not_started", "in_progress", "completed"] = "not_started"
    style_cache: dict[str, str] | None = Field(
        default=None,
        description="Previously generated explanations keyed by style",
    )


class OpeningBrief(BaseModel):
    content: str = Field(..., description="Markdown brief")
    experience_match: int = Field(..., ge=0, le=100)
    key_skills: list[str] = Field(default_factory=list)
    prep_time: str = ""
    version: int = Field(default=1, ge=1)


# --------------------------------------------------------------------------- #
# Model output types
# --------------------------------------------------------------------------- #


class OpeningBriefOutput(BaseModel):
    """Opening brief as produced by the model (versioning is server-side)."""

    content: str
    experience_match: int = Field(..., ge=0, le=100)
    key_skills: list[str] = Field(default_factory=list)
    prep_time: str = ""


class RevisionTopicsOutput(BaseModel):
    topics: list[RevisionTopic] = Field(default_factory=list)


class MCQsOutput(BaseModel):
    mcqs: list[MCQ] = Field(default_factory=list)


class RapidFireOutput(BaseModel):
    questions: list[RapidFire] = Field(default_factory=list)


class TopicRegenerationOutput(BaseModel):
    content: str = Field(..., description="Markdown explanation in the requested style")
