"""Prompt construction for interview content generation."""

from __future__ import annotations

from services.ai.interfaces import GenerationContext
from services.generation.modules import ModuleSpec


SYSTEM_PROMPTS: dict[str, str] = {
    "openingBrief": (
        "You are an interview coach. Write a concise opening brief in markdown "
        "for the candidate: what the role needs, how their background matches "
        "(experience_match, 0-100), the key skills to review and a realistic "
        "prep_time estimate."
    ),
    "revisionTopics": (
        "You are an interview coach. Produce revision topics the candidate "
        "should study for this role. Each topic needs a short unique id, a "
        "title, a markdown explanation, the reason it matters and your "
        "confidence that it will come up."
    ),
    "mcqs": (
        "You are an interview coach. Produce multiple-choice questions with "
        "exactly four options each, the correct option copied verbatim into "
        "answer and a short explanation. Give every question a short unique id."
    ),
    "rapidFire": (
        "You are an interview coach. Produce short rapid-fire questions with "
        "one-line answers. Give every question a short unique id."
    ),
    "topic": (
        "You are an interview coach. Rewrite the explanation of a single "
        "revision topic in markdown using the requested style."
    ),
}

STYLE_GUIDANCE: dict[str, str] = {
    "professional": "Use precise, professional language suitable for a senior engineer.",
    "construction": (
        "Explain with analogies from building and construction so the ideas "
        "feel concrete."
    ),
    "simple": "Explain in plain, simple language as if to a beginner.",
}


def system_prompt_for(spec: ModuleSpec) -> str:
    return SYSTEM_PROMPTS["topic" if spec.kind == "topic" else spec.name]


def build_user_prompt(
    spec: ModuleSpec, context: GenerationContext, count: int | None
) -> str:
    """Assemble the user prompt from the interview context."""
    job = context.job_details
    lines = [
        f"Role: {job.title} at {job.company}",
    ]
    if job.programming_language:
        lines.append(f"Primary programming language: {job.programming_language}")
    if job.description:
        lines.append(f"Job description:\n{job.description}")
    if context.resume_context:
        lines.append(f"Candidate background:\n{context.resume_context}")

    if spec.kind == "topic" and context.topic is not None:
        lines.append(f"Topic: {context.topic.title}")
        lines.append(f"Current explanation:\n{context.topic.content}")
        if context.style:
            lines.append(STYLE_GUIDANCE.get(context.style, ""))
    elif count is not None:
        lines.append(f"Generate exactly {count} new items.")

    if context.existing_items:
        listed = "\n".join(f"- {item}" for item in context.existing_items)
        lines.append(f"Do not repeat any of these existing items:\n{listed}")
    if context.custom_instructions:
        lines.append(f"Candidate preferences: {context.custom_instructions}")
    if context.instructions:
        lines.append(f"Additional instructions: {context.instructions}")

    return "\n\n".join(line for line in lines if line)
