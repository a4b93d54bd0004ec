"""Shared test fixtures for pytest.

We set minimal env defaults (e.g. SECRET_KEY) early so importing modules
that instantiate settings (core.security) succeeds without needing an
external .env file during tests.

Generation tests run against a scripted generator and in-memory
repositories, so no model provider or database is needed unless a test
builds its own aiosqlite engine.
"""

import asyncio
import json
import os
import uuid
from collections.abc import AsyncGenerator, Generator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient


os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ENVIRONMENT", "test")

from core.config import Settings
from dependencies.auth import get_current_user
from dependencies.db import get_db
from dependencies.generation import get_orchestrator, get_stream_store
from main import app
from models.interviews import Interview
from models.users import User
from schemas.interviews import (
    MCQ,
    MCQsOutput,
    OpeningBriefOutput,
    RapidFire,
    RapidFireOutput,
    RevisionTopic,
    RevisionTopicsOutput,
    TopicRegenerationOutput,
)
from services.ai.interfaces import GenerationContext, GenerationUsage
from services.generation.modules import ModuleSpec
from services.generation.orchestrator import GenerationOrchestrator
from services.streaming.session_store import InMemoryStreamSessionStore


JOB_DETAILS = {
    "title": "Backend Engineer",
    "company": "Acme",
    "description": "Python services on Postgres",
    "programming_language": "Python",
}


# --------------------------------------------------------------------------- #
# Content builders
# --------------------------------------------------------------------------- #


def make_mcqs(ids: Sequence[str]) -> list[MCQ]:
    return [
        MCQ(
            id=item_id,
            question=f"Question {item_id}?",
            options=["a", "b", "c", "d"],
            answer="a",
        )
        for item_id in ids
    ]


def make_rapid_fire(ids: Sequence[str]) -> list[RapidFire]:
    return [
        RapidFire(id=item_id, question=f"Quick {item_id}?", answer="yes")
        for item_id in ids
    ]


def make_topics(ids: Sequence[str]) -> list[RevisionTopic]:
    return [
        RevisionTopic(id=item_id, title=f"Topic {item_id}", content=f"About {item_id}")
        for item_id in ids
    ]


def default_output(spec: ModuleSpec) -> Any:
    """A small valid final output for any module."""
    if spec.kind == "topic":
        return TopicRegenerationOutput(content="Rewritten explanation")
    if spec.kind == "brief":
        return OpeningBriefOutput(
            content="You are a strong match.", experience_match=80, key_skills=["SQL"]
        )
    if spec.name == "mcqs":
        return MCQsOutput(mcqs=make_mcqs(["m1", "m2"]))
    if spec.name == "rapidFire":
        return RapidFireOutput(questions=make_rapid_fire(["r1", "r2"]))
    return RevisionTopicsOutput(topics=make_topics(["t1", "t2"]))


def parse_frames(frames: Sequence[str]) -> list[dict[str, Any]]:
    """Decode ``data: <json>\\n\\n`` frames into dicts."""
    parsed = []
    for frame in frames:
        assert frame.startswith("data: ")
        assert frame.endswith("\n\n")
        parsed.append(json.loads(frame[len("data: ") :]))
    return parsed


def parse_sse_body(body: str) -> list[dict[str, Any]]:
    return [
        json.loads(event[len("data: ") :])
        for event in body.split("\n\n")
        if event.startswith("data: ")
    ]


# --------------------------------------------------------------------------- #
# Scripted generator
# --------------------------------------------------------------------------- #


@dataclass
class GeneratorCall:
    spec: ModuleSpec
    context: GenerationContext
    count: int | None
    api_key: str | None


class ScriptedRun:
    """Generation run replaying a fixed list of partial outputs."""

    def __init__(
        self,
        owner: "ScriptedGenerator",
        partials: Sequence[Any],
        final: Any,
        *,
        error: Exception | None = None,
        fail_after: int = 0,
        gate: asyncio.Event | None = None,
    ) -> None:
        self._owner = owner
        self._partials = list(partials)
        self._final = final
        self._error = error
        self._fail_after = fail_after
        self._gate = gate
        self.model_id = owner.model_id

    async def __aenter__(self) -> "ScriptedRun":
        self._owner.active += 1
        self._owner.max_active = max(self._owner.max_active, self._owner.active)
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self._owner.active -= 1
        return None

    async def partials(self):
        for index, partial in enumerate(self._partials):
            if self._error is not None and index == self._fail_after:
                raise self._error
            yield partial
            if index == 0 and self._gate is not None:
                await self._gate.wait()
            await asyncio.sleep(0)
        if self._error is not None and self._fail_after >= len(self._partials):
            raise self._error

    async def result(self) -> Any:
        return self._final

    @property
    def usage(self) -> GenerationUsage:
        return GenerationUsage(input_tokens=12, output_tokens=34)


class ScriptedGenerator:
    """Stands in for the model: each module answers from its script.

    Unscripted modules produce ``default_output`` as a single partial.
    """

    def __init__(self) -> None:
        self.model_id = "test-model"
        self.calls: list[GeneratorCall] = []
        self.scripts: dict[str, tuple[list[Any], Any]] = {}
        self.error: Exception | None = None
        self.fail_after = 0
        self.active = 0
        self.max_active = 0
        self._next_gate: asyncio.Event | None = None

    def script(self, module: str, partials: Sequence[Any], final: Any) -> None:
        self.scripts[module] = (list(partials), final)

    def pause_next(self) -> asyncio.Event:
        """Make the next run stop after its first partial until the event is set."""
        self._next_gate = asyncio.Event()
        return self._next_gate

    def generate(
        self,
        spec: ModuleSpec,
        context: GenerationContext,
        count: int | None,
        *,
        api_key: str | None = None,
    ) -> ScriptedRun:
        self.calls.append(GeneratorCall(spec, context, count, api_key))
        key = "topic" if spec.kind == "topic" else spec.name
        if key in self.scripts:
            partials, final = self.scripts[key]
        else:
            final = default_output(spec)
            partials = [final]
        gate, self._next_gate = self._next_gate, None
        return ScriptedRun(
            self,
            partials,
            final,
            error=self.error,
            fail_after=self.fail_after,
            gate=gate,
        )


# --------------------------------------------------------------------------- #
# In-memory repositories
# --------------------------------------------------------------------------- #


class FakeInterviewRepository:
    """Dict-backed stand-in for ``InterviewCRUD``."""

    def __init__(self) -> None:
        self.interviews: dict[uuid.UUID, Interview] = {}
        self.fail_writes = False

    def add(self, interview: Interview) -> Interview:
        self.interviews[interview.id] = interview
        return interview

    def _check_write(self) -> None:
        if self.fail_writes:
            raise RuntimeError("database unavailable")

    async def find(self, db, interview_id, *, for_update=False):
        return self.interviews.get(interview_id)

    async def append_to_module(self, db, interview_id, column, items):
        self._check_write()
        interview = self.interviews.get(interview_id)
        if interview is None:
            return None
        setattr(interview, column, [*(getattr(interview, column) or []), *items])
        return interview

    async def set_opening_brief(self, db, interview_id, brief):
        self._check_write()
        interview = self.interviews.get(interview_id)
        if interview is None:
            return None
        interview.opening_brief = brief.model_dump(mode="json")
        return interview

    async def update_topic(self, db, interview_id, topic_id, changes):
        self._check_write()
        interview = self.interviews.get(interview_id)
        if interview is None:
            return None
        topics = [dict(topic) for topic in interview.revision_topics or []]
        for topic in topics:
            if str(topic.get("id")) == topic_id:
                topic.update(changes)
                interview.revision_topics = topics
                return topic
        return None


class FakeUserRepository:
    """Quota bookkeeping matching ``UserCRUD.consume_iterations``."""

    def __init__(self, limit: float = 20.0) -> None:
        self.limit = limit
        self.used: dict[uuid.UUID, float] = {}
        self.charges: list[float] = []

    async def consume_iterations(self, db, user_id, amount):
        used = self.used.get(user_id, 0.0)
        if used >= self.limit:
            return False
        self.used[user_id] = used + amount
        self.charges.append(amount)
        return True


class _FakeResult:
    """Lightweight stand-in for a SQLAlchemy result."""

    def scalars(self):
        return self

    def first(self):  # pragma: no cover - trivial
        return None


class _FakeSession:
    """Minimal fake async session; remembers added objects."""

    def __init__(self) -> None:
        self.added: list[Any] = []

    def add(self, obj):
        self.added.append(obj)

    async def flush(self):  # pragma: no cover - no-op
        return None

    async def execute(self, _stmt):  # Always empty result
        return _FakeResult()

    async def commit(self):
        return None

    async def rollback(self):  # pragma: no cover - no-op
        return None

    async def close(self):  # pragma: no cover - no-op
        return None


class FakeSessionFactory:
    """Session factory for background jobs; all sessions share one log."""

    def __init__(self) -> None:
        self.session = _FakeSession()

    @asynccontextmanager
    async def __call__(self):
        yield self.session

    @property
    def added(self) -> list[Any]:
        return self.session.added


# --------------------------------------------------------------------------- #
# Fixtures
# --------------------------------------------------------------------------- #


@pytest.fixture
def settings() -> Settings:
    return Settings(
        SECRET_KEY="test-secret-key",
        ENVIRONMENT="test",
        STREAM_STORE_BACKEND="memory",
        STREAM_THROTTLE_MS=0,
        AI_CONCURRENCY_LIMIT=2,
        RESUME_POLL_INTERVAL_MS=1,
        RESUME_MAX_WAIT_SECONDS=2,
    )


@pytest.fixture
def store() -> InMemoryStreamSessionStore:
    return InMemoryStreamSessionStore()


@pytest.fixture
def generator() -> ScriptedGenerator:
    return ScriptedGenerator()


@pytest.fixture
def interviews() -> FakeInterviewRepository:
    return FakeInterviewRepository()


@pytest.fixture
def users() -> FakeUserRepository:
    return FakeUserRepository()


@pytest.fixture
def session_factory() -> FakeSessionFactory:
    return FakeSessionFactory()


@pytest.fixture
def user() -> User:
    return User(
        id=uuid.uuid4(),
        email="candidate@example.test",
        name="Candidate",
        plan="free",
        iterations_used=0.0,
        iterations_limit=20.0,
    )


@pytest.fixture
def interview(interviews: FakeInterviewRepository, user: User) -> Interview:
    return interviews.add(
        Interview(
            id=uuid.uuid4(),
            user_id=user.id,
            job_details=dict(JOB_DETAILS),
            resume_context="Five years of Django",
            custom_instructions=None,
            excluded_modules=[],
            opening_brief=None,
            revision_topics=[],
            mcqs=[],
            rapid_fire=[],
        )
    )


@pytest.fixture
def orchestrator(
    store: InMemoryStreamSessionStore,
    generator: ScriptedGenerator,
    session_factory: FakeSessionFactory,
    interviews: FakeInterviewRepository,
    users: FakeUserRepository,
    settings: Settings,
) -> GenerationOrchestrator:
    return GenerationOrchestrator(
        store,
        generator,
        session_factory,
        interviews=interviews,  # type: ignore[arg-type]
        users=users,  # type: ignore[arg-type]
        settings=settings,
    )


@pytest.fixture
def client() -> Generator[TestClient, None, None]:
    """
    Create a test client for the FastAPI application.
    """
    with TestClient(app) as client:
        yield client


async def _override_get_db_factory() -> AsyncGenerator[_FakeSession, None]:
    """Yield a fake session for dependency override."""
    fake = _FakeSession()
    try:
        yield fake
    finally:  # pragma: no cover - cleanup path
        await fake.close()


@pytest_asyncio.fixture
async def async_client(
    orchestrator: GenerationOrchestrator,
    store: InMemoryStreamSessionStore,
    user: User,
) -> AsyncGenerator[AsyncClient, None]:
    """Async client with DB, auth and generation overrides (auto-auth)."""

    async def _override_get_current_user() -> User:
        return user

    app.dependency_overrides[get_db] = _override_get_db_factory
    app.dependency_overrides[get_current_user] = _override_get_current_user
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_stream_store] = lambda: store
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
    await orchestrator.shutdown(timeout=5)
    app.dependency_overrides.clear()
