"""API tests for streaming generation, stream status and resumption.

Requests go through the real application (middleware, exception handlers,
routing) with the database, the current user and the generation services
replaced by in-memory fakes.
"""

from __future__ import annotations

import uuid

import pytest
from conftest import (
    FakeInterviewRepository,
    FakeUserRepository,
    ScriptedGenerator,
    make_mcqs,
    make_topics,
    parse_sse_body,
)
from httpx import AsyncClient

from core.middleware import CORRELATION_ID_HEADER
from dependencies.auth import get_current_user
from main import app
from models.interviews import Interview
from schemas.generation import StreamFrame
from schemas.interviews import MCQsOutput
from services.generation.orchestrator import GenerationOrchestrator
from services.streaming.session_store import (
    InMemoryStreamSessionStore,
    StreamScope,
    StreamSession,
)


def _base(interview: Interview) -> str:
    return f"/api/v1/interviews/{interview.id}"


class TestGenerateEndpoint:
    """POST /interviews/{id}/generate"""

    @pytest.mark.asyncio
    async def test_streams_sse_frames(
        self,
        async_client: AsyncClient,
        generator: ScriptedGenerator,
        interview: Interview,
    ) -> None:
        mcqs = make_mcqs(["q1", "q2", "q3"])
        generator.script(
            "mcqs",
            [MCQsOutput(mcqs=mcqs[:1]), MCQsOutput(mcqs=mcqs)],
            MCQsOutput(mcqs=mcqs),
        )

        response = await async_client.post(
            f"{_base(interview)}/generate", json={"module": "mcqs"}
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache, no-transform"
        assert response.headers["x-accel-buffering"] == "no"
        assert response.headers["x-stream-id"]
        assert response.headers[CORRELATION_ID_HEADER]
        frames = parse_sse_body(response.text)
        assert [frame["type"] for frame in frames] == ["content", "content", "done"]
        assert [len(frame["data"]) for frame in frames[:2]] == [1, 3]
        assert [item["id"] for item in interview.mcqs] == ["q1", "q2", "q3"]

    @pytest.mark.asyncio
    async def test_status_after_completion(
        self, async_client: AsyncClient, interview: Interview
    ) -> None:
        response = await async_client.post(
            f"{_base(interview)}/generate", json={"module": "rapidFire"}
        )
        stream_id = response.headers["x-stream-id"]

        status_response = await async_client.get(
            f"{_base(interview)}/streams/rapidFire/status"
        )

        assert status_response.status_code == 200
        body = status_response.json()
        assert body["success"] is True
        assert body["data"]["status"] == "completed"
        assert body["data"]["stream_id"] == stream_id

    @pytest.mark.asyncio
    async def test_unknown_module_is_400(
        self, async_client: AsyncClient, interview: Interview
    ) -> None:
        response = await async_client.post(
            f"{_base(interview)}/generate", json={"module": "flashcards"}
        )

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"]["type"] == "invalid_request"
        assert body["message"] == "Invalid module: flashcards"

    @pytest.mark.asyncio
    async def test_invalid_count_is_422(
        self, async_client: AsyncClient, interview: Interview
    ) -> None:
        response = await async_client.post(
            f"{_base(interview)}/generate", json={"module": "mcqs", "count": 0}
        )

        assert response.status_code == 422
        assert response.json()["error"]["type"] == "validation_error"

    @pytest.mark.asyncio
    async def test_missing_interview_is_404(self, async_client: AsyncClient) -> None:
        response = await async_client.post(
            f"/api/v1/interviews/{uuid.uuid4()}/generate", json={"module": "mcqs"}
        )

        assert response.status_code == 404
        assert response.json()["error"]["type"] == "interview_not_found"

    @pytest.mark.asyncio
    async def test_foreign_interview_is_403(
        self,
        async_client: AsyncClient,
        interviews: FakeInterviewRepository,
        interview: Interview,
    ) -> None:
        foreign = interviews.add(
            Interview(
                id=uuid.uuid4(),
                user_id=uuid.uuid4(),
                job_details=dict(interview.job_details),
                revision_topics=[],
                mcqs=[],
                rapid_fire=[],
                excluded_modules=[],
            )
        )

        response = await async_client.post(
            f"{_base(foreign)}/generate", json={"module": "mcqs"}
        )

        assert response.status_code == 403
        assert response.json()["error"]["type"] == "forbidden"

    @pytest.mark.asyncio
    async def test_exhausted_quota_is_429_without_stream(
        self,
        async_client: AsyncClient,
        users: FakeUserRepository,
        interview: Interview,
    ) -> None:
        users.limit = 0

        response = await async_client.post(
            f"{_base(interview)}/generate", json={"module": "mcqs"}
        )

        assert response.status_code == 429
        assert response.json()["error"]["type"] == "iteration_limit_reached"
        status_response = await async_client.get(
            f"{_base(interview)}/streams/mcqs/status"
        )
        assert status_response.json()["data"]["status"] == "none"

    @pytest.mark.asyncio
    async def test_provider_key_bypasses_quota(
        self,
        async_client: AsyncClient,
        users: FakeUserRepository,
        generator: ScriptedGenerator,
        interview: Interview,
    ) -> None:
        users.limit = 0

        response = await async_client.post(
            f"{_base(interview)}/generate",
            json={"module": "openingBrief"},
            headers={"X-Provider-Api-Key": "sk-own"},
        )

        assert response.status_code == 200
        assert parse_sse_body(response.text)[-1]["type"] == "done"
        assert generator.calls[0].api_key == "sk-own"


class TestAddMoreAndRegenerate:
    """POST add-more and topic regeneration."""

    @pytest.mark.asyncio
    async def test_add_more_uses_its_own_stream(
        self,
        async_client: AsyncClient,
        generator: ScriptedGenerator,
        interview: Interview,
    ) -> None:
        interview.mcqs = [item.model_dump(mode="json") for item in make_mcqs(["q1"])]
        batch = make_mcqs(["q1", "q2"])
        generator.script("mcqs", [MCQsOutput(mcqs=batch)], MCQsOutput(mcqs=batch))

        response = await async_client.post(
            f"{_base(interview)}/add-more", json={"module": "mcqs", "count": 2}
        )

        assert response.status_code == 200
        assert parse_sse_body(response.text)[-1] == {"type": "done", "module": "mcqs"}
        assert [item["id"] for item in interview.mcqs] == ["q1", "q2"]
        status_response = await async_client.get(
            f"{_base(interview)}/streams/addMore_mcqs/status"
        )
        assert status_response.json()["data"]["status"] == "completed"

    @pytest.mark.asyncio
    async def test_regenerate_topic(
        self, async_client: AsyncClient, interview: Interview
    ) -> None:
        interview.revision_topics = [
            topic.model_dump(mode="json") for topic in make_topics(["t1"])
        ]

        response = await async_client.post(
            f"{_base(interview)}/topics/t1/regenerate", json={"style": "simple"}
        )

        assert response.status_code == 200
        frames = parse_sse_body(response.text)
        assert frames[0] == {
            "type": "content",
            "topic_id": "t1",
            "data": "Rewritten explanation",
        }
        assert frames[-1] == {"type": "done", "topic_id": "t1", "style": "simple"}
        assert interview.revision_topics[0]["style"] == "simple"

    @pytest.mark.asyncio
    async def test_regenerate_with_bad_style_is_400(
        self, async_client: AsyncClient, interview: Interview
    ) -> None:
        response = await async_client.post(
            f"{_base(interview)}/topics/t1/regenerate", json={"style": "haiku"}
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_regenerate_unknown_topic_is_404(
        self, async_client: AsyncClient, interview: Interview
    ) -> None:
        response = await async_client.post(
            f"{_base(interview)}/topics/nope/regenerate", json={"style": "simple"}
        )

        assert response.status_code == 404
        assert response.json()["error"]["type"] == "topic_not_found"


class TestResumeEndpoint:
    """GET /interviews/{id}/streams/{module_key}"""

    @pytest.mark.asyncio
    async def test_nothing_to_resume_is_204(
        self, async_client: AsyncClient, interview: Interview
    ) -> None:
        response = await async_client.get(f"{_base(interview)}/streams/mcqs")

        assert response.status_code == 204
        assert response.content == b""

    @pytest.mark.asyncio
    async def test_replays_completed_stream(
        self, async_client: AsyncClient, interview: Interview
    ) -> None:
        generated = await async_client.post(
            f"{_base(interview)}/generate", json={"module": "mcqs"}
        )

        response = await async_client.get(f"{_base(interview)}/streams/mcqs")

        assert response.status_code == 200
        assert response.headers["x-stream-resumed"] == "true"
        assert response.headers["x-stream-id"] == generated.headers["x-stream-id"]
        assert parse_sse_body(response.text) == parse_sse_body(generated.text)

    @pytest.mark.asyncio
    async def test_replays_error(
        self,
        async_client: AsyncClient,
        generator: ScriptedGenerator,
        interview: Interview,
    ) -> None:
        generator.error = RuntimeError("provider down")
        await async_client.post(f"{_base(interview)}/generate", json={"module": "mcqs"})

        response = await async_client.get(f"{_base(interview)}/streams/mcqs")

        frames = parse_sse_body(response.text)
        assert len(frames) == 1
        assert frames[0]["type"] == "error"
        assert "provider down" not in frames[0]["error"]

    @pytest.mark.asyncio
    async def test_buffer_without_session_replays_then_done(
        self,
        async_client: AsyncClient,
        store: InMemoryStreamSessionStore,
        interview: Interview,
    ) -> None:
        """A session that expired before its buffer still replays."""
        frame = StreamFrame(type="content", module="mcqs", data=[{"id": "q1"}])
        await store.append_to_buffer(StreamScope(str(interview.id), "mcqs"), frame.to_sse())

        response = await async_client.get(f"{_base(interview)}/streams/mcqs")

        assert response.status_code == 200
        assert "x-stream-id" not in response.headers
        assert response.headers["x-stream-resumed"] == "true"
        frames = parse_sse_body(response.text)
        assert [item["type"] for item in frames] == ["content", "done"]
        assert frames[0]["data"] == [{"id": "q1"}]
        assert frames[-1]["module"] == "mcqs"

    @pytest.mark.asyncio
    async def test_stream_of_another_user_is_403(
        self,
        async_client: AsyncClient,
        store: InMemoryStreamSessionStore,
        interview: Interview,
    ) -> None:
        await store.save(
            StreamScope(str(interview.id), "mcqs"),
            StreamSession(stream_id="s1", owner_id=str(uuid.uuid4()), status="completed"),
        )

        resumed = await async_client.get(f"{_base(interview)}/streams/mcqs")
        status_response = await async_client.get(
            f"{_base(interview)}/streams/mcqs/status"
        )

        assert resumed.status_code == 403
        assert status_response.status_code == 403

    @pytest.mark.asyncio
    async def test_unknown_module_key_is_400(
        self, async_client: AsyncClient, interview: Interview
    ) -> None:
        response = await async_client.get(
            f"{_base(interview)}/streams/addMore_openingBrief/status"
        )

        assert response.status_code == 400


class TestGenerateAllEndpoint:
    """POST /interviews/{id}/generate-all"""

    @pytest.mark.asyncio
    async def test_schedules_every_module(
        self,
        async_client: AsyncClient,
        orchestrator: GenerationOrchestrator,
        users: FakeUserRepository,
        interview: Interview,
    ) -> None:
        response = await async_client.post(f"{_base(interview)}/generate-all")

        assert response.status_code == 202
        data = response.json()["data"]
        assert data["interview_id"] == str(interview.id)
        assert data["concurrency_limit"] == 2
        assert [item["module_key"] for item in data["scheduled"]] == [
            "openingBrief",
            "revisionTopics",
            "mcqs",
            "rapidFire",
        ]
        assert users.charges == [4.0]

        await orchestrator.shutdown(timeout=5)
        status_response = await async_client.get(
            f"{_base(interview)}/streams/revisionTopics/status"
        )
        assert status_response.json()["data"]["status"] == "completed"
        assert len(interview.revision_topics) == 2

    @pytest.mark.asyncio
    async def test_schedules_selected_modules(
        self, async_client: AsyncClient, interview: Interview
    ) -> None:
        response = await async_client.post(
            f"{_base(interview)}/generate-all", json={"modules": ["mcqs"]}
        )

        assert response.status_code == 202
        scheduled = response.json()["data"]["scheduled"]
        assert scheduled == [{"module": "mcqs", "module_key": "mcqs"}]


class TestConcurrencySettings:
    @pytest.mark.asyncio
    async def test_reports_limit(self, async_client: AsyncClient) -> None:
        response = await async_client.get("/api/v1/settings/concurrency")

        assert response.status_code == 200
        assert response.json()["data"] == {"limit": 2}


class TestAuthentication:
    """Generation routes require a bearer token."""

    @pytest.mark.asyncio
    async def test_missing_token_is_401(
        self, async_client: AsyncClient, interview: Interview
    ) -> None:
        app.dependency_overrides.pop(get_current_user, None)

        response = await async_client.post(
            f"{_base(interview)}/generate", json={"module": "mcqs"}
        )

        assert response.status_code == 401
        assert response.headers["www-authenticate"] == "Bearer"
        assert response.json()["error"]["type"] == "unauthenticated"

    @pytest.mark.asyncio
    async def test_invalid_token_is_401(
        self, async_client: AsyncClient, interview: Interview
    ) -> None:
        app.dependency_overrides.pop(get_current_user, None)

        response = await async_client.get(
            f"{_base(interview)}/streams/mcqs/status",
            headers={"Authorization": "Bearer not-a-jwt"},
        )

        assert response.status_code == 401
