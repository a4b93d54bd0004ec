"""Streaming generation endpoints.

Generation, add-more and topic regeneration answer with a Server-Sent Events
stream. The stream is fed by a server-owned task, so closing the connection
only detaches the client: the content is still generated, saved and
replayable through the resume endpoint.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Response, status
from fastapi.responses import StreamingResponse

from core.config import Settings, get_settings
from core.exceptions import ForbiddenError, InvalidRequestError
from core.ratelimit import check_rate_limit
from dependencies.auth import CurrentUser, ProviderApiKey
from dependencies.db import DbSession
from dependencies.generation import Orchestrator, StreamStore
from schemas.api import ApiResponse
from schemas.generation import (
    SSE_HEADERS,
    ConcurrencySettings,
    GenerateAllRequest,
    GenerateAllResponse,
    GenerateModuleRequest,
    RegenerateTopicRequest,
    ScheduledModule,
    StreamStatusResponse,
)
from services.generation.jobs import GenerationRequest
from services.generation.modules import is_known_module_key
from services.streaming.resume import plan_resume, resume_frames
from services.streaming.session_store import StreamScope


router = APIRouter(prefix="/interviews", tags=["generation"])
settings_router = APIRouter(prefix="/settings", tags=["settings"])

SSE_RESPONSE_DOC = {
    200: {
        "description": "Server-Sent Events stream of generation frames",
        "content": {"text/event-stream": {}},
    }
}


def _sse_response(
    body: AsyncIterator[str], *, stream_id: str | None, resumed: bool = False
) -> StreamingResponse:
    headers = dict(SSE_HEADERS)
    if stream_id:
        headers["X-Stream-Id"] = stream_id
    if resumed:
        headers["X-Stream-Resumed"] = "true"
    return StreamingResponse(body, media_type="text/event-stream", headers=headers)


async def _start_stream(
    orchestrator: Orchestrator,
    db: DbSession,
    current_user: CurrentUser,
    interview_id: UUID,
    request: GenerationRequest,
    api_key: str | None,
) -> StreamingResponse:
    job = await orchestrator.prepare(
        db, current_user, interview_id, request, api_key=api_key
    )
    stream = await orchestrator.start(job)
    return _sse_response(stream.frames(), stream_id=stream.stream_id)


@router.post(
    "/{interview_id}/generate",
    response_class=StreamingResponse,
    responses=SSE_RESPONSE_DOC,
    dependencies=[Depends(check_rate_limit)],
    summary="Generate a module",
)
async def generate_module(
    interview_id: UUID,
    body: GenerateModuleRequest,
    db: DbSession,
    current_user: CurrentUser,
    orchestrator: Orchestrator,
    api_key: ProviderApiKey,
) -> StreamingResponse:
    """Generate the initial content of one module and stream it as it arrives."""
    request = GenerationRequest(
        operation="generate",
        module=body.module,
        count=body.count,
        instructions=body.instructions,
    )
    return await _start_stream(
        orchestrator, db, current_user, interview_id, request, api_key
    )


@router.post(
    "/{interview_id}/add-more",
    response_class=StreamingResponse,
    responses=SSE_RESPONSE_DOC,
    dependencies=[Depends(check_rate_limit)],
    summary="Add more items to a list module",
)
async def add_more(
    interview_id: UUID,
    body: GenerateModuleRequest,
    db: DbSession,
    current_user: CurrentUser,
    orchestrator: Orchestrator,
    api_key: ProviderApiKey,
) -> StreamingResponse:
    """Generate items that are not yet in the module and append them."""
    request = GenerationRequest(
        operation="add_more",
        module=body.module,
        count=body.count,
        instructions=body.instructions,
    )
    return await _start_stream(
        orchestrator, db, current_user, interview_id, request, api_key
    )


@router.post(
    "/{interview_id}/topics/{topic_id}/regenerate",
    response_class=StreamingResponse,
    responses=SSE_RESPONSE_DOC,
    dependencies=[Depends(check_rate_limit)],
    summary="Regenerate a revision topic in another style",
)
async def regenerate_topic(
    interview_id: UUID,
    topic_id: str,
    body: RegenerateTopicRequest,
    db: DbSession,
    current_user: CurrentUser,
    orchestrator: Orchestrator,
    api_key: ProviderApiKey,
) -> StreamingResponse:
    request = GenerationRequest(
        operation="regenerate_topic",
        module="revisionTopics",
        instructions=body.instructions,
        topic_id=topic_id,
        style=body.style,
    )
    return await _start_stream(
        orchestrator, db, current_user, interview_id, request, api_key
    )


@router.post(
    "/{interview_id}/generate-all",
    response_model=ApiResponse[GenerateAllResponse],
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(check_rate_limit)],
    summary="Generate every module in the background",
)
async def generate_all(
    interview_id: UUID,
    db: DbSession,
    current_user: CurrentUser,
    orchestrator: Orchestrator,
    api_key: ProviderApiKey,
    body: Annotated[GenerateAllRequest | None, Body()] = None,
) -> ApiResponse[GenerateAllResponse]:
    """Schedule initial generation of several modules.

    At most ``AI_CONCURRENCY_LIMIT`` modules run at once. Progress of each
    module is observed through its stream status and resume endpoints.
    """
    body = body or GenerateAllRequest()
    jobs = await orchestrator.prepare_batch(
        db,
        current_user,
        interview_id,
        body.modules,
        instructions=body.instructions,
        api_key=api_key,
    )
    orchestrator.schedule_batch(jobs)
    return ApiResponse(
        data=GenerateAllResponse(
            interview_id=interview_id,
            concurrency_limit=orchestrator.concurrency_limit,
            scheduled=[
                ScheduledModule(module=job.spec.name, module_key=job.scope.module_key)
                for job in jobs
            ],
        ),
        message="Generation scheduled",
    )


async def _owned_scope(
    orchestrator: Orchestrator,
    store: StreamStore,
    db: DbSession,
    current_user: CurrentUser,
    interview_id: UUID,
    module_key: str,
) -> StreamScope:
    if not is_known_module_key(module_key):
        raise InvalidRequestError(f"Invalid module: {module_key}")
    await orchestrator.load_owned_interview(db, current_user, interview_id)
    scope = StreamScope(str(interview_id), module_key)
    session = await store.get_session(scope)
    if session is not None and session.owner_id not in (None, str(current_user.id)):
        raise ForbiddenError()
    return scope


@router.get(
    "/{interview_id}/streams/{module_key}/status",
    response_model=ApiResponse[StreamStatusResponse],
    summary="Status of a module's latest stream",
)
async def get_stream_status(
    interview_id: UUID,
    module_key: str,
    db: DbSession,
    current_user: CurrentUser,
    orchestrator: Orchestrator,
    store: StreamStore,
) -> ApiResponse[StreamStatusResponse]:
    scope = await _owned_scope(
        orchestrator, store, db, current_user, interview_id, module_key
    )
    stream_status = await store.get_status(scope)
    return ApiResponse(data=stream_status, message="Stream status retrieved")


@router.get(
    "/{interview_id}/streams/{module_key}",
    response_class=StreamingResponse,
    responses={
        **SSE_RESPONSE_DOC,
        204: {"description": "Nothing to resume for this module"},
    },
    summary="Resume a module's stream",
)
async def resume_stream(
    interview_id: UUID,
    module_key: str,
    db: DbSession,
    current_user: CurrentUser,
    orchestrator: Orchestrator,
    store: StreamStore,
    settings: Annotated[Settings, Depends(get_settings)],
) -> Response:
    """Replay buffered frames, then follow the stream until it settles."""
    scope = await _owned_scope(
        orchestrator, store, db, current_user, interview_id, module_key
    )
    plan = await plan_resume(store, scope)
    if plan is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    body = resume_frames(
        store,
        plan,
        poll_interval=settings.resume_poll_interval_seconds,
        max_wait=settings.RESUME_MAX_WAIT_SECONDS,
    )
    return _sse_response(body, stream_id=plan.stream_id, resumed=True)


@settings_router.get(
    "/concurrency",
    response_model=ApiResponse[ConcurrencySettings],
    summary="Concurrency limit for background generation",
)
async def get_concurrency(
    orchestrator: Orchestrator,
) -> ApiResponse[ConcurrencySettings]:
    return ApiResponse(
        data=ConcurrencySettings(limit=orchestrator.concurrency_limit),
        message="Concurrency settings retrieved",
    )
