"""Generation orchestrator: drives one streaming generation end to end.

Request handlers call :meth:`GenerationOrchestrator.prepare` while they can
still answer with a plain HTTP error (validation, ownership, quota), then
:meth:`GenerationOrchestrator.start`, which opens the stream session and hands
the work to a server-owned task. The task outlives the HTTP response: a client
that disconnects only detaches its wire, generation and persistence carry on
and the session still reaches ``completed`` or ``error``.

Every session of a scope gets a new epoch. A job re-checks its epoch before
touching the buffer, the repository or the session status, so a job that was
superseded by a newer one for the same scope stops writing instead of
clobbering the newer stream.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator, Callable, Sequence
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from core.concurrency import JobOutcome, run_with_concurrency_limit
from core.config import Settings, get_settings
from core.exceptions import (
    DomainError,
    ForbiddenError,
    GeneratorFailureError,
    InterviewNotFoundError,
    InvalidRequestError,
    IterationQuotaExceededError,
    PersistenceFailureError,
    StreamStoreError,
    TopicNotFoundError,
)
from crud.interviews import InterviewCRUD, interview_crud
from crud.user import UserCRUD, user_crud
from models.interviews import Interview
from models.users import User
from schemas.interviews import TOPIC_STYLES, JobDetails, RevisionTopic
from services.ai.interfaces import GenerationContext, GenerationUsage, GeneratorProtocol
from services.ai_logger import LoggerContext, log_ai_request
from services.deduplication_service import collect_existing_ids
from services.generation.emitter import ThrottledEmitter
from services.generation.jobs import (
    ACTIONS,
    CommitSummary,
    GenerationJob,
    GenerationRequest,
    list_module_committer,
    opening_brief_committer,
    topic_regeneration_committer,
)
from services.generation.modules import (
    LIST_MODULES,
    MODULES,
    TOPIC_REGENERATION,
    ModuleSpec,
    add_more_key,
    topic_key,
)
from services.generation.wire import WireChannel
from services.streaming.session_store import (
    StreamScope,
    StreamSession,
    StreamSessionStore,
)


logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]

GENERATION_FAILED_MESSAGE = "Failed to generate content. Please try again."
PERSISTENCE_FAILED_MESSAGE = "Generated content could not be saved. Please try again."
SUPERSEDED_MESSAGE = "Superseded by a newer generation"
CANCELLED_MESSAGE = "Generation was interrupted. Please try again."


class StreamSuperseded(Exception):
    """Raised inside a job whose scope has been taken over by a newer stream."""


@dataclass(slots=True)
class GenerationStream:
    """Handle returned to the HTTP layer for a started generation."""

    stream_id: str
    scope: StreamScope
    channel: WireChannel
    task: asyncio.Task[StreamSession | None]

    async def frames(self) -> AsyncIterator[str]:
        """Live frames for the response body; detaches on client disconnect."""
        try:
            async for frame in self.channel.frames():
                yield frame
        finally:
            if self.channel.writable:
                logger.info(
                    "Client detached from stream %s (%s)", self.stream_id, self.scope
                )
            self.channel.detach()


def _user_friendly_message(exc: BaseException) -> str:
    if isinstance(exc, DomainError):
        return exc.message
    return GENERATION_FAILED_MESSAGE


class GenerationOrchestrator:
    """Runs generation jobs as server-owned tasks.

    One instance per process, created at application startup.
    """

    def __init__(
        self,
        store: StreamSessionStore,
        generator: GeneratorProtocol,
        session_factory: SessionFactory,
        *,
        interviews: InterviewCRUD = interview_crud,
        users: UserCRUD = user_crud,
        settings: Settings | None = None,
    ) -> None:
        self._store = store
        self._generator = generator
        self._session_factory = session_factory
        self._interviews = interviews
        self._users = users
        self._settings = settings or get_settings()
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def store(self) -> StreamSessionStore:
        return self._store

    @property
    def concurrency_limit(self) -> int:
        return self._settings.AI_CONCURRENCY_LIMIT

    @property
    def active_tasks(self) -> int:
        return len(self._tasks)

    # ------------------------------------------------------------------ #
    # Preparation (before the stream opens)
    # ------------------------------------------------------------------ #

    def _resolve_spec(self, request: GenerationRequest) -> ModuleSpec:
        if request.operation == "regenerate_topic":
            if request.style not in TOPIC_STYLES:
                raise InvalidRequestError(
                    "Invalid style. Must be professional, construction, or simple"
                )
            if not request.topic_id:
                raise InvalidRequestError("Topic id is required")
            return TOPIC_REGENERATION
        if request.operation == "add_more":
            spec = LIST_MODULES.get(request.module)
        else:
            spec = MODULES.get(request.module)
        if spec is None:
            raise InvalidRequestError(f"Invalid module: {request.module}")
        return spec

    async def load_owned_interview(
        self, db: AsyncSession, user: User, interview_id: UUID
    ) -> Interview:
        interview = await self._interviews.find(db, interview_id)
        if interview is None:
            raise InterviewNotFoundError()
        if interview.user_id != user.id:
            raise ForbiddenError()
        return interview

    async def _consume_quota(
        self, db: AsyncSession, user: User, cost: float, api_key: str | None
    ) -> None:
        if api_key is not None:
            # Caller pays the provider directly
            return
        if not await self._users.consume_iterations(db, user.id, cost):
            raise IterationQuotaExceededError()

    def _cost_of(self, request: GenerationRequest) -> float:
        if request.operation == "regenerate_topic":
            return self._settings.REGENERATION_ITERATION_COST
        return self._settings.GENERATION_ITERATION_COST

    def _build_job(
        self,
        interview: Interview,
        user: User,
        request: GenerationRequest,
        spec: ModuleSpec,
        api_key: str | None,
    ) -> GenerationJob:
        context = GenerationContext(
            job_details=JobDetails.model_validate(interview.job_details),
            resume_context=interview.resume_context,
            custom_instructions=interview.custom_instructions,
            instructions=request.instructions,
        )
        entity_id = str(interview.id)

        if request.operation == "regenerate_topic":
            topic_id = str(request.topic_id)
            topic = next(
                (
                    RevisionTopic.model_validate(t)
                    for t in interview.revision_topics or []
                    if str(t.get("id")) == topic_id
                ),
                None,
            )
            if topic is None:
                raise TopicNotFoundError()
            context.topic = topic
            context.style = request.style
            return GenerationJob(
                scope=StreamScope(entity_id, topic_key(topic_id)),
                user_id=user.id,
                interview_id=interview.id,
                spec=spec,
                count=None,
                context=context,
                action=ACTIONS[request.operation],
                on_complete=topic_regeneration_committer(
                    self._interviews, interview.id, topic_id, str(request.style)
                ),
                api_key=api_key,
                topic_id=topic_id,
                style=request.style,
            )

        if spec.is_list:
            existing = getattr(interview, spec.column) or []
            existing_ids = frozenset(collect_existing_ids(existing))
            context.existing_items = [
                str(item.get(spec.label_field or "id", ""))
                for item in existing
                if isinstance(item, dict)
            ]
            default_count = (
                spec.add_more_count
                if request.operation == "add_more"
                else spec.initial_count
            )
            count = request.count or default_count
            on_complete = list_module_committer(
                self._interviews, interview.id, spec, existing_ids
            )
        else:
            existing_ids = frozenset()
            count = None
            on_complete = opening_brief_committer(self._interviews, interview.id)

        module_key = (
            add_more_key(spec.name) if request.operation == "add_more" else spec.name
        )
        return GenerationJob(
            scope=StreamScope(entity_id, module_key),
            user_id=user.id,
            interview_id=interview.id,
            spec=spec,
            count=count,
            context=context,
            action=ACTIONS[request.operation],
            on_complete=on_complete,
            existing_ids=existing_ids,
            api_key=api_key,
        )

    async def prepare(
        self,
        db: AsyncSession,
        user: User,
        interview_id: UUID,
        request: GenerationRequest,
        *,
        api_key: str | None = None,
    ) -> GenerationJob:
        """Validate, authorize and charge a request, returning a runnable job.

        Raises:
            InvalidRequestError: Unknown module or style.
            InterviewNotFoundError / TopicNotFoundError: Missing target.
            ForbiddenError: The interview belongs to someone else.
            IterationQuotaExceededError: No credits left (own key not supplied).
        """
        spec = self._resolve_spec(request)
        interview = await self.load_owned_interview(db, user, interview_id)
        job = self._build_job(interview, user, request, spec, api_key)
        await self._consume_quota(db, user, self._cost_of(request), api_key)
        return job

    async def prepare_batch(
        self,
        db: AsyncSession,
        user: User,
        interview_id: UUID,
        modules: Sequence[str] | None,
        *,
        instructions: str | None = None,
        api_key: str | None = None,
    ) -> list[GenerationJob]:
        """Prepare one initial-generation job per module, charged as a whole."""
        interview = await self.load_owned_interview(db, user, interview_id)
        if modules is None:
            excluded = set(interview.excluded_modules or [])
            modules = [name for name in MODULES if name not in excluded]
        requests = [
            GenerationRequest(
                operation="generate", module=name, instructions=instructions
            )
            for name in dict.fromkeys(modules)
        ]
        specs = [self._resolve_spec(request) for request in requests]
        jobs = [
            self._build_job(interview, user, request, spec, api_key)
            for request, spec in zip(requests, specs, strict=True)
        ]
        if jobs:
            cost = sum(self._cost_of(request) for request in requests)
            await self._consume_quota(db, user, cost, api_key)
        return jobs

    # ------------------------------------------------------------------ #
    # Execution
    # ------------------------------------------------------------------ #

    async def _open_session(self, job: GenerationJob) -> tuple[str, int]:
        # Buffer cleared and session saved before any frame exists
        epoch = await self._store.next_epoch(job.scope)
        stream_id = uuid.uuid4().hex
        await self._store.clear_buffer(job.scope)
        await self._store.save(
            job.scope, StreamSession(
                stream_id=stream_id,
                owner_id=str(job.user_id),
                status="active",
                epoch=epoch,
            )
        )
        logger.info("Opened stream %s for %s (epoch %d)", stream_id, job.scope, epoch)
        return stream_id, epoch

    def _spawn(self, coro: Any) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("Generation task was cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Generation task crashed", exc_info=exc)

    async def start(self, job: GenerationJob) -> GenerationStream:
        """Open the session and launch ``job`` with a live client attached."""
        stream_id, epoch = await self._open_session(job)
        channel = WireChannel()
        task = self._spawn(self._execute(job, stream_id, epoch, channel))
        return GenerationStream(
            stream_id=stream_id, scope=job.scope, channel=channel, task=task
        )

    async def run(self, job: GenerationJob) -> StreamSession | None:
        """Run ``job`` to completion without a live client."""
        stream_id, epoch = await self._open_session(job)
        return await self._execute(job, stream_id, epoch, None)

    def schedule_batch(
        self, jobs: Sequence[GenerationJob], limit: int | None = None
    ) -> asyncio.Task[list[JobOutcome[StreamSession | None]]]:
        """Run ``jobs`` in the background, at most ``limit`` at a time."""
        limit = limit or self.concurrency_limit
        factories = [lambda job=job: self.run(job) for job in jobs]
        logger.info("Scheduling %d generation job(s) with limit %d", len(jobs), limit)
        return self._spawn(run_with_concurrency_limit(factories, limit))

    async def _is_current(self, job: GenerationJob, epoch: int) -> bool:
        return await self._store.current_epoch(job.scope) == epoch

    async def _execute(
        self,
        job: GenerationJob,
        stream_id: str,
        epoch: int,
        channel: WireChannel | None,
    ) -> StreamSession | None:
        log_ctx = LoggerContext(
            action=job.action,
            user_id=job.user_id,
            interview_id=job.interview_id,
            module_key=job.scope.module_key,
            byok=job.byok,
        )
        model_id = "unknown"
        usage = GenerationUsage()

        async def sink(data: Any) -> None:
            if not await self._is_current(job, epoch):
                raise StreamSuperseded()
            frame = job.content_frame(data).to_sse()
            try:
                await self._store.append_to_buffer(job.scope, frame)
            except Exception as exc:
                logger.exception("Could not buffer a frame for %s", job.scope)
                raise StreamStoreError() from exc
            # Only frames the replay will contain reach the live client
            if channel is not None:
                channel.send(frame)

        emitter = ThrottledEmitter(sink, self._settings.stream_throttle_seconds)

        try:
            try:
                async with self._generator.generate(
                    job.spec, job.context, job.count, api_key=job.api_key
                ) as run:
                    model_id = run.model_id
                    async for partial in run.partials():
                        log_ctx.mark_first_token()
                        await emitter.emit(job.spec.select(partial))
                    await emitter.flush()
                    final = await run.result()
                    usage = run.usage
            except (StreamSuperseded, StreamStoreError):
                raise
            except Exception as exc:
                logger.exception("Generation failed for %s", job.scope)
                await self._record(log_ctx, model_id, usage, "error", str(exc))
                raise GeneratorFailureError(GENERATION_FAILED_MESSAGE) from exc

            if not await self._is_current(job, epoch):
                raise StreamSuperseded()

            try:
                async with self._session_factory() as db:
                    summary = await job.on_complete(db, final)
            except Exception as exc:
                logger.exception(
                    "Persisting generated content failed for %s", job.scope
                )
                await self._record(log_ctx, model_id, usage, "error", str(exc))
                raise PersistenceFailureError(PERSISTENCE_FAILED_MESSAGE) from exc

            await self._record(log_ctx, model_id, usage, "success", None, summary)

            if not await self._is_current(job, epoch):
                raise StreamSuperseded()
            await self._store.set_status(job.scope, "completed")
            if channel is not None:
                channel.send(job.done_frame().to_sse())
            logger.info(
                "Stream %s completed (%d frame(s), %d partial(s))",
                stream_id,
                emitter.flushed,
                emitter.emitted,
            )
            return await self._store.get_session(job.scope)

        except StreamSuperseded:
            logger.info(
                "Stream %s superseded for %s; discarding output", stream_id, job.scope
            )
            if channel is not None:
                channel.send(job.error_frame(SUPERSEDED_MESSAGE).to_sse())
            return None
        except asyncio.CancelledError:
            logger.warning("Stream %s cancelled for %s", stream_id, job.scope)
            # The failure write must finish even though this task is cancelled
            await asyncio.shield(
                self._fail(job, epoch, channel, GeneratorFailureError(CANCELLED_MESSAGE))
            )
            raise
        except Exception as exc:
            return await self._fail(job, epoch, channel, exc)
        finally:
            if channel is not None:
                channel.close()

    async def _fail(
        self,
        job: GenerationJob,
        epoch: int,
        channel: WireChannel | None,
        exc: BaseException,
    ) -> StreamSession | None:
        message = _user_friendly_message(exc)
        session: StreamSession | None = None
        try:
            if await self._is_current(job, epoch):
                await self._store.set_status(job.scope, "error", error=message)
                session = await self._store.get_session(job.scope)
        except Exception:
            logger.exception("Could not mark stream %s as failed", job.scope)
        if channel is not None:
            channel.send(job.error_frame(message).to_sse())
        return session

    async def _record(
        self,
        log_ctx: LoggerContext,
        model_id: str,
        usage: GenerationUsage,
        status: str,
        error_message: str | None,
        summary: CommitSummary | None = None,
    ) -> None:
        try:
            async with self._session_factory() as db:
                await log_ai_request(
                    db,
                    log_ctx,
                    model_id=model_id,
                    status=status,
                    usage=usage,
                    error_message=error_message,
                    items_generated=summary.items_generated if summary else None,
                    items_added=summary.items_added if summary else None,
                )
        except Exception:
            logger.exception("Could not open a session for AI request logging")

    async def shutdown(self, timeout: float | None = 30.0) -> None:
        """Wait for running jobs, cancelling whatever is left after ``timeout``."""
        if not self._tasks:
            return
        logger.info("Waiting for %d generation task(s) to finish", len(self._tasks))
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
