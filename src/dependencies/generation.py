"""Dependencies exposing the process-wide generation services."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from services.generation.orchestrator import GenerationOrchestrator
from services.streaming.session_store import StreamSessionStore


def get_orchestrator(request: Request) -> GenerationOrchestrator:
    """Orchestrator created in the application lifespan."""
    orchestrator: GenerationOrchestrator = request.app.state.orchestrator
    return orchestrator


def get_stream_store(request: Request) -> StreamSessionStore:
    store: StreamSessionStore = request.app.state.stream_store
    return store


Orchestrator = Annotated[GenerationOrchestrator, Depends(get_orchestrator)]
StreamStore = Annotated[StreamSessionStore, Depends(get_stream_store)]
