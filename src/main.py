import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import urlparse

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.v1.api import api_router
from core.config import get_settings
from core.error_handler import (
    ExceptionNormalizationMiddleware,
    global_exception_handler,
    setup_logging,
)
from core.exceptions import DomainError
from core.middleware import CORRELATION_ID_HEADER, CorrelationIdMiddleware
from dependencies.db import AsyncSessionLocal
from services.ai.agents import PydanticAIGenerator
from services.generation.orchestrator import GenerationOrchestrator
from services.streaming.session_store import build_stream_store


logger = logging.getLogger(__name__)


def validate_cors_origins(origins: list[str]) -> list[str]:
    """Drop configured origins that are not absolute http(s) URLs."""

    validated_origins = []

    def is_valid_url(url: str) -> bool:
        parsed = urlparse(url)
        return bool(parsed.scheme in {"http", "https"} and parsed.netloc)

    for origin in origins:
        origin = origin.strip()
        if is_valid_url(origin):
            validated_origins.append(origin)
        else:
            logger.warning("Invalid CORS origin '%s' ignored", origin)

    return validated_origins


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    setup_logging()
    settings = get_settings()

    store = build_stream_store(settings)
    orchestrator = GenerationOrchestrator(
        store, PydanticAIGenerator(), AsyncSessionLocal, settings=settings
    )
    app.state.stream_store = store
    app.state.orchestrator = orchestrator
    logger.info(
        "%s started (environment=%s, concurrency limit=%d)",
        settings.APP_NAME,
        settings.ENVIRONMENT,
        settings.AI_CONCURRENCY_LIMIT,
    )
    try:
        yield
    finally:
        await orchestrator.shutdown()


settings = get_settings()

app = FastAPI(
    title="PrepStream API",
    description="Streaming generation of interview preparation content",
    version="0.1.0",
    docs_url=None,  # We'll mount docs under /api/v1/docs
    redoc_url=None,
    lifespan=lifespan,
)

app.add_exception_handler(DomainError, global_exception_handler)
app.add_exception_handler(StarletteHTTPException, global_exception_handler)
app.add_exception_handler(RequestValidationError, global_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# Outermost last: CORS wraps correlation IDs, which wrap error normalization
app.add_middleware(ExceptionNormalizationMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=validate_cors_origins(list(settings.CORS_ORIGINS)),
    allow_credentials=settings.ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[CORRELATION_ID_HEADER, "X-Stream-Id", "X-Stream-Resumed"],
)

# Include API routes
app.include_router(api_router, prefix="/api/v1")


# Mount OpenAPI docs under /api/v1/docs and /api/v1/redoc
@app.get("/api/v1/docs", include_in_schema=False)
def custom_swagger_ui_html():
    return get_swagger_ui_html(openapi_url="/openapi.json", title="PrepStream API Docs")


@app.get("/api/v1/redoc", include_in_schema=False)
def redoc_html():
    return get_redoc_html(openapi_url="/openapi.json", title="PrepStream API Redoc")


@app.get("/")
def read_root() -> dict[str, str]:
    return {"message": "PrepStream API"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
