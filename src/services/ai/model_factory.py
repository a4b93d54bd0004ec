"""Centralized AI model factory for content generation.

Supports Gemini (default) and Azure OpenAI based on configuration. A caller
supplied provider key (bring-your-own-key) replaces the configured key for
that one model instance.

Usage:
    from services.ai.model_factory import get_generation_model

    model = get_generation_model()  # Returns pydantic-ai Model
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, cast

from pydantic_ai.models import Model
from pydantic_ai.models.google import GoogleModel
from pydantic_ai.models.openai import OpenAIModel
from pydantic_ai.providers.google import GoogleProvider
from pydantic_ai.providers.openai import OpenAIProvider

from core.config import get_settings


# OpenAI reasoning models that support reasoning_effort parameter
REASONING_MODELS = {
    "gpt-5-mini",
    "gpt-5-nano",
    "o1-mini",
    "o1",
    "o3-mini",
}


if TYPE_CHECKING:
    from httpx import AsyncClient

logger = logging.getLogger(__name__)


def _normalize_azure_endpoint(endpoint: str) -> str:
    """Strip trailing slashes, which otherwise produce `//openai/...` URLs."""
    return endpoint.rstrip("/")


def _is_azure_provider() -> bool:
    """Check if Azure OpenAI should be used based on configuration."""
    settings = get_settings()
    return settings.LLM_PROVIDER == "azure_openai"


def _validate_azure_credentials(api_key: str | None = None) -> bool:
    """Validate that Azure OpenAI credentials are properly configured."""
    settings = get_settings()
    if (
        not settings.AZURE_OPENAI_ENDPOINT
        or not (api_key or settings.AZURE_OPENAI_API_KEY)
        or not settings.AZURE_OPENAI_API_VERSION
    ):
        logger.warning(
            "LLM_PROVIDER=azure_openai but credentials missing, falling back to Gemini"
        )
        return False
    return True


def _validate_gemini_credentials(api_key: str | None = None) -> bool:
    """Validate that a Gemini API key is available."""
    settings = get_settings()
    if not (api_key or settings.GEMINI_API_KEY):
        logger.warning("Gemini API key not configured")
        return False
    return True


def _create_azure_model(
    model_name: str,
    api_key: str | None = None,
    http_client: AsyncClient | None = None,
) -> Model:
    """Create an Azure OpenAI model with the specified deployment name."""
    settings = get_settings()

    from openai import AsyncAzureOpenAI

    azure_client = AsyncAzureOpenAI(
        azure_endpoint=_normalize_azure_endpoint(settings.AZURE_OPENAI_ENDPOINT or ""),
        api_key=api_key or settings.AZURE_OPENAI_API_KEY,
        api_version=settings.AZURE_OPENAI_API_VERSION,
        http_client=http_client,
    )
    provider = OpenAIProvider(openai_client=azure_client)

    if model_name in REASONING_MODELS:
        logger.info("Applying low reasoning effort for reasoning model: %s", model_name)
        return OpenAIModel(  # type: ignore[call-overload,no-any-return]
            model_name,
            provider=provider,
            settings={"reasoning_effort": "low"},
        )

    return OpenAIModel(model_name, provider=provider)


def _create_gemini_model(
    model_name: str,
    api_key: str | None = None,
    http_client: AsyncClient | None = None,
) -> Model:
    """Create a Google Gemini model with the specified model name."""
    settings = get_settings()
    provider = GoogleProvider(
        api_key=api_key or settings.GEMINI_API_KEY,
        http_client=http_client,
    )
    return cast(Model, GoogleModel(model_name, provider=provider))


def get_generation_model(
    api_key: str | None = None,
    http_client: AsyncClient | None = None,
) -> Model:
    """Get the model used for streaming content generation.

    Args:
        api_key: Optional caller-supplied provider key overriding the
            configured one.
        http_client: Optional HTTP client for custom retry logic.

    Returns:
        A pydantic-ai Model configured for the selected provider.

    Raises:
        ValueError: If no provider has usable credentials.
    """
    settings = get_settings()

    if _is_azure_provider() and _validate_azure_credentials(api_key):
        logger.info("Using Azure OpenAI generation model: %s", settings.GENERATION_MODEL)
        return _create_azure_model(settings.GENERATION_MODEL, api_key, http_client)

    if not _validate_gemini_credentials(api_key):
        raise ValueError(
            "No valid LLM provider configured. Either set Azure OpenAI "
            "credentials (AZURE_OPENAI_ENDPOINT + AZURE_OPENAI_API_KEY) "
            "or Gemini credentials (GEMINI_API_KEY)."
        )

    logger.info("Using Gemini generation model: %s", settings.GENERATION_MODEL)
    return _create_gemini_model(settings.GENERATION_MODEL, api_key, http_client)
