"""Chat model construction for the judges.

Every judge talks to OpenRouter through the OpenAI-compatible client. When
``[providers.groq]`` or ``[providers.ollama]`` is enabled in judges.toml the
judge gets a fallback cascade in that order. Each link is piped through a
length check, so a blank completion counts as a failure and moves on to the
next provider instead of reaching the verdict parser as an empty string.
"""

from __future__ import annotations

import structlog
from langchain_core.runnables import Runnable, RunnableLambda
from langchain_openai import ChatOpenAI

from judge_audit.config import PipelineSettings, Settings, get_pipeline_settings, get_settings

logger = structlog.get_logger(__name__)

OLLAMA_DEFAULT_URL = "http://localhost:11434"


def _make_length_validator(min_chars: int) -> RunnableLambda:
    """Reject completions whose stripped text is shorter than ``min_chars``."""

    def _check(message):  # noqa: ANN001
        text = (message.content or "").strip()
        if len(text) < min_chars:
            raise ValueError(
                f"Judge completion too short: got {len(text)} chars, need {min_chars}"
            )
        return message

    return RunnableLambda(_check)


def _openrouter(
    model: str, temperature: float, timeout: int, max_tokens: int | None, settings: Settings
) -> ChatOpenAI:
    options: dict = {
        "model": model,
        "temperature": temperature,
        "openai_api_key": settings.openrouter_api_key,
        "openai_api_base": settings.openrouter_base_url,
        "timeout": timeout,
        # the orchestrator owns retry and backoff
        "max_retries": 0,
    }
    if max_tokens is not None:
        options["max_tokens"] = max_tokens
    return ChatOpenAI(**options)


def _groq(
    judge_name: str,
    temperature: float,
    max_tokens: int | None,
    pipeline: PipelineSettings,
    settings: Settings,
) -> Runnable:
    from langchain_groq import ChatGroq

    options: dict = {
        "model": pipeline.get_groq_model(judge_name),
        "temperature": temperature,
        "api_key": settings.groq_api_key,
        "timeout": pipeline.defaults.timeout,
    }
    if max_tokens is not None:
        options["max_tokens"] = max_tokens
    return ChatGroq(**options)


def _ollama(
    judge_name: str, temperature: float, max_tokens: int | None, pipeline: PipelineSettings
) -> Runnable:
    from langchain_ollama import ChatOllama

    options: dict = {
        "model": pipeline.get_ollama_model(judge_name),
        "temperature": temperature,
        "base_url": pipeline.providers.ollama.base_url or OLLAMA_DEFAULT_URL,
    }
    if max_tokens is not None:
        options["num_predict"] = max_tokens
    return ChatOllama(**options)


def create_llm(
    judge_name: str,
    temperature: float | None = None,
    max_tokens: int | None = None,
    settings: Settings | None = None,
) -> Runnable:
    """Build the Runnable a judge invokes.

    Args:
        judge_name: Judge kind, used to resolve ``[judges.<name>]`` overrides.
        temperature: Overrides the configured temperature when given.
        max_tokens: Completion cap passed to every provider.
        settings: Credentials and endpoints; read from the environment if omitted.

    Returns:
        ``ChatOpenAI | validator``, wrapped with ``with_fallbacks()`` when at
        least one fallback provider is usable.
    """
    settings = settings or get_settings()
    pipeline = get_pipeline_settings()
    if temperature is None:
        temperature = pipeline.get_temperature(judge_name)

    check = _make_length_validator(pipeline.defaults.min_response_length)
    chain: Runnable = (
        _openrouter(
            pipeline.get_model(judge_name),
            temperature,
            pipeline.defaults.timeout,
            max_tokens,
            settings,
        )
        | check
    )

    fallbacks: list[Runnable] = []
    providers = pipeline.providers
    if providers.groq.enabled:
        if settings.groq_api_key:
            fallbacks.append(_groq(judge_name, temperature, max_tokens, pipeline, settings) | check)
        else:
            logger.warning("groq_fallback_skipped", judge=judge_name, reason="no api key")
    if providers.ollama.enabled:
        fallbacks.append(_ollama(judge_name, temperature, max_tokens, pipeline) | check)

    if not fallbacks:
        return chain
    logger.debug("judge_fallbacks_configured", judge=judge_name, count=len(fallbacks))
    return chain.with_fallbacks(fallbacks)
