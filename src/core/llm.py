"""
Reminder Bot — LLM Provider Abstraction.

Single public function `complete()` that routes to the configured provider.
Provider is selected at first call via the LLM_PROVIDER env var.
Supports: openai (default), pollinations, gemini, anthropic, cohere.

Every provider failure, including a timeout, is raised as LLMError so the
extraction chain can fall through to its next strategy.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

_POLLINATIONS_BASE_URL = "https://gen.pollinations.ai/v1"


class LLMError(Exception):
    """Raised when the LLM provider call fails or returns nothing usable."""


@dataclass(frozen=True)
class _ProviderConfig:
    api_key: str
    model: str
    base_url: str
    timeout: float


# Type alias for provider implementations
_ProviderFn = Callable[[_ProviderConfig, str, str, int], Awaitable[str]]

# ---------------------------------------------------------------------------
# Provider implementations
# ---------------------------------------------------------------------------


async def _complete_openai(cfg: _ProviderConfig, system: str, user_message: str, max_tokens: int) -> str:
    from openai import AsyncOpenAI

    client = AsyncOpenAI(
        api_key=cfg.api_key,
        base_url=cfg.base_url or None,
        timeout=cfg.timeout,
    )
    response = await client.chat.completions.create(
        model=cfg.model,
        max_tokens=max_tokens,
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": user_message},
        ],
    )
    return response.choices[0].message.content or ""


async def _complete_pollinations(cfg: _ProviderConfig, system: str, user_message: str, max_tokens: int) -> str:
    # OpenAI-compatible endpoint; only the base URL differs
    cfg = _ProviderConfig(
        api_key=cfg.api_key,
        model=cfg.model,
        base_url=cfg.base_url or _POLLINATIONS_BASE_URL,
        timeout=cfg.timeout,
    )
    return await _complete_openai(cfg, system, user_message, max_tokens)


async def _complete_gemini(cfg: _ProviderConfig, system: str, user_message: str, max_tokens: int) -> str:
    import google.generativeai as genai

    genai.configure(api_key=cfg.api_key)
    gm = genai.GenerativeModel(
        model_name=cfg.model,
        system_instruction=system,
    )
    response = await gm.generate_content_async(
        user_message,
        generation_config=genai.types.GenerationConfig(max_output_tokens=max_tokens),
        request_options={"timeout": cfg.timeout},
    )
    return response.text


async def _complete_anthropic(cfg: _ProviderConfig, system: str, user_message: str, max_tokens: int) -> str:
    import anthropic

    client = anthropic.AsyncAnthropic(api_key=cfg.api_key, timeout=cfg.timeout)
    response = await client.messages.create(
        model=cfg.model,
        max_tokens=max_tokens,
        system=system,
        messages=[{"role": "user", "content": user_message}],
    )
    return response.content[0].text


async def _complete_cohere(cfg: _ProviderConfig, system: str, user_message: str, max_tokens: int) -> str:
    import cohere

    client = cohere.AsyncClientV2(api_key=cfg.api_key, timeout=cfg.timeout)
    response = await client.chat(
        model=cfg.model,
        max_tokens=max_tokens,
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": user_message},
        ],
    )
    return response.message.content[0].text


# ---------------------------------------------------------------------------
# Provider selection (runs once at first call)
# ---------------------------------------------------------------------------

_PROVIDERS: dict[str, tuple[_ProviderFn, str]] = {
    "openai":       (_complete_openai,       "gpt-4o-mini"),
    "pollinations": (_complete_pollinations, "nova-micro"),
    "gemini":       (_complete_gemini,       "gemini-2.0-flash"),
    "anthropic":    (_complete_anthropic,    "claude-haiku-4-5-20251001"),
    "cohere":       (_complete_cohere,       "command-a-03-2025"),
}


def _select_provider() -> tuple[_ProviderFn, _ProviderConfig]:
    """Read settings and return (provider_fn, provider_config)."""
    from src.config import settings

    provider_name = settings.LLM_PROVIDER.lower()
    if provider_name not in _PROVIDERS:
        raise LLMError(
            f"Unknown LLM_PROVIDER={provider_name!r}. "
            f"Supported: {', '.join(_PROVIDERS)}"
        )

    fn, default_model = _PROVIDERS[provider_name]
    cfg = _ProviderConfig(
        api_key=settings.LLM_API_KEY,
        model=settings.LLM_MODEL or default_model,
        base_url=settings.LLM_BASE_URL,
        timeout=settings.LLM_TIMEOUT_SECONDS,
    )

    logger.info("LLM provider: %s, model: %s", provider_name, cfg.model)
    return fn, cfg


# Lazy singleton — populated on first call to complete()
_provider: tuple[_ProviderFn, _ProviderConfig] | None = None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def complete(system: str, user_message: str, max_tokens: int = 256) -> str:
    """Send a prompt to the configured LLM provider and return the response text.

    Raises:
        LLMError: on API errors, timeouts, or an empty response.
    """
    global _provider

    if _provider is None:
        _provider = _select_provider()
    fn, cfg = _provider

    try:
        text = await asyncio.wait_for(
            fn(cfg, system, user_message, max_tokens), timeout=cfg.timeout,
        )
    except asyncio.TimeoutError as exc:
        raise LLMError(f"LLM call timed out after {cfg.timeout:.0f}s") from exc
    except LLMError:
        raise
    except Exception as exc:
        raise LLMError(f"LLM call failed: {exc}") from exc

    if not text or not text.strip():
        raise LLMError("LLM returned an empty response")
    return text
