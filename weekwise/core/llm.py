"""
WeekWise — LLM Provider Abstraction.

Single public function `complete()` that routes to the configured provider.
Provider is selected on first use via the LLM_PROVIDER env var.
Supports: anthropic (default), gemini, openai.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from weekwise.core.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

_ProviderFn = Callable[[str, str, str, str, int], Awaitable[str]]


class PlannerError(UpstreamUnavailable):
    """Raised when the planner model cannot be reached or answers unusably."""


# ---------------------------------------------------------------------------
# Provider implementations
# ---------------------------------------------------------------------------


async def _complete_gemini(api_key: str, model: str, system: str, user_message: str, max_tokens: int) -> str:
    import google.generativeai as genai

    genai.configure(api_key=api_key)
    gm = genai.GenerativeModel(
        model_name=model,
        system_instruction=system,
    )
    response = await gm.generate_content_async(
        user_message,
        generation_config=genai.types.GenerationConfig(
            max_output_tokens=max_tokens,
            response_mime_type="application/json",
        ),
    )
    return response.text


async def _complete_anthropic(api_key: str, model: str, system: str, user_message: str, max_tokens: int) -> str:
    import anthropic

    client = anthropic.AsyncAnthropic(api_key=api_key)
    response = await client.messages.create(
        model=model,
        max_tokens=max_tokens,
        system=system,
        messages=[{"role": "user", "content": user_message}],
    )
    return "".join(block.text for block in response.content if block.type == "text")


async def _complete_openai(api_key: str, model: str, system: str, user_message: str, max_tokens: int) -> str:
    from openai import AsyncOpenAI

    client = AsyncOpenAI(api_key=api_key)
    response = await client.chat.completions.create(
        model=model,
        max_tokens=max_tokens,
        response_format={"type": "json_object"},
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": user_message},
        ],
    )
    return response.choices[0].message.content or ""


# ---------------------------------------------------------------------------
# Provider selection (runs once at first call)
# ---------------------------------------------------------------------------

_PROVIDERS: dict[str, tuple[_ProviderFn, str]] = {
    "gemini":    (_complete_gemini,    "gemini-2.0-flash"),
    "anthropic": (_complete_anthropic, "claude-haiku-4-5-20251001"),
    "openai":    (_complete_openai,    "gpt-4o-mini"),
}


def is_configured() -> bool:
    """True when an API key is set, i.e. the planner model can be used."""
    from weekwise.config import settings

    return bool(settings.LLM_API_KEY)


def _select_provider() -> tuple[_ProviderFn, str, str]:
    """Read settings and return (provider_fn, model, api_key)."""
    from weekwise.config import settings

    provider_name = settings.LLM_PROVIDER.lower()
    if provider_name not in _PROVIDERS:
        raise ValueError(
            f"Unknown LLM_PROVIDER={provider_name!r}. "
            f"Supported: {', '.join(_PROVIDERS)}"
        )

    fn, default_model = _PROVIDERS[provider_name]
    model = settings.LLM_MODEL or default_model
    api_key = settings.LLM_API_KEY

    logger.info("LLM provider: %s, model: %s", provider_name, model)
    return fn, model, api_key


# Lazy singleton, populated on first call to complete()
_provider_fn: _ProviderFn | None = None
_model: str = ""
_api_key: str = ""


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def complete(system: str, user_message: str, max_tokens: int = 256) -> str:
    """Send a prompt to the configured LLM provider and return the response text.

    Raises PlannerError on any provider failure.
    """
    global _provider_fn, _model, _api_key

    if _provider_fn is None:
        _provider_fn, _model, _api_key = _select_provider()

    try:
        return await _provider_fn(_api_key, _model, system, user_message, max_tokens)
    except Exception as exc:
        logger.error("LLM call failed (%s): %s", _model, exc)
        raise PlannerError(f"Planner model call failed: {exc}") from exc
