"""
LLM client abstraction -- provider-agnostic async chat-completion call.

Supported providers:
  openai    -- OpenAI Chat Completions (api.openai.com)
  zhipu     -- Zhipu GLM, OpenAI-compatible
  moonshot  -- Moonshot, OpenAI-compatible
  deepseek  -- DeepSeek, OpenAI-compatible
  custom    -- any OpenAI-compatible endpoint (apiUrl required)
  anthropic -- Anthropic Messages API

New providers are added with ``register_provider``; nothing else changes.
Each call is a single attempt with a bounded timeout.  Retrying is the
caller's decision.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable

import httpx

from src.core.config import get_settings
from src.core.errors import ParseError, ProviderError
from src.core.logging import get_logger
from src.intent.model import LLMConfig

logger = get_logger(__name__)

Message = dict[str, str]

_ANTHROPIC_VERSION = "2023-06-01"
_VERSION_SUFFIX_RE = re.compile(r"/v[0-9]+$")


# ── Provider specs ───────────────────────────────────────


@dataclass(frozen=True)
class ProviderSpec:
    """How to talk to one provider.

    build_request(config, messages) -> (headers, json body)
    extract_content(response json) -> assistant text
    """
    default_url: str | None
    build_request: Callable[[LLMConfig, list[Message]], tuple[dict[str, str], dict[str, Any]]]
    extract_content: Callable[[Any], str]
    normalize_url: Callable[[str], str] = lambda url: url


def openai_chat_url(url: str) -> str:
    """Point an OpenAI-compatible base URL at its chat-completions endpoint."""
    url = url.rstrip("/")
    if url.endswith("/chat/completions"):
        return url
    if _VERSION_SUFFIX_RE.search(url):
        return url + "/chat/completions"
    return url + "/v1/chat/completions"


def _openai_request(config: LLMConfig, messages: list[Message]) -> tuple[dict[str, str], dict[str, Any]]:
    headers = {
        "Authorization": f"Bearer {config.api_key}",
        "Content-Type": "application/json",
    }
    body = {
        "model": config.model,
        "messages": messages,
        "max_tokens": config.max_tokens,
        "temperature": config.temperature,
    }
    return headers, body


def _openai_content(payload: Any) -> str:
    return payload["choices"][0]["message"]["content"]


def _anthropic_request(config: LLMConfig, messages: list[Message]) -> tuple[dict[str, str], dict[str, Any]]:
    headers = {
        "x-api-key": config.api_key,
        "anthropic-version": _ANTHROPIC_VERSION,
        "Content-Type": "application/json",
    }
    system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
    body: dict[str, Any] = {
        "model": config.model,
        "messages": [m for m in messages if m["role"] != "system"],
        "max_tokens": config.max_tokens,
        "temperature": config.temperature,
    }
    if system:
        body["system"] = system
    return headers, body


def _anthropic_content(payload: Any) -> str:
    return payload["content"][0]["text"]


def _openai_compatible(default_url: str | None) -> ProviderSpec:
    return ProviderSpec(
        default_url=default_url,
        build_request=_openai_request,
        extract_content=_openai_content,
        normalize_url=openai_chat_url,
    )


_PROVIDERS: dict[str, ProviderSpec] = {
    "openai": _openai_compatible("https://api.openai.com/v1/chat/completions"),
    "zhipu": _openai_compatible("https://open.bigmodel.cn/api/paas/v4/chat/completions"),
    "moonshot": _openai_compatible("https://api.moonshot.cn/v1/chat/completions"),
    "deepseek": _openai_compatible("https://api.deepseek.com/v1/chat/completions"),
    "custom": _openai_compatible(None),
    "anthropic": ProviderSpec(
        default_url="https://api.anthropic.com/v1/messages",
        build_request=_anthropic_request,
        extract_content=_anthropic_content,
    ),
}


def register_provider(name: str, spec: ProviderSpec) -> None:
    """Add (or replace) a provider under *name*."""
    _PROVIDERS[name.lower()] = spec


def available_providers() -> list[str]:
    return sorted(_PROVIDERS)


def get_provider(name: str) -> ProviderSpec:
    spec = _PROVIDERS.get(name.lower())
    if spec is None:
        raise ProviderError(
            f"LLM provider '{name}' is not supported.  "
            f"Choose from: {', '.join(available_providers())}",
            provider=name,
        )
    return spec


def resolve_url(config: LLMConfig) -> str:
    spec = get_provider(config.provider)
    if config.api_url:
        return spec.normalize_url(config.api_url)
    if spec.default_url is None:
        raise ProviderError(
            f"Provider '{config.provider}' needs an explicit apiUrl.",
            provider=config.provider,
        )
    return spec.default_url


# ── Public API ───────────────────────────────────────────


async def call_llm(
    config: LLMConfig,
    messages: list[Message],
    *,
    timeout: float | None = None,
    client: httpx.AsyncClient | None = None,
) -> str:
    """Send *messages* to the provider in *config* and return the reply text.

    Parameters
    ----------
    config : LLMConfig
        Provider id, key, optional URL and model.
    messages : list[dict]
        ``{"role", "content"}`` chat messages; a leading system message is
        passed the way the provider expects it.
    timeout : float, optional
        Seconds; defaults to ``Settings.llm_timeout_seconds``.
    client : httpx.AsyncClient, optional
        Reuse a caller-owned client (tests inject one with a mock transport).

    Raises
    ------
    ProviderError
        Unknown provider, missing key or URL, transport failure, timeout,
        or a non-2xx answer.
    ParseError
        A 2xx answer whose body is not the provider's documented shape.
    """
    spec = get_provider(config.provider)
    if not config.api_key:
        raise ProviderError(f"No API key configured for provider '{config.provider}'.", provider=config.provider)
    url = resolve_url(config)
    headers, body = spec.build_request(config, messages)
    if timeout is None:
        timeout = get_settings().llm_timeout_seconds

    logger.info("Calling LLM provider=%s model=%s url=%s", config.provider, config.model, url)
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=timeout) as own_client:
                response = await own_client.post(url, headers=headers, json=body)
        else:
            response = await client.post(url, headers=headers, json=body, timeout=timeout)
    except httpx.TimeoutException as exc:
        raise ProviderError(
            f"Provider '{config.provider}' timed out after {timeout:g}s",
            provider=config.provider,
        ) from exc
    except httpx.HTTPError as exc:
        raise ProviderError(
            f"Provider '{config.provider}' request failed: {exc!r}",
            provider=config.provider,
        ) from exc

    if not response.is_success:
        raise ProviderError(
            f"Provider '{config.provider}' answered HTTP {response.status_code}: {response.text[:200]}",
            provider=config.provider,
            status_code=response.status_code,
        )

    try:
        payload = response.json()
    except ValueError as exc:
        raise ParseError("Provider response body is not JSON", raw_output=response.text) from exc

    try:
        content = spec.extract_content(payload)
    except (KeyError, IndexError, TypeError) as exc:
        raise ParseError(
            f"Provider response is missing the expected content field: {exc!r}",
            raw_output=response.text,
        ) from exc
    if not isinstance(content, str):
        raise ParseError("Provider response content is not text", raw_output=response.text)

    logger.info("LLM response (%d chars)", len(content))
    return content
