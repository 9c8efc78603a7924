"""
Event-driven LLM HTTP client for OpenAI-compatible chat completion APIs.

One pooled httpx client per provider, created lazily on first use. Both
supported providers speak the OpenAI ``/chat/completions`` SSE protocol (Google
through its OpenAI-compatible endpoint), so streaming is handled in one place.
Configuration changes are picked up through the observer pattern; clients are
only replaced while no stream is using them.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncGenerator, Sequence
from typing import TYPE_CHECKING, Any, Protocol, cast

import httpx

from src.chat.errors import ProviderError
from src.chat.logging_utils import should_log_feature
from src.chat.models import ChatCompletionMessage

if TYPE_CHECKING:
    from src.config import Configuration

logger = logging.getLogger(__name__)

HTTP_OK = 200

# Provider config keys that configure the connection, not the request payload
INFRASTRUCTURE_KEYS = frozenset({"base_url", "api_key_env", "model", "timeout"})


class CompletionClient(Protocol):
    """Streaming chat-completion capability consumed by the orchestrator."""

    def stream_completion(
        self,
        provider: str,
        model_id: str,
        messages: Sequence[ChatCompletionMessage],
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncGenerator[dict[str, Any]]: ...


class LLMClient:
    """
    Event-driven LLM HTTP client with one connection pool per provider.

    The client uses the observer pattern to drop cached HTTP clients when the
    provider configuration changes; a replacement is deferred until no stream
    is active.
    """

    def __init__(self, configuration: Configuration) -> None:
        self.configuration: Configuration = configuration
        self._clients: dict[str, httpx.AsyncClient] = {}
        self._client_settings: dict[str, tuple[str, str]] = {}  # provider -> (base_url, api_key)
        self._active_streams: int = 0
        self._stale_providers: set[str] = set()
        self._background_tasks: set[asyncio.Task[Any]] = set()
        self._connection_pool_config = self.configuration.get_connection_pool_config()

        self.configuration.subscribe_to_changes(self._on_config_change)

    def _on_config_change(self, new_config: dict[str, Any]) -> None:
        """Event handler for configuration changes."""
        providers = new_config.get("llm", {}).get("providers", {})
        new_pool_config = self.configuration.get_connection_pool_config()
        pool_changed = new_pool_config != self._connection_pool_config
        self._connection_pool_config = new_pool_config

        for provider, (base_url, _) in self._client_settings.items():
            new_base_url = providers.get(provider, {}).get("base_url")
            if pool_changed or new_base_url != base_url:
                logger.info("🔄 Provider '%s' client marked for replacement (endpoint %s → %s)", provider, base_url, new_base_url)
                self._stale_providers.add(provider)

    def _create_client(self, base_url: str, api_key: str) -> httpx.AsyncClient:
        pool = self._connection_pool_config
        return httpx.AsyncClient(
            base_url=base_url,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=pool["request_timeout_seconds"],
            http2=True,
            limits=httpx.Limits(
                max_connections=pool["max_connections"],
                max_keepalive_connections=pool["max_keepalive_connections"],
                keepalive_expiry=pool["keepalive_expiry_seconds"],
            ),
            trust_env=False,
        )

    async def _get_client(self, provider: str) -> httpx.AsyncClient:
        """Return the provider's HTTP client, creating (or replacing) it as needed.

        Raises:
            ClientInputError: unknown provider
            ConfigurationError: missing API key
        """
        provider_config = self.configuration.get_provider_config(provider)
        api_key = self.configuration.get_provider_api_key(provider)
        settings = (provider_config["base_url"], api_key)

        client = self._clients.get(provider)
        if (
            client is not None
            and provider not in self._stale_providers
            and self._client_settings.get(provider) == settings
        ):
            return client

        if client is not None and self._active_streams == 0:
            logger.info("🔄 Replacing HTTP client for provider '%s'", provider)
            await client.aclose()
        elif client is not None:
            # An active stream still holds the old client
            task = asyncio.create_task(self._close_later(client))
            self._background_tasks.add(task)
            task.add_done_callback(self._background_tasks.discard)

        client = self._create_client(*settings)
        self._clients[provider] = client
        self._client_settings[provider] = settings
        self._stale_providers.discard(provider)
        logger.info("LLM client initialized for provider '%s' (%s)", provider, settings[0])
        return client

    async def _close_later(self, client: httpx.AsyncClient) -> None:
        while self._active_streams > 0:
            await asyncio.sleep(0.5)
        await client.aclose()

    def _build_payload(
        self,
        provider: str,
        model_id: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        """
        Build API payload, passing through every non-infrastructure provider parameter.
        """
        payload: dict[str, Any] = {
            "model": model_id,
            "messages": messages,
            "stream": True,
        }
        for key, value in self.configuration.get_provider_config(provider).items():
            if key not in INFRASTRUCTURE_KEYS and value is not None:
                payload[key] = value

        if tools:
            payload["tools"] = tools

        return {k: v for k, v in payload.items() if v is not None}

    async def stream_completion(
        self,
        provider: str,
        model_id: str,
        messages: Sequence[ChatCompletionMessage],
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncGenerator[dict[str, Any]]:
        """
        Stream raw completion chunks (dicts with ``choices``) from the provider.

        Raises:
            ProviderError: non-200 status, invalid JSON chunk, transport failure
                or an empty stream
        """
        client = await self._get_client(provider)

        dict_messages = [msg.model_dump(exclude_none=True) for msg in messages]
        payload = self._build_payload(provider, model_id, dict_messages, tools)

        self._active_streams += 1
        logger.debug("📈 Started stream, active streams: %d", self._active_streams)
        start_time = time.monotonic()

        try:
            async with client.stream(
                "POST",
                "/chat/completions",
                json=payload,
                headers={"Accept": "text/event-stream", "Accept-Encoding": "identity"},
            ) as response:
                # FAIL FAST: Ensure streaming response is valid
                if response.status_code != HTTP_OK:
                    error_text = (await response.aread()).decode(errors="replace")
                    raise ProviderError(
                        provider,
                        f"Streaming API error {response.status_code}: {error_text[:1000]}",
                        upstream_status=response.status_code,
                    )

                chunk_count = 0
                async for line in response.aiter_lines():
                    if not line.strip() or not line.startswith("data:"):
                        continue

                    data = line[5:].strip()
                    if data == "[DONE]":
                        break

                    try:
                        chunk = cast(dict[str, Any], json.loads(data))
                    except json.JSONDecodeError as e:
                        raise ProviderError(provider, f"Invalid JSON in stream chunk: {e}", cause=e) from e

                    if "error" in chunk and "choices" not in chunk:
                        raise ProviderError(provider, f"Provider reported an error: {chunk['error']}")

                    chunk_count += 1
                    # Yield raw chunk dict to avoid per-chunk Pydantic cost
                    if "choices" in chunk:
                        yield chunk

                # FAIL FAST: Ensure we got at least some data
                if chunk_count == 0:
                    raise ProviderError(provider, "No streaming chunks received from API")

            if should_log_feature("connection_pool", "http_requests"):
                logger.info(
                    "🔌 HTTP POST /chat/completions | provider=%s | chunks=%d | %.2fms",
                    provider,
                    chunk_count,
                    (time.monotonic() - start_time) * 1000,
                )

        except httpx.HTTPError as e:
            logger.error("HTTP error during streaming (%s): %s", type(e).__name__, e)
            raise ProviderError(provider, f"HTTP error: {e!s}", cause=e) from e
        finally:
            self._active_streams -= 1
            logger.debug("📉 Ended stream, active streams: %d", self._active_streams)

    async def close(self) -> None:
        """Close every HTTP client and unsubscribe from config changes."""
        self.configuration.unsubscribe_from_changes(self._on_config_change)

        for task in list(self._background_tasks):
            task.cancel()
        for provider, client in list(self._clients.items()):
            await client.aclose()
            logger.debug("Closed HTTP client for provider '%s'", provider)
        self._clients.clear()
        self._client_settings.clear()

    async def __aenter__(self) -> LLMClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.close()
