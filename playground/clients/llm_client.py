"""
Event-driven proxy HTTP client that automatically updates when configuration changes.

Serves the chat playground's calls against the proxy's OpenAI-compatible API:
streaming chat completions, one-shot completions, model listing and prompt
improvement. The underlying httpx client is only replaced between streams, so
a configuration change never cuts off a response in flight.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Literal

import httpx

from playground.chat.logging_utils import should_log_feature
from playground.chat.models import ChatRequest
from playground.config import Configuration
from playground.errors import ChatValidationError, TransportError

logger = logging.getLogger(__name__)

PromptKind = Literal["chat", "image"]

CHAT_IMPROVE_SYSTEM_PROMPT = """You are an expert prompt engineer. Your task is to improve user prompts to make them \
clearer, more specific, and more effective.

Guidelines:
- Clarify the intent and add specific details
- Structure the request logically
- Add context where helpful
- Keep the same language as the original prompt
- Make the prompt actionable and focused
- Don't add unnecessary complexity

Respond ONLY with the improved prompt, nothing else. No explanations, no quotation marks, just the improved \
prompt text."""

IMAGE_IMPROVE_SYSTEM_PROMPT = """You are an expert image prompt engineer specializing in AI image generation. Your \
task is to enhance image prompts for maximum visual impact.

Guidelines:
- Add detailed visual descriptions (lighting, composition, perspective)
- Specify art style, medium, and technique
- Include subject details (pose, expression, textures)
- Describe background, atmosphere, and mood
- Add quality boosters (4K, highly detailed, professional)
- Keep the same language as the original prompt

Respond ONLY with the improved prompt, nothing else. No explanations, no quotation marks, just the improved \
image prompt."""

_IMPROVE_PROMPTS: dict[str, tuple[str, str]] = {
    "chat": (CHAT_IMPROVE_SYSTEM_PROMPT, "Now improve this prompt:"),
    "image": (IMAGE_IMPROVE_SYSTEM_PROMPT, "Now improve this image prompt:"),
}


def build_http_client(
    configuration: Configuration,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create the pooled proxy client from the llm and connection_pool config."""
    llm_config = configuration.get_llm_config()
    pool_config = configuration.get_connection_pool_config()

    return httpx.AsyncClient(
        base_url=llm_config["base_url"],
        headers={
            "Authorization": f"Bearer {configuration.api_key}",
            "Content-Type": "application/json",
        },
        timeout=pool_config["request_timeout_seconds"],
        http2=True,
        # Configurable connection limits for performance tuning
        limits=httpx.Limits(
            max_connections=pool_config["max_connections"],
            max_keepalive_connections=pool_config["max_keepalive_connections"],
            keepalive_expiry=pool_config["keepalive_expiry_seconds"],
        ),
        transport=transport,
        trust_env=False,
    )


def split_models(models: list[dict[str, Any]]) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    """Split a model list into (chat models, image models) by "image" in the id."""
    chat: list[dict[str, Any]] = []
    image: list[dict[str, Any]] = []
    for model in models:
        (image if "image" in str(model.get("id", "")).lower() else chat).append(model)
    return chat, image


class LLMClient:
    """
    Proxy HTTP client for chat completions.

    Subscribes to configuration changes; connection-level changes (base_url,
    credential, pool settings) rebuild the httpx client once no stream is active.
    """

    def __init__(
        self,
        configuration: Configuration,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.configuration = configuration
        self._transport = transport
        self._active_streams = 0
        self._pending_rebuild = False
        self._config_lock = asyncio.Lock()
        self._background_tasks: set[asyncio.Task[Any]] = set()

        self._llm_config = configuration.get_llm_config()
        self._connection_key = self._connection_settings()
        self.client: httpx.AsyncClient | None = build_http_client(configuration, transport)
        logger.info("LLM client initialized for %s", self._llm_config["base_url"])

        # Subscribe to configuration changes for event-driven updates
        self.configuration.subscribe_to_changes(self._on_config_change)

    @property
    def chat_path(self) -> str:
        return self._llm_config.get("chat_path", "/v1/chat/completions")

    @property
    def models_path(self) -> str:
        return self._llm_config.get("models_path", "/v1/models")

    @property
    def improve_model(self) -> str:
        return self._llm_config.get("improve_model", "gemini-3-flash")

    # ------------------------------------------------------------------
    # Configuration changes
    # ------------------------------------------------------------------

    def _connection_settings(self) -> tuple[Any, ...]:
        return (
            self.configuration.get_llm_config().get("base_url"),
            self.configuration.api_key,
            tuple(sorted(self.configuration.get_connection_pool_config().items())),
        )

    def _on_config_change(self, new_config: dict[str, Any]) -> None:
        """Event handler for configuration changes."""
        task = asyncio.create_task(self._handle_config_change_async())
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _handle_config_change_async(self) -> None:
        async with self._config_lock:
            try:
                self._llm_config = self.configuration.get_llm_config()
                new_key = self._connection_settings()
            except ValueError as e:
                logger.error(f"Ignoring invalid LLM configuration change: {e}")
                return

            if new_key == self._connection_key:
                logger.info("LLM request settings updated without client replacement")
                return

            if self._active_streams > 0:
                logger.warning(f"Deferring client replacement due to {self._active_streams} active stream(s)")
                self._pending_rebuild = True
                return

            await self._rebuild_client()

    async def _rebuild_client(self) -> None:
        if self.client is not None:
            logger.info("Replacing HTTP client with new configuration")
            await self.client.aclose()
        self._connection_key = self._connection_settings()
        self.client = build_http_client(self.configuration, self._transport)
        self._pending_rebuild = False

    async def _check_pending_config_change(self) -> None:
        async with self._config_lock:
            if self._pending_rebuild and self._active_streams == 0:
                logger.info("Applying deferred configuration change")
                await self._rebuild_client()

    def _require_client(self) -> httpx.AsyncClient:
        if self.client is None:
            raise TransportError("LLM client is closed")
        return self.client

    def _log_http_request(
        self,
        method: str,
        url: str,
        status_code: int | None = None,
        duration_ms: float | None = None,
    ) -> None:
        """Log HTTP request details if the http_requests feature is enabled."""
        if not should_log_feature("clients", "http_requests"):
            return

        message_parts = [f"HTTP {method} {url}"]
        if status_code is not None:
            message_parts.append(f"Status: {status_code}")
        if duration_ms is not None:
            message_parts.append(f"Duration: {duration_ms:.2f}ms")

        logger.info(" | ".join(message_parts))

    # ------------------------------------------------------------------
    # Chat completions
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def stream(self, request: ChatRequest) -> AsyncIterator[httpx.Response]:
        """
        Open a streaming chat completion.

        The response is yielded with its status known and its body unread;
        the caller classifies the status and reads ``aiter_bytes()``. Leaving
        the context closes the response and releases the connection.
        """
        client = self._require_client()
        self._active_streams += 1
        logger.debug(f"Started stream, active streams: {self._active_streams}")
        start_time = time.monotonic()
        try:
            async with client.stream(
                "POST",
                self.chat_path,
                json=request.to_payload(),
                headers={"Accept": "text/event-stream"},
            ) as response:
                self._log_http_request(
                    "POST", self.chat_path, response.status_code, (time.monotonic() - start_time) * 1000
                )
                yield response
        finally:
            self._active_streams -= 1
            logger.debug(f"Ended stream, active streams: {self._active_streams}")

            # Check if we can apply any pending configuration changes
            if self._active_streams == 0 and self._pending_rebuild:
                task = asyncio.create_task(self._check_pending_config_change())
                self._background_tasks.add(task)
                task.add_done_callback(self._background_tasks.discard)

    async def chat_once(
        self,
        messages: list[dict[str, Any]],
        model: str,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Non-streaming chat completion.

        Raises:
            TransportError: On non-2xx status or network failure
        """
        payload = self._build_payload(messages, model, params)
        response = await self._request("POST", self.chat_path, json=payload)
        return response.json()

    def _build_payload(
        self,
        messages: list[dict[str, Any]],
        model: str,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Build a non-streaming payload, passing generation params through."""
        payload: dict[str, Any] = {k: v for k, v in (params or {}).items() if v is not None}
        if payload.get("reasoning_effort") == "none":
            payload.pop("reasoning_effort")
        payload.update({"model": model, "messages": messages, "stream": False})
        return payload

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        client = self._require_client()
        start_time = time.monotonic()
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"HTTP error: {e}")
            raise TransportError(f"Network error: {e!s}") from e

        self._log_http_request(method, url, response.status_code, (time.monotonic() - start_time) * 1000)
        if not response.is_success:
            if response.status_code == 401:
                logger.error("Authentication failed; check the proxy credential")
            logger.error(f"Response body: {response.text[:1000]}")
            raise TransportError(f"HTTP error! status: {response.status_code}", response.status_code)
        return response

    # ------------------------------------------------------------------
    # Models
    # ------------------------------------------------------------------

    async def list_models(self) -> list[dict[str, Any]]:
        """Fetch all models. Accepts a bare list or an OpenAI ``{"data": [...]}`` body."""
        data = (await self._request("GET", self.models_path)).json()
        if isinstance(data, dict):
            data = data.get("data", [])
        return [m for m in data or [] if isinstance(m, dict)]

    async def get_chat_models(self) -> list[dict[str, Any]]:
        return split_models(await self.list_models())[0]

    async def get_image_models(self) -> list[dict[str, Any]]:
        return split_models(await self.list_models())[1]

    # ------------------------------------------------------------------
    # Prompt improvement
    # ------------------------------------------------------------------

    async def improve_prompt(self, prompt: str, kind: PromptKind = "chat") -> str:
        """
        Rewrite a chat or image prompt with the fixed improver model.

        The system prompt is merged into the single user turn, which more
        proxied models accept than a separate system message.

        Returns:
            The improved prompt, or ``prompt`` unchanged when the reply is empty
        """
        if not prompt.strip():
            raise ChatValidationError("Cannot improve an empty prompt")
        if kind not in _IMPROVE_PROMPTS:
            raise ValueError(f"Unknown prompt kind: {kind}")

        system_prompt, lead_in = _IMPROVE_PROMPTS[kind]
        full_prompt = f"{system_prompt}\n\n{lead_in}\n\n{prompt}"

        logger.info(f"→ LLM: improving {kind} prompt with {self.improve_model}")
        result = await self.chat_once([{"role": "user", "content": full_prompt}], self.improve_model)

        choices = result.get("choices") or [{}]
        content = (choices[0].get("message") or {}).get("content") or ""
        return content.strip() or prompt

    async def close(self) -> None:
        """Close the HTTP client and unsubscribe from config changes."""
        self.configuration.unsubscribe_from_changes(self._on_config_change)
        if self.client is not None:
            await self.client.aclose()
            self.client = None

    async def __aenter__(self) -> LLMClient:
        """Async context manager entry."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Async context manager exit."""
        await self.close()
