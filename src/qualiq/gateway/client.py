"""Async client for the OpenAI-compatible AI completion gateway."""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping, Sequence

import httpx

from qualiq.streaming.errors import TransportError, error_for_status

logger = logging.getLogger(__name__)

_ALLOWED_ROLES = frozenset({"user", "assistant", "system"})
_MAX_ERROR_BODY_CHARS = 500


class GatewayConfigurationError(RuntimeError):
    """The gateway cannot be called with the current configuration."""


class GatewayResponseError(RuntimeError):
    """The gateway answered, but not with a usable completion."""


def normalize_turns(messages: Sequence[Mapping[str, Any]]) -> list[dict[str, str]]:
    """Validate chat turns and keep only ``role`` and ``content``."""
    turns: list[dict[str, str]] = []
    for index, message in enumerate(messages):
        if not isinstance(message, Mapping):
            raise ValueError(f"messages[{index}] must be an object")
        role = message.get("role")
        content = message.get("content")
        if role not in _ALLOWED_ROLES:
            raise ValueError(f"messages[{index}].role must be one of {sorted(_ALLOWED_ROLES)}")
        if not isinstance(content, str):
            raise ValueError(f"messages[{index}].content must be a string")
        turns.append({"role": role, "content": content})
    return turns


class AIGatewayClient:
    def __init__(
        self,
        base_url: str,
        api_key: str | None,
        model: str,
        *,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
        error_copy: Mapping[str, str] | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self.model = model
        self._timeout = timeout
        self._transport = transport
        self._error_copy = dict(error_copy or {})
        self._client: httpx.AsyncClient | None = None

    @property
    def completions_url(self) -> str:
        return f"{self._base_url}/chat/completions"

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self._client

    def _headers(self) -> dict[str, str]:
        if not self._api_key:
            raise GatewayConfigurationError("AI_GATEWAY_API_KEY is not configured")
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def open_chat_stream(
        self,
        messages: Sequence[Mapping[str, Any]],
        system_prompt: str | None = None,
    ) -> httpx.Response:
        """Start a streamed completion and return the open upstream response.

        The caller owns the response and must ``aclose`` it. Non-OK statuses
        raise the matching ``TransportError`` subclass.
        """
        turns = normalize_turns(messages)
        if system_prompt:
            turns.insert(0, {"role": "system", "content": system_prompt})
        body = {"model": self.model, "messages": turns, "stream": True}

        logger.info("Chat request received with %d messages", len(turns))
        client = self._http()
        request = client.build_request(
            "POST", self.completions_url, json=body, headers=self._headers()
        )
        try:
            response = await client.send(request, stream=True)
        except httpx.HTTPError as exc:
            logger.error("AI gateway unreachable: %s", exc)
            raise TransportError(self._error_copy.get("generic")) from exc

        if response.is_success:
            logger.info("Streaming response started")
            return response

        try:
            detail = (await response.aread()).decode("utf-8", errors="replace")
        finally:
            await response.aclose()
        logger.error(
            "AI gateway error: %s %s", response.status_code, detail[:_MAX_ERROR_BODY_CHARS]
        )
        raise error_for_status(response.status_code, self._error_copy)

    async def complete_json(self, system_prompt: str, user_prompt: str) -> dict[str, Any]:
        """Request a JSON-object completion and return the decoded object."""
        body = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "response_format": {"type": "json_object"},
        }
        try:
            response = await self._http().post(
                self.completions_url, json=body, headers=self._headers()
            )
        except httpx.HTTPError as exc:
            logger.error("AI gateway unreachable: %s", exc)
            raise TransportError(self._error_copy.get("generic")) from exc

        if not response.is_success:
            logger.error(
                "AI gateway error: %s %s",
                response.status_code,
                response.text[:_MAX_ERROR_BODY_CHARS],
            )
            raise error_for_status(response.status_code, self._error_copy)

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise GatewayResponseError("No content in AI response") from exc
        if not content:
            raise GatewayResponseError("No content in AI response")

        try:
            parsed = json.loads(content)
        except json.JSONDecodeError as exc:
            raise GatewayResponseError("AI response is not valid JSON") from exc
        if not isinstance(parsed, dict):
            raise GatewayResponseError("AI response must be a JSON object")
        return parsed
