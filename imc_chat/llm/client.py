"""
HTTP client for OpenAI-compatible chat completion APIs.

The client implements the model backend contract (`complete` / `stream`).
When a ToolSchemaManager is attached it also offers the registered MCP tools
to the model and runs any tool calls itself, hop by hop, so callers only
ever see the final assistant text.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncGenerator
from contextlib import aclosing
from typing import TYPE_CHECKING, Any

import httpx
from mcp import McpError, types

from .exceptions import (
    AuthenticationError,
    LLMError,
    NetworkError,
    ProviderError,
    RateLimitError,
    StreamingError,
    TokenLimitError,
)
from .models import Completion, ProviderType, StreamChunk, TokenUsage, ToolCall

if TYPE_CHECKING:                                        # pragma: no cover
    from imc_chat.tool_schema_manager import ToolSchemaManager

logger = logging.getLogger(__name__)

HTTP_OK = 200
HTTP_UNAUTHORIZED = 401
HTTP_FORBIDDEN = 403
HTTP_TOO_MANY_REQUESTS = 429

TOKEN_LIMIT_MARKERS = ("context_length", "maximum context", "too many tokens")


def detect_provider(base_url: str) -> ProviderType:
    """Detect provider type from base URL."""
    base_url_lower = base_url.lower()

    if "openrouter.ai" in base_url_lower:
        return ProviderType.OPENROUTER
    if "groq.com" in base_url_lower:
        return ProviderType.GROQ
    return ProviderType.OPENAI


class LLMClient:
    """HTTP client for LLM API requests with MCP tool call support."""

    def __init__(
        self,
        config: dict[str, Any],
        api_key: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        # Validate required configuration parameters
        required_keys = ["base_url", "model", "temperature", "max_tokens", "top_p"]
        for key in required_keys:
            if key not in config:
                raise ValueError(
                    f"Required LLM configuration parameter '{key}' not found. "
                    "All LLM parameters must be explicitly configured."
                )

        self.config: dict[str, Any] = config
        self.api_key: str = api_key
        self.provider_type = detect_provider(config["base_url"])
        self.client: httpx.AsyncClient = httpx.AsyncClient(
            base_url=config["base_url"],
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=config.get("timeout", 30.0),
            transport=transport,
        )
        self.tool_mgr: ToolSchemaManager | None = None
        self.max_tool_hops: int = 1

    def attach_tools(self, tool_mgr: ToolSchemaManager, max_tool_hops: int) -> None:
        """Offer `tool_mgr`'s tools on every request, for at most `max_tool_hops` rounds."""
        self.tool_mgr = tool_mgr
        self.max_tool_hops = max_tool_hops

    # ------------------------------------------------------------------ #
    # Backend contract                                                   #
    # ------------------------------------------------------------------ #

    async def complete(
        self, messages: list[dict[str, Any]], *, use_tools: bool = True
    ) -> Completion:
        """Blocking completion, running tool calls until the model answers."""
        conv = list(messages)
        tools_payload = self._tools_payload(use_tools)

        reply = await self._post_completion(conv, tools_payload)
        assistant_msg = reply["message"]
        total_usage = TokenUsage.from_api(reply.get("usage"))
        model = reply.get("model") or self.config["model"]
        full_text = assistant_msg.get("content") or ""

        hops = 0
        while calls := assistant_msg.get("tool_calls"):
            if hops >= self.max_tool_hops:
                logger.warning(
                    f"Maximum tool hops ({self.max_tool_hops}) reached, "
                    "stopping recursion"
                )
                full_text += "\n\n" + self._tool_limit_message()
                break

            cleaned = [self._clean_tool_call(call) for call in calls]
            conv.append({
                "role": "assistant",
                "content": assistant_msg.get("content") or "",
                "tool_calls": cleaned,
            })
            await self._execute_tool_calls(conv, cleaned)

            reply = await self._post_completion(conv, tools_payload)
            assistant_msg = reply["message"]
            total_usage = total_usage + TokenUsage.from_api(reply.get("usage"))
            if txt := assistant_msg.get("content"):
                full_text += txt
            hops += 1

        return Completion(
            text=full_text,
            model=model,
            usage=total_usage,
            finish_reason=reply.get("finish_reason"),
        )

    async def stream(
        self, messages: list[dict[str, Any]], *, use_tools: bool = True
    ) -> AsyncGenerator[StreamChunk]:
        """Stream assistant text, running tool calls between rounds."""
        conv = list(messages)
        tools_payload = self._tools_payload(use_tools)

        hops = 0
        while True:
            tool_calls: list[ToolCall] = []
            index_map: dict[str, int] = {}
            round_text = ""

            async with aclosing(self._stream_completion(conv, tools_payload)) as chunks:
                async for chunk in chunks:
                    if "choices" not in chunk or not chunk["choices"]:
                        continue

                    choice = chunk["choices"][0]
                    delta = choice.get("delta", {})

                    if content := delta.get("content"):
                        round_text += content
                        yield StreamChunk(text=content)

                    if deltas := delta.get("tool_calls"):
                        self._accumulate_tool_calls(tool_calls, deltas, index_map)

            calls = [call for call in tool_calls if call.function.name]
            if not calls:
                return

            if hops >= self.max_tool_hops:
                logger.warning(f"Maximum tool hops ({self.max_tool_hops}) reached, stopping")
                yield StreamChunk(
                    text="\n\n" + self._tool_limit_message(),
                    finish_reason="tool_limit_reached",
                )
                return

            cleaned = [call.to_dict() for call in calls]
            conv.append({"role": "assistant", "content": round_text, "tool_calls": cleaned})
            await self._execute_tool_calls(conv, cleaned)
            hops += 1

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    # ------------------------------------------------------------------ #
    # HTTP                                                               #
    # ------------------------------------------------------------------ #

    def _build_payload(
        self, messages: list[dict[str, Any]], tools: list[dict[str, Any]] | None
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.config["model"],
            "messages": messages,
            "temperature": self.config["temperature"],
            "max_tokens": self.config["max_tokens"],
            "top_p": self.config["top_p"],
        }
        if tools:
            payload["tools"] = tools
        return payload

    def _tools_payload(self, use_tools: bool) -> list[dict[str, Any]] | None:
        if not use_tools or self.tool_mgr is None:
            return None
        return self.tool_mgr.get_openai_tools() or None

    async def _post_completion(
        self, messages: list[dict[str, Any]], tools: list[dict[str, Any]] | None
    ) -> dict[str, Any]:
        payload = self._build_payload(messages, tools)
        try:
            response = await self.client.post("/chat/completions", json=payload)
        except httpx.TimeoutException as e:
            raise self._network_error(f"Request timeout: {e!s}") from e
        except httpx.TransportError as e:
            raise self._network_error(f"Network error: {e!s}") from e

        if response.status_code != HTTP_OK:
            raise self._error_from_response(
                response.status_code, response.text, response.headers
            )

        try:
            result = response.json()
            choice = result["choices"][0]
            return {
                "message": choice["message"],
                "finish_reason": choice.get("finish_reason"),
                "usage": result.get("usage"),
                "model": result.get("model", self.config["model"]),
            }
        except (KeyError, IndexError, ValueError) as e:
            raise LLMError(
                f"Unexpected response format: {e!s}",
                provider=self.provider_type.value,
                model=self.config["model"],
                status_code=response.status_code,
            ) from e

    async def _stream_completion(
        self, messages: list[dict[str, Any]], tools: list[dict[str, Any]] | None
    ) -> AsyncGenerator[dict[str, Any]]:
        payload = self._build_payload(messages, tools)
        payload["stream"] = True

        try:
            async with self.client.stream(
                "POST", "/chat/completions", json=payload
            ) as response:
                # FAIL FAST: Ensure streaming response is valid
                if response.status_code != HTTP_OK:
                    error_text = (await response.aread()).decode(errors="replace")
                    raise self._error_from_response(
                        response.status_code, error_text, response.headers
                    )

                content_type = response.headers.get("content-type", "")
                if "stream" not in content_type:
                    raise StreamingError(
                        f"Expected streaming response, got content-type: {content_type}",
                        provider=self.provider_type.value,
                        model=self.config["model"],
                    )

                chunk_count = 0
                async for line in response.aiter_lines():
                    if not line.startswith("data: "):
                        continue

                    data = line[6:]  # Remove "data: " prefix
                    if data.strip() == "[DONE]":
                        break

                    try:
                        chunk = json.loads(data)
                    except json.JSONDecodeError as e:
                        raise StreamingError(
                            f"Invalid JSON in stream chunk: {e}",
                            provider=self.provider_type.value,
                            model=self.config["model"],
                        ) from e

                    if error := chunk.get("error"):
                        code = error.get("code") if isinstance(error, dict) else None
                        if isinstance(code, int):
                            raise self._error_from_response(code, json.dumps(error), {})
                        raise ProviderError(
                            f"Provider error in stream: {error}",
                            provider=self.provider_type.value,
                            model=self.config["model"],
                        )

                    chunk_count += 1
                    yield chunk

                # FAIL FAST: Ensure we got at least some data
                if chunk_count == 0:
                    raise StreamingError(
                        "No streaming chunks received from API",
                        provider=self.provider_type.value,
                        model=self.config["model"],
                    )
        except httpx.TimeoutException as e:
            raise self._network_error(f"Streaming timeout: {e!s}") from e
        except httpx.TransportError as e:
            raise self._network_error(f"Network error during streaming: {e!s}") from e

    def _network_error(self, message: str) -> NetworkError:
        logger.error(message)
        return NetworkError(
            message, provider=self.provider_type.value, model=self.config["model"]
        )

    def _error_from_response(
        self, status_code: int, body: str, headers: Any
    ) -> LLMError:
        """Turn an error response into the matching LLMError subclass."""
        context = {
            "provider": self.provider_type.value,
            "model": self.config["model"],
            "status_code": status_code,
        }
        lowered = body.lower()
        logger.error(f"LLM API error {status_code}: {body[:500]}")

        if status_code == HTTP_TOO_MANY_REQUESTS:
            retry_after = headers.get("retry-after") if headers else None
            try:
                retry = float(retry_after) if retry_after else None
            except ValueError:
                retry = None
            return RateLimitError(
                f"Rate limit exceeded (429): {body}", retry_after=retry, **context
            )
        if status_code in (HTTP_UNAUTHORIZED, HTTP_FORBIDDEN):
            return AuthenticationError(
                f"Authentication failed ({status_code}): {body}", **context
            )
        if any(marker in lowered for marker in TOKEN_LIMIT_MARKERS):
            return TokenLimitError(f"Token limit exceeded: {body}", **context)
        return LLMError(f"LLM API error {status_code}: {body}", **context)

    # ------------------------------------------------------------------ #
    # Tool calls                                                         #
    # ------------------------------------------------------------------ #

    def _tool_limit_message(self) -> str:
        return (
            f"⚠️ Reached maximum tool call limit ({self.max_tool_hops}). "
            "Stopping to prevent infinite recursion."
        )

    @staticmethod
    def _clean_tool_call(call: dict[str, Any]) -> dict[str, Any]:
        function = call.get("function", {})
        return {
            "id": call.get("id", ""),
            "type": call.get("type", "function"),
            "function": {
                "name": function.get("name", ""),
                "arguments": function.get("arguments", ""),
            },
        }

    @staticmethod
    def _accumulate_tool_calls(
        current: list[ToolCall],
        deltas: list[dict[str, Any]],
        index_map: dict[str, int],
    ) -> None:
        """
        Assemble tool calls from streaming deltas.

        Deltas carry an explicit ``index`` or only an ``id``; `index_map`
        resolves id-only fragments to their slot without scanning.
        """
        for delta in deltas:
            if "index" in delta:
                idx = delta["index"]
                while len(current) <= idx:
                    current.append(ToolCall())
                if delta.get("id"):
                    index_map[delta["id"]] = idx
            else:
                tool_id = delta.get("id", "")
                if tool_id and tool_id in index_map:
                    idx = index_map[tool_id]
                else:
                    idx = len(current)
                    current.append(ToolCall())
                    if tool_id:
                        index_map[tool_id] = idx

            if delta.get("id"):
                current[idx].id = delta["id"]

            if function := delta.get("function"):
                target = current[idx].function
                if "name" in function and function["name"]:
                    target.name += function["name"]
                if "arguments" in function and function["arguments"]:
                    target.arguments += function["arguments"]

    async def _execute_tool_calls(
        self, conv: list[dict[str, Any]], calls: list[dict[str, Any]]
    ) -> None:
        """Run each tool call and append its result to `conv` as a tool message."""
        if self.tool_mgr is None:
            raise McpError(
                error=types.ErrorData(
                    code=types.INTERNAL_ERROR,
                    message="Model requested tools but no tools are registered",
                )
            )

        for call in calls:
            tool_name = call["function"]["name"]
            try:
                args = json.loads(call["function"].get("arguments") or "{}")
            except json.JSONDecodeError as e:
                raise McpError(
                    error=types.ErrorData(
                        code=types.INVALID_PARAMS,
                        message=f"Invalid JSON in tool call arguments for {tool_name}: {e}",
                    )
                ) from e

            logger.info(f"Executing tool '{tool_name}'")
            result = await self.tool_mgr.call_tool(tool_name, args)
            conv.append({
                "role": "tool",
                "tool_call_id": call["id"],
                "content": pluck_content(result),
            })


def pluck_content(res: types.CallToolResult) -> str:
    """Render an MCP tool result as plain text for the conversation."""
    structured = getattr(res, "structuredContent", None)
    if structured:
        return json.dumps(structured, indent=2)

    if not res.content:
        return "✓ done"

    out: list[str] = []
    for item in res.content:
        if isinstance(item, types.TextContent):
            out.append(item.text)
        elif isinstance(item, types.ImageContent):
            out.append(f"[Image: {item.mimeType}, {len(item.data)} bytes]")
        elif isinstance(item, types.EmbeddedResource):
            if isinstance(item.resource, types.TextResourceContents):
                out.append(f"[Embedded resource: {item.resource.text}]")
            else:
                out.append(f"[Embedded resource: {type(item.resource).__name__}]")
        else:
            out.append(f"[{type(item).__name__}]")

    return "\n".join(out)
