"""Unified LLM client for OpenAI and Anthropic with tool calling.

Messages and tool calls travel through the project's own `Message` /
`ToolCall` types; this module converts them to and from each provider's wire
format. Every request goes through `common.retry.execute_with_retry`.
"""

import json
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

import anthropic
import openai

from common.errors import (
    LLMProviderError,
    ProviderRateLimitError,
    TransientProviderError,
)
from common.retry import execute_with_retry
from config.settings import LLMConfig
from schemas.conversation import Message, TokenUsage, ToolCall

logger = logging.getLogger(__name__)

# USD per 1M tokens (input, output)
CHAT_PRICES = {
    "gpt-4o": (2.50, 10.00),
    "gpt-4o-mini": (0.15, 0.60),
    "gpt-4-turbo": (10.00, 30.00),
}


@dataclass
class ModelResponse:
    content: Optional[str]
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: TokenUsage = field(default_factory=TokenUsage)
    model: str = ""
    finish_reason: Optional[str] = None

    def to_message(self) -> Message:
        """The assistant turn exactly as the model produced it."""
        return Message(role="assistant", content=self.content or "", tool_calls=list(self.tool_calls))


def _retry_after(exc) -> Optional[float]:
    response = getattr(exc, "response", None)
    headers = getattr(response, "headers", None) or {}
    value = headers.get("retry-after")
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def estimate_chat_cost(usage: TokenUsage, model: str) -> float:
    input_price, output_price = CHAT_PRICES.get(model, CHAT_PRICES["gpt-4o-mini"])
    return usage.prompt_tokens / 1_000_000 * input_price + usage.completion_tokens / 1_000_000 * output_price


class LLMClient:
    """Chat completions with optional tools, for OpenAI or Anthropic."""

    def __init__(
        self,
        config: Optional[LLMConfig] = None,
        api_key: Optional[str] = None,
        client=None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config or LLMConfig()
        self.provider = self.config.provider
        self._sleep = sleep

        if client is not None:
            self.client = client
        elif self.provider == "anthropic":
            self.client = anthropic.Anthropic(
                api_key=api_key or os.getenv("ANTHROPIC_API_KEY"),
                timeout=self.config.timeout,
                max_retries=0,
            )
        elif self.provider == "openai":
            self.client = openai.OpenAI(
                api_key=api_key or os.getenv("OPENAI_API_KEY"),
                timeout=self.config.timeout,
                max_retries=0,
            )
        else:
            raise ValueError(f"Unsupported provider: {self.provider}")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def complete(
        self,
        messages: list[Message],
        tools: Optional[list[dict]] = None,
        use_case: str = "chat",
        json_mode: bool = False,
    ) -> ModelResponse:
        """Send one completion request.

        `tools` are provider-neutral specs: {"name", "description", "parameters"}.
        Raises LLMProviderError once retries are exhausted or on a
        non-retryable provider error.
        """
        model = self.config.model_for(use_case)
        max_tokens = self.config.max_tokens_for(use_case)
        if self.provider == "anthropic":
            call = lambda: self._call_anthropic(messages, tools, model, max_tokens)
        else:
            call = lambda: self._call_openai(messages, tools, model, max_tokens, json_mode)

        t0 = time.perf_counter()
        try:
            response = execute_with_retry(
                call,
                self.config.retry,
                describe=f"{self.provider} {model} completion",
                sleep=self._sleep,
            )
        except TransientProviderError as e:
            raise LLMProviderError(
                f"Failed to call {self.provider} after {self.config.retry.max_attempts} attempts: {e}"
            ) from e

        logger.info(
            "%s %s: %d tool calls, %d tokens, finish=%s in %.1fs",
            self.provider, response.model, len(response.tool_calls),
            response.usage.total_tokens, response.finish_reason, time.perf_counter() - t0,
        )
        return response

    # ------------------------------------------------------------------
    # OpenAI
    # ------------------------------------------------------------------

    @staticmethod
    def _to_openai_messages(messages: list[Message]) -> list[dict]:
        converted = []
        for m in messages:
            if m.role == "tool":
                converted.append({"role": "tool", "tool_call_id": m.tool_call_id, "content": m.content or ""})
            elif m.role == "assistant" and m.tool_calls:
                converted.append({
                    "role": "assistant",
                    "content": m.content or "",
                    "tool_calls": [
                        {"id": tc.id, "type": "function", "function": {"name": tc.name, "arguments": tc.arguments}}
                        for tc in m.tool_calls
                    ],
                })
            else:
                converted.append({"role": m.role, "content": m.content or ""})
        return converted

    def _call_openai(self, messages, tools, model, max_tokens, json_mode) -> ModelResponse:
        params = {
            "model": model,
            "messages": self._to_openai_messages(messages),
            "max_tokens": max_tokens,
        }
        if json_mode:
            params["response_format"] = {"type": "json_object"}
        if tools:
            params["tools"] = [
                {"type": "function", "function": {
                    "name": t["name"], "description": t["description"], "parameters": t["parameters"],
                }}
                for t in tools
            ]
            params["tool_choice"] = "auto"

        try:
            response = self.client.chat.completions.create(**params)
        except openai.RateLimitError as e:
            raise ProviderRateLimitError(str(e), retry_after=_retry_after(e)) from e
        except (openai.APIConnectionError, openai.InternalServerError) as e:
            raise TransientProviderError(str(e)) from e
        except openai.APIError as e:
            raise LLMProviderError(f"OpenAI API error: {e}") from e

        if not response.choices:
            raise LLMProviderError("No choices returned from OpenAI API")
        choice = response.choices[0]
        tool_calls = [
            ToolCall(id=tc.id, name=tc.function.name, arguments=tc.function.arguments or "{}")
            for tc in (choice.message.tool_calls or [])
        ]
        usage = response.usage
        return ModelResponse(
            content=choice.message.content,
            tool_calls=tool_calls,
            usage=TokenUsage(
                prompt_tokens=usage.prompt_tokens,
                completion_tokens=usage.completion_tokens,
                total_tokens=usage.total_tokens,
            ) if usage else TokenUsage(),
            model=response.model or model,
            finish_reason=choice.finish_reason,
        )

    # ------------------------------------------------------------------
    # Anthropic
    # ------------------------------------------------------------------

    @staticmethod
    def _to_anthropic_messages(messages: list[Message]) -> tuple[str, list[dict]]:
        """Split out the system prompt and fold tool results into user turns."""
        system_parts = []
        converted: list[dict] = []
        for m in messages:
            if m.role == "system":
                system_parts.append(m.content or "")
            elif m.role == "tool":
                block = {"type": "tool_result", "tool_use_id": m.tool_call_id, "content": m.content or ""}
                # Consecutive tool results share one user turn
                if converted and converted[-1]["role"] == "user" and isinstance(converted[-1]["content"], list) \
                        and converted[-1]["content"] and converted[-1]["content"][0].get("type") == "tool_result":
                    converted[-1]["content"].append(block)
                else:
                    converted.append({"role": "user", "content": [block]})
            elif m.role == "assistant" and m.tool_calls:
                blocks = []
                if m.content:
                    blocks.append({"type": "text", "text": m.content})
                for tc in m.tool_calls:
                    try:
                        tool_input = json.loads(tc.arguments or "{}")
                    except json.JSONDecodeError:
                        tool_input = {}
                    blocks.append({"type": "tool_use", "id": tc.id, "name": tc.name, "input": tool_input})
                converted.append({"role": "assistant", "content": blocks})
            else:
                converted.append({"role": m.role, "content": m.content or ""})
        return "\n\n".join(system_parts), converted

    def _call_anthropic(self, messages, tools, model, max_tokens) -> ModelResponse:
        system, converted = self._to_anthropic_messages(messages)
        params = {"model": model, "max_tokens": max_tokens, "messages": converted}
        if system:
            params["system"] = system
        if tools:
            params["tools"] = [
                {"name": t["name"], "description": t["description"], "input_schema": t["parameters"]}
                for t in tools
            ]

        try:
            response = self.client.messages.create(**params)
        except anthropic.RateLimitError as e:
            raise ProviderRateLimitError(str(e), retry_after=_retry_after(e)) from e
        except (anthropic.APIConnectionError, anthropic.InternalServerError) as e:
            raise TransientProviderError(str(e)) from e
        except anthropic.APIStatusError as e:
            if e.status_code == 529:  # overloaded
                raise TransientProviderError(str(e)) from e
            raise LLMProviderError(f"Anthropic API error: {e}") from e
        except anthropic.APIError as e:
            raise LLMProviderError(f"Anthropic API error: {e}") from e

        text_parts = []
        tool_calls = []
        for block in response.content:
            if block.type == "text":
                text_parts.append(block.text)
            elif block.type == "tool_use":
                tool_calls.append(ToolCall(id=block.id, name=block.name, arguments=json.dumps(block.input)))

        usage = response.usage
        return ModelResponse(
            content="".join(text_parts) or None,
            tool_calls=tool_calls,
            usage=TokenUsage(
                prompt_tokens=usage.input_tokens,
                completion_tokens=usage.output_tokens,
                total_tokens=usage.input_tokens + usage.output_tokens,
            ),
            model=response.model or model,
            finish_reason=response.stop_reason,
        )
