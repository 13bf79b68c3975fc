"""Bounded completion loop that lets the model call tools.

State machine:

    AWAITING_MODEL --no tool calls--> DONE
    AWAITING_MODEL --tool calls------> EXECUTING_TOOLS --results appended--> AWAITING_MODEL
    AWAITING_MODEL --tool calls on the last allowed call--> EXHAUSTED (raises)
    AWAITING_MODEL --cancel_event set--> CANCELLED

The assistant turn that requested tools is appended verbatim before any tool
runs. Tool results are appended in the order the model issued the calls, one
`tool` message per call id. A failing or timed-out tool becomes an
`{"error": ...}` payload the model can read; it never ends the loop.
"""

import json
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from common.errors import IterationBudgetExceededError, LLMProviderError
from config.settings import ToolLoopConfig
from schemas.conversation import ConversationState, Message, TokenUsage, ToolCall, ToolInvocation

logger = logging.getLogger(__name__)


class LoopState(str, Enum):
    AWAITING_MODEL = "awaiting_model"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"


@dataclass
class LoopResult:
    final_message: Optional[Message]
    usage: TokenUsage
    iterations: int
    state: LoopState
    transitions: list[tuple[LoopState, LoopState]] = field(default_factory=list)
    invocations: list[ToolInvocation] = field(default_factory=list)
    messages: list[Message] = field(default_factory=list)
    model: str = ""


class ToolLoop:
    """Drive an LLMClient through tool calls until it answers or the budget runs out."""

    def __init__(self, llm, registry, config: Optional[ToolLoopConfig] = None):
        self.llm = llm
        self.registry = registry
        self.config = config or ToolLoopConfig()

    def complete_with_tools(
        self,
        initial_messages: list[Message],
        tools: Optional[list[dict]] = None,
        max_iterations: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
        use_case: str = "chat",
    ) -> LoopResult:
        max_iterations = self.config.max_iterations if max_iterations is None else max_iterations
        if max_iterations < 1:
            raise ValueError(f"max_iterations must be at least 1, got {max_iterations}")
        if tools is None:
            tools = self.registry.specs()

        conversation = ConversationState(messages=list(initial_messages))
        usage = TokenUsage()
        transitions: list[tuple[LoopState, LoopState]] = []
        invocations: list[ToolInvocation] = []
        state = LoopState.AWAITING_MODEL
        model = ""

        def move(to: LoopState) -> None:
            nonlocal state
            transitions.append((state, to))
            logger.debug("Tool loop: %s -> %s", state.value, to.value)
            state = to

        for iteration in range(1, max_iterations + 1):
            if cancel_event is not None and cancel_event.is_set():
                move(LoopState.CANCELLED)
                logger.info("Tool loop cancelled before model call %d", iteration)
                return LoopResult(
                    final_message=None, usage=usage, iterations=iteration - 1, state=state,
                    transitions=transitions, invocations=invocations,
                    messages=conversation.messages, model=model,
                )

            try:
                response = self.llm.complete(conversation.messages, tools=tools or None, use_case=use_case)
            except LLMProviderError as e:
                e.usage = usage
                raise
            usage = usage + response.usage
            model = response.model or model

            if not response.tool_calls:
                final = response.to_message()
                conversation.append(final)
                move(LoopState.DONE)
                return LoopResult(
                    final_message=final, usage=usage, iterations=iteration, state=state,
                    transitions=transitions, invocations=invocations,
                    messages=conversation.messages, model=model,
                )

            if iteration == max_iterations:
                move(LoopState.EXHAUSTED)
                logger.warning("Model still requesting tools after %d iterations", max_iterations)
                raise IterationBudgetExceededError(max_iterations, usage=usage, messages=conversation.messages)

            logger.info("Processing %d tool call(s) (iteration %d/%d)",
                        len(response.tool_calls), iteration, max_iterations)
            conversation.append(response.to_message())
            move(LoopState.EXECUTING_TOOLS)

            for invocation in self._run_tools(response.tool_calls):
                invocations.append(invocation)
                content = invocation.result if invocation.error is None else json.dumps({"error": invocation.error})
                conversation.append(Message(
                    role="tool",
                    content=content,
                    tool_call_id=invocation.id,
                    name=invocation.name,
                ))
            move(LoopState.AWAITING_MODEL)

        # The last iteration always returns or raises
        raise AssertionError("unreachable")

    def _run_tools(self, calls: list[ToolCall]) -> list[ToolInvocation]:
        """Execute calls concurrently; results come back in the order of `calls`.

        Calls run in waves of at most `max_parallel_tools`. Every call in a
        wave starts at once, so the wave deadline bounds each call's own run.
        """
        wave_size = max(1, self.config.max_parallel_tools)
        invocations = []
        for start in range(0, len(calls), wave_size):
            invocations.extend(self._run_wave(calls[start:start + wave_size]))
        return invocations

    def _run_wave(self, calls: list[ToolCall]) -> list[ToolInvocation]:
        timeout = self.config.tool_timeout
        pool = ThreadPoolExecutor(max_workers=len(calls))
        invocations = []
        try:
            started = time.monotonic()
            futures = [pool.submit(self.registry.execute, call) for call in calls]
            for call, future in zip(calls, futures):
                invocation = ToolInvocation(
                    id=call.id,
                    name=call.name,
                    arguments=self.registry.arguments_dict(call) or {},
                )
                remaining = max(0.0, started + timeout - time.monotonic())
                try:
                    invocation.result = future.result(timeout=remaining)
                except FuturesTimeout:
                    invocation.error = f"Tool {call.name} timed out after {timeout:g}s"
                    logger.warning("Tool %s (%s) timed out after %.1fs", call.name, call.id, timeout)
                except Exception as e:
                    invocation.error = str(e) or e.__class__.__name__
                    logger.warning("Tool execution failed: %s (%s): %s", call.name, call.id, e)
                invocations.append(invocation)
        finally:
            # Hung tools are abandoned, not awaited
            pool.shutdown(wait=False)
        return invocations
