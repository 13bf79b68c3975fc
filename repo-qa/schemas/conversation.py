"""Pydantic models for chat turns, tool calls and token accounting."""

from pydantic import BaseModel, Field
from typing import Any, List, Optional


class ToolCall(BaseModel):
    id: str
    name: str
    arguments: str = Field("{}", description="Raw JSON string exactly as the model produced it")


class Message(BaseModel):
    role: str = Field(description="'system' | 'user' | 'assistant' | 'tool'")
    content: Optional[str] = None
    tool_calls: List[ToolCall] = Field(default_factory=list)
    tool_call_id: Optional[str] = None
    name: Optional[str] = None

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role="user", content=content)

    @classmethod
    def tool_result(cls, call: ToolCall, content: str) -> "Message":
        return cls(role="tool", content=content, tool_call_id=call.id, name=call.name)


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


class ConversationState(BaseModel):
    """Append-only message history for one completion run."""

    messages: List[Message] = Field(default_factory=list)

    def append(self, message: Message) -> None:
        self.messages.append(message)

    def __len__(self) -> int:
        return len(self.messages)


class ToolInvocation(BaseModel):
    id: str
    name: str
    arguments: dict = Field(default_factory=dict)
    result: Optional[Any] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None
