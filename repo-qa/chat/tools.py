"""Tool registry for the completion loop.

Each tool kind is bound to a pydantic model for its arguments. The model's
raw JSON arguments are validated against that model before dispatch, and
every failure surfaces as a ToolExecutionError for the loop to report back.
"""

import json
import logging
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

from common.errors import ToolExecutionError, UnknownToolError
from schemas.conversation import ToolCall

logger = logging.getLogger(__name__)


class ToolKind(str, Enum):
    WEB_SEARCH = "tavily_search"


class WebSearchArgs(BaseModel):
    query: str = Field(min_length=1, description="The search query to look up on the web")
    max_results: int = Field(5, ge=1, le=20, description="Maximum number of results to return (default: 5)")


TOOL_ARGS = {
    ToolKind.WEB_SEARCH: WebSearchArgs,
}

TOOL_DESCRIPTIONS = {
    ToolKind.WEB_SEARCH: (
        "Search the web for current information, documentation, tutorials, or answers "
        "not found in the repository documentation. Use this when the provided "
        "documentation doesn't contain enough information to answer the user's question."
    ),
}


def tool_spec(kind: ToolKind) -> dict:
    """Provider-neutral tool spec: name, description and JSON-schema parameters."""
    schema = TOOL_ARGS[kind].model_json_schema()
    return {
        "name": kind.value,
        "description": TOOL_DESCRIPTIONS[kind],
        "parameters": {
            "type": "object",
            "properties": schema.get("properties", {}),
            "required": schema.get("required", []),
        },
    }


class ToolRegistry:
    """Dispatches tool calls to the providers that are configured."""

    def __init__(self, web_search=None):
        self.web_search = web_search

    @property
    def kinds(self) -> list[ToolKind]:
        kinds = []
        if self.web_search is not None:
            kinds.append(ToolKind.WEB_SEARCH)
        return kinds

    def specs(self) -> list[dict]:
        return [tool_spec(k) for k in self.kinds]

    @staticmethod
    def parse_arguments(call: ToolCall) -> tuple[ToolKind, BaseModel]:
        try:
            kind = ToolKind(call.name)
        except ValueError:
            raise UnknownToolError(f"Unknown tool: {call.name}") from None
        try:
            raw = json.loads(call.arguments or "{}")
        except json.JSONDecodeError as e:
            raise ToolExecutionError(f"Invalid JSON arguments for {call.name}: {e}") from e
        if not isinstance(raw, dict):
            raise ToolExecutionError(f"Arguments for {call.name} must be a JSON object")
        try:
            return kind, TOOL_ARGS[kind].model_validate(raw)
        except ValidationError as e:
            raise ToolExecutionError(f"Invalid arguments for {call.name}: {e}") from e

    def execute(self, call: ToolCall) -> str:
        """Run one tool call and return its result as a JSON string."""
        kind, args = self.parse_arguments(call)
        logger.info("Executing tool %s (%s)", kind.value, call.id)

        if kind == ToolKind.WEB_SEARCH:
            if self.web_search is None:
                raise ToolExecutionError("Web search is not configured")
            result = self.web_search.search(args.query, max_results=args.max_results)
        else:
            raise UnknownToolError(f"No handler for tool: {kind.value}")

        return json.dumps(result, indent=2)

    @staticmethod
    def arguments_dict(call: ToolCall) -> Optional[dict]:
        """Arguments as a plain dict for logging/bookkeeping, or None if unparseable."""
        try:
            parsed = json.loads(call.arguments or "{}")
        except json.JSONDecodeError:
            return None
        return parsed if isinstance(parsed, dict) else None
