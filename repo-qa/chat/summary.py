"""Structured repository summaries generated from the README.

The summary grounds the chat system prompt, so it is generated once per
repository and cached on disk as JSON.
"""

import json
import logging
from pathlib import Path
from typing import List, Optional, Union

import orjson
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from chat.prompts import SUMMARY_USER, build_summary_prompt
from common.errors import LLMProviderError
from schemas.conversation import Message

logger = logging.getLogger(__name__)

MAX_README_LENGTH = 50000
MAX_DOC_LINKS = 20


class DocumentationLink(BaseModel):
    title: str = ""
    url: str


class RepositorySummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str
    description: str
    key_features: List[str] = Field(alias="keyFeatures")
    tech_stack: List[str] = Field(alias="techStack")
    primary_language: str = Field(alias="primaryLanguage")
    documentation_links: List[DocumentationLink] = Field(alias="documentationLinks")
    quick_start: str = Field(alias="quickStart")
    use_cases: List[str] = Field(alias="useCases")
    additional_info: Optional[str] = Field(None, alias="additionalInfo")

    def to_prompt_dict(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


def generate_summary(llm, readme: str, doc_links: list[dict]) -> RepositorySummary:
    """Ask the summary model for a JSON summary of `readme`.

    `doc_links` are {"title"/"text", "url"} dicts; at most MAX_DOC_LINKS are
    passed along. Raises LLMProviderError when the model output is not a
    valid summary.
    """
    if len(readme) > MAX_README_LENGTH:
        prompt_readme = readme[:MAX_README_LENGTH] + "\n\n[README truncated for length]"
    else:
        prompt_readme = readme
    links = [
        {"title": link.get("title") or link.get("text") or link["url"], "url": link["url"]}
        for link in doc_links[:MAX_DOC_LINKS]
    ]
    logger.info("Generating summary: README %d chars, %d documentation links", len(readme), len(links))

    response = llm.complete(
        [Message.system(build_summary_prompt(prompt_readme, links)), Message.user(SUMMARY_USER)],
        use_case="summary",
        json_mode=True,
    )
    logger.info("Summary response received: %d tokens used", response.usage.total_tokens)

    try:
        data = json.loads(response.content or "{}")
    except json.JSONDecodeError as e:
        raise LLMProviderError("LLM did not return valid JSON") from e
    try:
        return RepositorySummary.model_validate(data)
    except ValidationError as e:
        raise LLMProviderError(f"Summary is missing required fields: {e}") from e


def save_summary(summary: RepositorySummary, path: Union[str, Path]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(orjson.dumps(summary.to_prompt_dict(), option=orjson.OPT_INDENT_2))
    logger.info("Saved summary to %s", path)
    return path


def load_summary(path: Union[str, Path]) -> Optional[RepositorySummary]:
    path = Path(path)
    if not path.exists():
        return None
    return RepositorySummary.model_validate(orjson.loads(path.read_bytes()))
