"""Load documentation pages that were already saved to disk.

Supports two layouts inside a directory (searched recursively):
- `*.md` / `*.markdown` / `*.txt`: one page per file, text taken verbatim
- `*.json`: a page object or a list of them, each with `content` (or
  `markdown` / `text`) and optionally `url` and `title`
"""

import logging
import time
from pathlib import Path
from typing import Union

import orjson

from common.errors import ContentSourceError
from schemas.document import Document, SourceType

logger = logging.getLogger(__name__)

TEXT_SUFFIXES = {".md", ".markdown", ".txt"}
CONTENT_KEYS = ("content", "markdown", "text")


def _page_to_document(item: dict, source_id: str) -> Document:
    text = next((item[k] for k in CONTENT_KEYS if isinstance(item.get(k), str)), "")
    return Document(
        source_id=source_id,
        raw_text=text,
        source_type=SourceType.SECONDARY,
        url=item.get("url"),
        anchor_text=item.get("title") or item.get("anchor_text"),
    )


def load_documents(directory: Union[str, Path], scope: str) -> list[Document]:
    """Load every supported page under `directory` as a SECONDARY document.

    Unreadable files are logged and skipped; a missing directory raises
    ContentSourceError.
    """
    root = Path(directory)
    if not root.is_dir():
        raise ContentSourceError(f"Docs directory not found: {root}")

    t0 = time.perf_counter()
    documents: list[Document] = []
    skipped = 0

    for path in sorted(p for p in root.rglob("*") if p.is_file()):
        rel = path.relative_to(root).as_posix()
        suffix = path.suffix.lower()
        try:
            if suffix in TEXT_SUFFIXES:
                documents.append(Document(
                    source_id=f"{scope}:{rel}",
                    raw_text=path.read_text(encoding="utf-8"),
                    source_type=SourceType.SECONDARY,
                    anchor_text=path.stem,
                ))
            elif suffix == ".json":
                data = orjson.loads(path.read_bytes())
                items = data if isinstance(data, list) else [data]
                for i, item in enumerate(items):
                    if not isinstance(item, dict):
                        skipped += 1
                        continue
                    suffix_id = f"#{i}" if len(items) > 1 else ""
                    documents.append(_page_to_document(item, f"{scope}:{rel}{suffix_id}"))
        except (OSError, UnicodeDecodeError, orjson.JSONDecodeError) as e:
            skipped += 1
            logger.error("Failed to load %s: %s", path, e)

    logger.info(
        "Loaded %d documents from %s (skipped %d) in %.1fs",
        len(documents), root, skipped, time.perf_counter() - t0,
    )
    return documents
