"""GitHub content source: repository URL parsing, README fetching and doc-link discovery.

Uses the GitHub REST API with raw media type for README contents. Set
GITHUB_TOKEN to lift the anonymous rate limit (60 requests/hour).
"""

import logging
import os
import re
from dataclasses import dataclass
from typing import Optional

import requests

from common.errors import ContentSourceError
from schemas.document import Document, SourceType
from sources.utils import RateLimiter, http_get

logger = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"
GITHUB_URL_RE = re.compile(r"(?:https?://)?(?:www\.)?github\.com/([^/]+)/([^/.]+)(?:\.git)?", re.IGNORECASE)
MARKDOWN_LINK_RE = re.compile(r"\[([^\]]+)\]\(([^)]+)\)")
LOCALIZED_README_RE = re.compile(r"^readme[._-][a-z]{2}(-[a-z]{2})?\.?(md|markdown|rst|txt)?$", re.IGNORECASE)

README_FILENAMES = ["README.md", "README", "readme.md", "readme", "Readme.md"]
DEFAULT_BRANCH = "main"

DOC_KEYWORDS = [
    "doc", "documentation", "docs",
    "api", "reference", "guide", "tutorial",
    "wiki", "manual", "handbook",
    "getting started", "quickstart", "quick start",
    "learn", "examples", "how to",
]
DOC_URL_PATTERNS = [
    "readthedocs.io", "github.io", "gitbook.io", "docs.",
    "/docs/", "/doc/", "/documentation/", "/api/", "/reference/",
    "/guide/", "/tutorial/", "/wiki/", "/manual/",
]
DOC_EXTENSIONS = (".md", ".html", ".htm", ".rst")

_rate_limiter = RateLimiter(min_delay=0.5)


@dataclass(frozen=True)
class RepoRef:
    owner: str
    repo: str

    @property
    def scope(self) -> str:
        """Identifier used to scope stored chunks to this repository."""
        return f"{self.owner}/{self.repo}"


def parse_github_url(url: str) -> RepoRef:
    match = GITHUB_URL_RE.search(url or "")
    if not match:
        raise ContentSourceError(
            f"Invalid GitHub URL: {url!r} (expected e.g. https://github.com/owner/repo)"
        )
    return RepoRef(owner=match.group(1), repo=match.group(2))


def _get_github_headers(accept: str = "application/vnd.github+json") -> dict:
    token = os.environ.get("GITHUB_TOKEN", "")
    headers = {
        "Accept": accept,
        "X-GitHub-Api-Version": "2022-11-28",
    }
    if token:
        headers["Authorization"] = f"token {token}"
    return headers


def detect_default_branch(ref: RepoRef, explicit: Optional[str] = None) -> str:
    """Branch to resolve relative links against: explicit, the repo default, or 'main'."""
    if explicit:
        return explicit
    try:
        resp = http_get(f"{GITHUB_API}/repos/{ref.owner}/{ref.repo}", headers=_get_github_headers(),
                        rate_limiter=_rate_limiter)
        if resp.ok:
            branch = resp.json().get("default_branch")
            if branch:
                logger.info("Detected default branch for %s: %s", ref.scope, branch)
                return branch
    except (requests.RequestException, ValueError) as e:
        logger.warning("Failed to detect default branch for %s: %s", ref.scope, e)
    logger.info("Using fallback default branch: %s", DEFAULT_BRANCH)
    return DEFAULT_BRANCH


def fetch_readme(ref: RepoRef, branch: Optional[str] = None) -> Document:
    """Fetch the repository README as a PRIMARY document.

    Tries the common filename variants in order; a non-404 error stops the
    search and raises ContentSourceError.
    """
    headers = _get_github_headers(accept="application/vnd.github.raw+json")
    params = {"ref": branch} if branch else None

    for filename in README_FILENAMES:
        url = f"{GITHUB_API}/repos/{ref.owner}/{ref.repo}/contents/{filename}"
        try:
            resp = http_get(url, headers=headers, params=params, rate_limiter=_rate_limiter)
        except requests.RequestException as e:
            raise ContentSourceError(f"Could not reach GitHub for {ref.scope}: {e}") from e

        if resp.status_code == 404:
            continue
        if resp.status_code == 403:
            logger.error("GitHub rate limit hit. Remaining: %s", resp.headers.get("X-RateLimit-Remaining"))
        if not resp.ok:
            raise ContentSourceError(
                f"GitHub returned {resp.status_code} for {ref.scope}/{filename}"
            )

        logger.info("Fetched %s for %s (%d chars)", filename, ref.scope, len(resp.text))
        return Document(
            source_id=f"{ref.scope}:readme",
            raw_text=resp.text,
            source_type=SourceType.PRIMARY,
            url=f"https://github.com/{ref.scope}/blob/{branch or DEFAULT_BRANCH}/{filename}",
            anchor_text=filename,
        )

    raise ContentSourceError(f"No README found for {ref.scope}")


# ---------------------------------------------------------------------------
# Documentation link discovery
# ---------------------------------------------------------------------------

def extract_markdown_links(markdown: str) -> list[dict]:
    return [
        {"text": m.group(1).strip(), "url": m.group(2).strip()}
        for m in MARKDOWN_LINK_RE.finditer(markdown)
    ]


def is_likely_documentation(text: str, url: str) -> bool:
    lower_text = text.lower()
    lower_url = url.lower()
    if any(k in lower_text for k in DOC_KEYWORDS):
        return True
    if any(p in lower_url for p in DOC_URL_PATTERNS):
        return True
    return lower_url.endswith(DOC_EXTENSIONS)


def is_readme_file(url: str) -> bool:
    filename = url.lower().rstrip("/").split("/")[-1]
    if filename in {"readme", "readme.md", "readme.markdown", "readme.rst", "readme.txt"}:
        return True
    return bool(LOCALIZED_README_RE.match(filename))


def to_absolute_url(url: str, ref: RepoRef, branch: str = DEFAULT_BRANCH) -> str:
    """Resolve a README-relative link to a github.com blob/tree URL."""
    if url.startswith(("http://", "https://", "#")):
        return url
    clean = re.sub(r"^\./", "", url).lstrip("/")
    kind = "tree" if clean.endswith("/") else "blob"
    return f"https://github.com/{ref.scope}/{kind}/{branch}/{clean}"


def extract_doc_links(markdown: str, ref: RepoRef, branch: str = DEFAULT_BRANCH) -> list[dict]:
    """Documentation-looking links in a README, absolute and de-duplicated.

    Anchor-only links and links to other READMEs are dropped.
    """
    seen = set()
    links = []
    for link in extract_markdown_links(markdown):
        url = link["url"].split(" ")[0]  # drop markdown link titles: (url "title")
        if url.startswith("#") or url.startswith("mailto:"):
            continue
        if not is_likely_documentation(link["text"], url):
            continue
        absolute = to_absolute_url(url, ref, branch)
        if is_readme_file(absolute) or absolute in seen:
            continue
        seen.add(absolute)
        links.append({"text": link["text"], "url": absolute})
    logger.info("Found %d documentation links in README of %s", len(links), ref.scope)
    return links
