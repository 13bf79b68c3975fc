from unittest.mock import MagicMock, patch

import orjson
import pytest

from common.errors import ContentSourceError
from schemas.document import SourceType
from sources.github import (
    RepoRef,
    detect_default_branch,
    extract_doc_links,
    fetch_readme,
    is_readme_file,
    parse_github_url,
    to_absolute_url,
)
from sources.local_files import load_documents
from sources.utils import RateLimiter

REF = RepoRef(owner="owner", repo="repo")


def response(status: int, text: str = "", json_data=None):
    resp = MagicMock()
    resp.status_code = status
    resp.ok = 200 <= status < 300
    resp.text = text
    resp.headers = {}
    resp.json.return_value = json_data or {}
    return resp


class TestParseGithubUrl:
    @pytest.mark.parametrize("url", [
        "https://github.com/owner/repo",
        "https://github.com/owner/repo.git",
        "github.com/owner/repo/tree/main/docs",
        "https://www.github.com/owner/repo/",
    ])
    def test_valid(self, url: str) -> None:
        ref = parse_github_url(url)
        assert ref == REF
        assert ref.scope == "owner/repo"

    @pytest.mark.parametrize("url", ["", "https://gitlab.com/owner/repo", "https://github.com/owner"])
    def test_invalid(self, url: str) -> None:
        with pytest.raises(ContentSourceError):
            parse_github_url(url)


class TestFetchReadme:
    """README lookup through the contents API."""

    @patch("sources.github.http_get")
    def test_first_filename_found(self, mock_get) -> None:
        mock_get.return_value = response(200, "# Repo\n\nHello")

        doc = fetch_readme(REF, "develop")

        assert doc.source_id == "owner/repo:readme"
        assert doc.source_type == SourceType.PRIMARY
        assert doc.raw_text == "# Repo\n\nHello"
        assert doc.url == "https://github.com/owner/repo/blob/develop/README.md"
        assert mock_get.call_args.kwargs["params"] == {"ref": "develop"}

    @patch("sources.github.http_get")
    def test_falls_back_on_404(self, mock_get) -> None:
        mock_get.side_effect = [response(404), response(200, "plain readme")]

        doc = fetch_readme(REF)

        assert doc.anchor_text == "README"
        assert mock_get.call_count == 2

    @patch("sources.github.http_get")
    def test_missing_readme(self, mock_get) -> None:
        mock_get.return_value = response(404)

        with pytest.raises(ContentSourceError, match="No README"):
            fetch_readme(REF)

    @patch("sources.github.http_get")
    def test_server_error_stops_search(self, mock_get) -> None:
        mock_get.return_value = response(500)

        with pytest.raises(ContentSourceError, match="500"):
            fetch_readme(REF)
        assert mock_get.call_count == 1


class TestDefaultBranch:
    def test_explicit_branch_wins(self) -> None:
        assert detect_default_branch(REF, "release") == "release"

    @patch("sources.github.http_get")
    def test_detected_from_api(self, mock_get) -> None:
        mock_get.return_value = response(200, json_data={"default_branch": "master"})
        assert detect_default_branch(REF) == "master"

    @patch("sources.github.http_get")
    def test_falls_back_to_main(self, mock_get) -> None:
        mock_get.return_value = response(404)
        assert detect_default_branch(REF) == "main"


class TestDocLinks:
    README = "\n".join([
        "[Docs](https://project.readthedocs.io)",
        "[Guide](./docs/guide.md)",
        "[Top](#top)",
        "[Other README](docs/README.md)",
        "[Contact](mailto:team@example.com)",
        "[License](LICENSE)",
        "[Docs again](https://project.readthedocs.io)",
    ])

    def test_extract_doc_links(self) -> None:
        links = extract_doc_links(self.README, REF, "main")

        assert links == [
            {"text": "Docs", "url": "https://project.readthedocs.io"},
            {"text": "Guide", "url": "https://github.com/owner/repo/blob/main/docs/guide.md"},
        ]

    def test_to_absolute_url(self) -> None:
        assert to_absolute_url("docs/", REF) == "https://github.com/owner/repo/tree/main/docs/"
        assert to_absolute_url("https://x.io/a", REF) == "https://x.io/a"

    @pytest.mark.parametrize("url,expected", [
        ("https://github.com/o/r/blob/main/README.md", True),
        ("https://github.com/o/r/blob/main/readme.zh-CN.md", True),
        ("https://github.com/o/r/blob/main/docs/guide.md", False),
    ])
    def test_is_readme_file(self, url: str, expected: bool) -> None:
        assert is_readme_file(url) is expected


class TestLocalFiles:
    def test_loads_markdown_and_json(self, tmp_path) -> None:
        (tmp_path / "guide.md").write_text("# Guide\n\nSteps.", encoding="utf-8")
        nested = tmp_path / "api"
        nested.mkdir()
        (nested / "pages.json").write_bytes(orjson.dumps([
            {"url": "https://docs.example.com/a", "title": "A", "content": "Page A"},
            {"url": "https://docs.example.com/b", "markdown": "Page B"},
        ]))
        (tmp_path / "image.png").write_bytes(b"\x89PNG")

        docs = load_documents(tmp_path, "owner/repo")

        by_id = {d.source_id: d for d in docs}
        assert set(by_id) == {"owner/repo:guide.md", "owner/repo:api/pages.json#0", "owner/repo:api/pages.json#1"}
        assert by_id["owner/repo:guide.md"].raw_text == "# Guide\n\nSteps."
        assert by_id["owner/repo:api/pages.json#0"].anchor_text == "A"
        assert by_id["owner/repo:api/pages.json#1"].raw_text == "Page B"
        assert all(d.source_type == SourceType.SECONDARY for d in docs)

    def test_invalid_json_is_skipped(self, tmp_path) -> None:
        (tmp_path / "broken.json").write_text("{not json", encoding="utf-8")
        (tmp_path / "ok.txt").write_text("fine", encoding="utf-8")

        docs = load_documents(tmp_path, "owner/repo")

        assert [d.source_id for d in docs] == ["owner/repo:ok.txt"]

    def test_missing_directory(self, tmp_path) -> None:
        with pytest.raises(ContentSourceError):
            load_documents(tmp_path / "nope", "owner/repo")


class TestRateLimiter:
    @patch("sources.utils.time.sleep")
    def test_spaces_out_requests(self, mock_sleep) -> None:
        limiter = RateLimiter(min_delay=10.0)

        limiter.wait()
        limiter.wait()

        mock_sleep.assert_called_once()
        assert mock_sleep.call_args.args[0] == pytest.approx(10.0, abs=0.5)
