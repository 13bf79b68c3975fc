#!/usr/bin/env python3
"""Command-line entry point for repository documentation Q&A.

Usage:
  python pipeline.py ingest https://github.com/owner/repo                 # README → vector store
  python pipeline.py ingest https://github.com/owner/repo --docs-dir data/pages/owner-repo
  python pipeline.py ingest https://github.com/owner/repo --reset         # Wipe repo chunks first
  python pipeline.py ingest https://github.com/owner/repo --dry-run       # Chunk + cost estimate only

  python pipeline.py summarize https://github.com/owner/repo              # Generate README summary
  python pipeline.py ask https://github.com/owner/repo "How do I install it?"
  python pipeline.py status                                               # Vector store stats
"""

import argparse
import dataclasses
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

from chat.llm import LLMClient, estimate_chat_cost
from chat.query_engine import QueryEngine
from chat.retriever import Retriever
from chat.summary import generate_summary, load_summary, save_summary
from chat.tool_loop import ToolLoop
from chat.tools import ToolRegistry
from chat.web_search import TavilySearchProvider
from common.errors import RepoQAError
from config.settings import AppConfig
from sources.github import detect_default_branch, extract_doc_links, fetch_readme, parse_github_url
from sources.local_files import load_documents
from vectorstore.chunker import Chunker
from vectorstore.embedder import EmbeddingPipeline, OpenAIEmbeddingProvider
from vectorstore.ingest import IngestionPipeline, estimate_ingestion_cost
from vectorstore.store import VectorStore

# Project paths
PROJECT_ROOT = Path(__file__).parent
DATA_DIR = PROJECT_ROOT / "data"
SUMMARY_DIR = DATA_DIR / "summaries"

logger = logging.getLogger(__name__)


def summary_path(scope: str) -> Path:
    return SUMMARY_DIR / f"{scope.replace('/', '__')}.json"


def build_embedder(config: AppConfig) -> EmbeddingPipeline:
    provider = OpenAIEmbeddingProvider(dimensions=config.embedding.dimensions)
    return EmbeddingPipeline(provider, config.embedding)


def build_store(config: AppConfig) -> VectorStore:
    return VectorStore(persist_dir=config.chroma_path, collection_name=config.collection_name)


# ---------------------------------------------------------------------------
# INGEST
# ---------------------------------------------------------------------------

def cmd_ingest(args, config: AppConfig):
    ref = parse_github_url(args.url)
    branch = detect_default_branch(ref, args.branch)

    documents = [fetch_readme(ref, branch)]
    if args.docs_dir:
        documents.extend(load_documents(args.docs_dir, ref.scope))
    logger.info("Collected %d documents for %s", len(documents), ref.scope)

    chunker = Chunker(
        chunk_size=args.chunk_size or config.chunker.chunk_size,
        chunk_overlap=args.chunk_overlap if args.chunk_overlap is not None else config.chunker.chunk_overlap,
        split_oversized_tokens=config.chunker.split_oversized_tokens,
    )

    if args.dry_run:
        estimate = estimate_ingestion_cost(documents, chunker, config.embedding.model)
        print(json.dumps(estimate, indent=2))
        return

    store = build_store(config)
    if args.reset:
        logger.warning("Deleting existing chunks for %s", ref.scope)
        store.delete_scope(ref.scope)

    pipeline = IngestionPipeline(chunker, build_embedder(config), store, max_workers=args.workers)
    stats = pipeline.ingest_documents(documents, ref.scope)

    print("\n" + "=" * 70)
    print(f"INGESTION SUMMARY: {ref.scope}")
    print("=" * 70)
    print(json.dumps(stats.to_dict(), indent=2))
    print("=" * 70)
    if stats.documents_failed:
        sys.exit(1)


# ---------------------------------------------------------------------------
# SUMMARIZE
# ---------------------------------------------------------------------------

def cmd_summarize(args, config: AppConfig):
    ref = parse_github_url(args.url)
    branch = detect_default_branch(ref, args.branch)
    readme = fetch_readme(ref, branch)
    links = extract_doc_links(readme.raw_text, ref, branch)

    summary = generate_summary(LLMClient(config.llm), readme.raw_text, links)
    path = save_summary(summary, summary_path(ref.scope))
    print(json.dumps(summary.to_prompt_dict(), indent=2, ensure_ascii=False))
    print(f"\nSaved to {path}")


# ---------------------------------------------------------------------------
# ASK
# ---------------------------------------------------------------------------

def cmd_ask(args, config: AppConfig):
    ref = parse_github_url(args.url)
    llm = LLMClient(config.llm)
    retriever = Retriever(build_store(config), build_embedder(config), config.retrieval)

    tool_loop = None
    if config.web_search.enabled and not args.no_web_search:
        registry = ToolRegistry(web_search=TavilySearchProvider(config.web_search))
        tool_loop = ToolLoop(llm, registry, config.tool_loop)

    summary = load_summary(summary_path(ref.scope))
    if summary is None:
        logger.info("No saved summary for %s (run 'summarize' first for better answers)", ref.scope)

    engine = QueryEngine(retriever, llm, tool_loop)
    result = engine.answer(args.question, ref.scope, summary=summary.to_prompt_dict() if summary else None)

    if not result.success:
        print(f"\nFailed ({result.failure_reason}): {result.message}")
        sys.exit(1)

    print("\n" + result.answer)
    print("\n" + "-" * 70)
    if result.sources:
        print("Sources:")
        for i, m in enumerate(result.sources, 1):
            print(f"  [{i}] {m.similarity_score * 100:.1f}%  {m.source_url or m.chunk_id}")
    mode = "web search fallback" if result.used_fallback else "documentation"
    print(
        f"Mode: {mode} | tool calls: {result.tool_calls_used} | "
        f"tokens: {result.usage.total_tokens} (~${estimate_chat_cost(result.usage, result.model):.4f}) | "
        f"{result.elapsed_s:.1f}s"
    )


# ---------------------------------------------------------------------------
# STATUS
# ---------------------------------------------------------------------------

def cmd_status(args, config: AppConfig):
    store = build_store(config)
    print("\n" + "=" * 70)
    print("VECTOR STORE STATUS")
    print("=" * 70)
    for name, info in store.get_stats().items():
        print(f"  {name}: {info.get('count', 0)} vectors")
    if args.url:
        ref = parse_github_url(args.url)
        print(f"  {ref.scope}: {store.count(ref.scope)} vectors")
        print(f"  summary: {'yes' if summary_path(ref.scope).exists() else 'no'}")
    print("\nConfiguration:")
    print(json.dumps(dataclasses.asdict(dataclasses.replace(
        config, web_search=dataclasses.replace(config.web_search, api_key="***" if config.web_search.api_key else None),
    )), indent=2))
    print("=" * 70)


def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    parser = argparse.ArgumentParser(
        description="Repository documentation Q&A",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    subparsers = parser.add_subparsers(dest="command", help="Pipeline command")

    # Ingest
    ingest_parser = subparsers.add_parser("ingest", help="Chunk, embed, and store repository docs")
    ingest_parser.add_argument("url", help="GitHub repository URL")
    ingest_parser.add_argument("--branch", default=None, help="Branch or tag (default: repo default branch)")
    ingest_parser.add_argument("--docs-dir", default=None, help="Directory of saved doc pages (.md/.json)")
    ingest_parser.add_argument("--reset", action="store_true", help="Delete this repo's chunks first")
    ingest_parser.add_argument("--dry-run", action="store_true", help="Only chunk and estimate cost")
    ingest_parser.add_argument("--chunk-size", type=int, default=None, help="Chunk size in characters")
    ingest_parser.add_argument("--chunk-overlap", type=int, default=None, help="Chunk overlap in characters")
    ingest_parser.add_argument("--workers", type=int, default=4, help="Documents processed in parallel")

    # Summarize
    summary_parser = subparsers.add_parser("summarize", help="Generate a README summary")
    summary_parser.add_argument("url", help="GitHub repository URL")
    summary_parser.add_argument("--branch", default=None, help="Branch or tag")

    # Ask
    ask_parser = subparsers.add_parser("ask", help="Ask a question about a repository")
    ask_parser.add_argument("url", help="GitHub repository URL")
    ask_parser.add_argument("question", help="Question text")
    ask_parser.add_argument("--no-web-search", action="store_true", help="Never fall back to web search")

    # Status
    status_parser = subparsers.add_parser("status", help="Show vector store statistics")
    status_parser.add_argument("url", nargs="?", default=None, help="GitHub repository URL (optional)")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    commands = {
        "ingest": cmd_ingest,
        "summarize": cmd_summarize,
        "ask": cmd_ask,
        "status": cmd_status,
    }

    config = AppConfig.from_env()
    try:
        commands[args.command](args, config)
    except RepoQAError as e:
        logger.error("%s failed: %s", args.command, e)
        sys.exit(1)
    except Exception as e:
        logger.exception("Pipeline error: %s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
