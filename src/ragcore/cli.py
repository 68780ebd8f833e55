from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path
import sys
from typing import Any

from ragcore.config import get_settings
from ragcore.db import get_engine
from ragcore.main import get_prompt_client
from ragcore.services.retrieval import IndexStore, RetrievalEngine
from ragcore.services.retrieval.adapters import (
    FolderNoteSource,
    NotesAdapter,
    PageAdapter,
    SourceAdapter,
)
from ragcore.services.retrieval.adapters.base import AdapterContext, markdown_headings


def _add_source_arguments(parser: argparse.ArgumentParser) -> None:
    settings = get_settings()
    source = parser.add_mutually_exclusive_group()
    source.add_argument(
        "--notes-dir",
        default=None,
        help=f"Directory of .md/.txt notes (default: {settings.notes_dir})",
    )
    source.add_argument("--page-file", default=None, help="Text or markdown file to treat as the active page")
    parser.add_argument("--url", default="", help="URL recorded for --page-file")
    parser.add_argument("--title", default="", help="Title recorded for --page-file")
    parser.add_argument("--debug", action="store_true", help="Log cache hits and stage timings")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ragcore",
        description="Build retrieval indexes and answer questions over local sources",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    index_parser = commands.add_parser("index", help="Build (or reuse) the index for a source")
    _add_source_arguments(index_parser)

    ask_parser = commands.add_parser("ask", help="Answer a question from a source")
    _add_source_arguments(ask_parser)
    ask_parser.add_argument("query", help="Question to answer")
    ask_parser.add_argument("--use-llm", action="store_true", help="Rerank candidates with the model")
    ask_parser.add_argument("--expand-synonyms", action="store_true", help="Expand query terms")
    return parser


def _source(args: argparse.Namespace) -> tuple[SourceAdapter, AdapterContext]:
    if args.page_file:
        path = Path(args.page_file)
        text = path.read_text(encoding="utf-8")
        url = args.url or path.resolve().as_uri()
        snapshot = {
            "url": url,
            "title": args.title or path.stem,
            "text": text,
            "headings": list(markdown_headings(text)),
        }
        return PageAdapter(), {"url": url, "cached": snapshot}

    notes_dir = Path(args.notes_dir or get_settings().notes_dir)
    return NotesAdapter(FolderNoteSource(notes_dir)), {}


def _overrides(args: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, Any] = {"debug": args.debug}
    if args.command == "ask":
        overrides["retrieval"] = {
            "useLLM": args.use_llm,
            "expandSynonyms": args.expand_synonyms,
        }
    return overrides


async def _run(args: argparse.Namespace) -> dict[str, Any]:
    settings = get_settings()
    config = settings.retrieval.with_overrides(_overrides(args))
    adapter, context = _source(args)
    engine = RetrievalEngine(
        store=IndexStore(engine=get_engine(), options=config.store),
        prompt_client=get_prompt_client(),
        config=config,
    )

    try:
        if args.command == "index":
            result = await engine.ask_whole_corpus(adapter, context)
            return {
                "key": result.index.key,
                "built": result.built,
                "sections": len(result.index.sections),
                "summaries": len(result.index.summaries),
            }

        answer = await engine.answer_with_retrieval(adapter, context, args.query)
        return answer.model_dump(by_alias=True)
    finally:
        engine.close()


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()
    logging.basicConfig(
        level=logging.INFO if args.debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        payload = asyncio.run(_run(args))
    except Exception as exc:
        print(f"[ragcore] failed: {exc}", file=sys.stderr, flush=True)
        raise SystemExit(1) from exc

    print(json.dumps(payload, ensure_ascii=False), flush=True)


if __name__ == "__main__":
    main()
