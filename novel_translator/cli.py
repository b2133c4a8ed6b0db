"""
Command line interface.

    python -m novel_translator translate chapter.txt --scope my-novel --output out.json
    python -m novel_translator glossary my-novel
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

from .config import load_config
from .errors import ConfigError
from .logging_utils import configure_logging
from .pipeline import TranslationSession, run_pipeline
from .sinks import MemorySink
from .storage import GlossaryStore


def read_paragraphs(path: Path) -> Dict[str, str]:
    """
    Read source paragraphs.

    A ``.json`` file holds either an object (paragraph id -> text) or a list
    of texts; any other file is read one paragraph per line. Generated ids
    are ``p1``, ``p2``, ...
    """
    content = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        data = json.loads(content)
        if isinstance(data, dict):
            return {str(k): str(v) for k, v in data.items()}
        if isinstance(data, list):
            return {f"p{i + 1}": str(text) for i, text in enumerate(data)}
        raise ValueError(f"{path}: expected a JSON object or list")
    return {f"p{i + 1}": line for i, line in enumerate(content.splitlines())}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="novel_translator",
        description="Translate Japanese web novels with LLMs and a shared glossary",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    translate = sub.add_parser("translate", help="Translate a chapter")
    translate.add_argument("input", type=Path, help="Text file (one paragraph per line) or JSON file")
    translate.add_argument("--scope", required=True, help="Glossary scope id, e.g. the novel's id")
    translate.add_argument("--config", type=Path, help="YAML config file")
    translate.add_argument("--method", choices=["chunk", "single", "entire"], help="Translation method")
    translate.add_argument("--data-dir", help="Glossary directory (overrides config)")
    translate.add_argument("--env-file", help=".env file with API keys")
    translate.add_argument("--dry-run", action="store_true", help="Use canned responses (no API calls)")
    translate.add_argument("--output", type=Path, help="Write results as JSON (default: stdout)")

    glossary = sub.add_parser("glossary", help="Print a stored glossary")
    glossary.add_argument("scope", nargs="?", help="Scope id; omit to list scopes")
    glossary.add_argument("--config", type=Path, help="YAML config file")
    glossary.add_argument("--data-dir", help="Glossary directory (overrides config)")

    return parser


def _cmd_translate(args: argparse.Namespace) -> int:
    config = load_config(args.config, overrides={
        "translation_method": args.method,
        "data_dir": args.data_dir,
    })
    paragraphs = read_paragraphs(args.input)
    if args.dry_run:
        session = TranslationSession(config, dry_run=True)
    else:
        session = TranslationSession.from_environment(config, env_file=args.env_file)
    store = GlossaryStore(config.data_dir)
    sink = MemorySink()

    result = asyncio.run(run_pipeline(session, paragraphs, sink, store, args.scope))

    output = {
        "scope": args.scope,
        "errors": result.errors,
        "paragraphs": sink.to_dict(list(paragraphs.keys())),
    }
    text = json.dumps(output, ensure_ascii=False, indent=2)
    if args.output:
        args.output.write_text(text + "\n", encoding="utf-8")
        print(f"Translation saved to: {args.output}")
    else:
        print(text)
    return 1 if result.errors else 0


def _cmd_glossary(args: argparse.Namespace) -> int:
    config = load_config(args.config, overrides={"data_dir": args.data_dir})
    store = GlossaryStore(config.data_dir)
    if not args.scope:
        for scope in store.list_scopes():
            print(scope)
        return 0
    glossary = store.load_glossary(args.scope)
    print(json.dumps(glossary.to_dict(), ensure_ascii=False, indent=2))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.INFO)

    try:
        if args.command == "translate":
            return _cmd_translate(args)
        return _cmd_glossary(args)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
