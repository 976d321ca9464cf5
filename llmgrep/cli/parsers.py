from __future__ import annotations

import argparse
from datetime import datetime, timezone

from ..infrastructure.config import (
    DEFAULT_LIMIT,
    DEFAULT_TOP_K,
    THRESHOLD_BROAD,
    THRESHOLD_PRECISE,
    THRESHOLD_STRICT,
)


def positive_int(value: str) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError) as err:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value!r}") from err
    if n <= 0:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {n}")
    return n


def distance(value: str) -> float:
    try:
        d = float(value)
    except (TypeError, ValueError) as err:
        raise argparse.ArgumentTypeError(f"distance must be a number between 0 and 1, got {value!r}") from err
    if d != d or not 0.0 <= d <= 1.0:
        raise argparse.ArgumentTypeError(f"distance must be a number between 0 and 1, got {value!r}")
    return d


def iso_date(value: str) -> datetime:
    try:
        parsed = datetime.strptime(value.strip(), "%Y-%m-%d")
    except ValueError as err:
        raise argparse.ArgumentTypeError(f"Invalid date format: {value}. Use YYYY-MM-DD.") from err
    return parsed.replace(tzinfo=timezone.utc)


def _search_options() -> argparse.ArgumentParser:
    """Options shared by the search-style subcommands."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("query", help="Search query (semantic matching)")

    thresholds = common.add_mutually_exclusive_group()
    thresholds.add_argument(
        "--strict", "-s", dest="max_distance", action="store_const", const=THRESHOLD_STRICT,
        help=f"Very specific matches only (distance < {THRESHOLD_STRICT})",
    )
    thresholds.add_argument(
        "--precise", "-p", dest="max_distance", action="store_const", const=THRESHOLD_PRECISE,
        help=f"High quality matches (distance < {THRESHOLD_PRECISE})",
    )
    thresholds.add_argument(
        "--broad", "-b", dest="max_distance", action="store_const", const=THRESHOLD_BROAD,
        help=f"Cast a wider net (distance < {THRESHOLD_BROAD})",
    )
    thresholds.add_argument(
        "--max-distance", "-m", dest="max_distance", type=distance,
        help="Custom distance threshold (0.0-1.0)",
    )
    common.add_argument("--limit", "-l", type=positive_int, default=None, help=f"Max results shown (search default: {DEFAULT_LIMIT})")
    common.add_argument("--top-k", type=positive_int, default=None, help="Number of results to return")
    common.add_argument("--after", type=iso_date, default=None, help="Only entries on/after YYYY-MM-DD")
    common.add_argument("--before", type=iso_date, default=None, help="Only entries before YYYY-MM-DD")
    common.add_argument("--dir", default=None, help="Transcript root; defaults to $LLMGREP_PROJECTS_DIR or ~/.claude/projects")
    common.add_argument("--backend", choices=["semtools", "ollama"], default=None, help="Similarity search backend; defaults to $LLMGREP_BACKEND")
    common.add_argument("--no-refine", action="store_true", help="Do not auto-refine when there are too many results")
    common.add_argument("--debug", action="store_true", help="Enable debug logging")
    return common


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="llmgrep",
        description="Semantic search across your LLM assistant conversation history",
    )
    sub = ap.add_subparsers(dest="cmd", required=True)
    common = _search_options()

    se = sub.add_parser("search", parents=[common], help="Print ranked matches")
    se.add_argument("--json", action="store_true", help="Emit a JSON document instead of text")
    se.set_defaults(default_top_k=DEFAULT_TOP_K)

    pk = sub.add_parser("pick", parents=[common], help="Pick a match and copy its conversation to the clipboard")
    pk.set_defaults(default_top_k=None)

    sh = sub.add_parser("show", help="Print a full conversation from a transcript file")
    sh.add_argument("file", help="Path to a .jsonl transcript")
    sh.add_argument("--session", default=None, help="Only include records of this session id")
    sh.add_argument("--copy", action="store_true", help="Copy to the clipboard instead of printing")
    sh.add_argument("--debug", action="store_true", help="Enable debug logging")

    return ap
