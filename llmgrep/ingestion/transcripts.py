from __future__ import annotations

import contextlib
import json
import os
import re
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional

from ..domain.models import TextEntry
from ..infrastructure.logging import get_logger

logger = get_logger("llmgrep.ingestion")

_LINE_BREAKS = re.compile(r"[\r\n]+")


def walk_transcripts(root: Path) -> Iterator[Path]:
    """Yield ``*.jsonl`` files under ``root`` in a stable, sorted order."""
    try:
        children = sorted(root.iterdir(), key=lambda p: p.name)
    except OSError as exc:
        logger.error("Failed to read directory: %s (%s)", root, exc)
        return
    for child in children:
        if child.is_dir():
            yield from walk_transcripts(child)
        elif child.is_file() and child.name.endswith(".jsonl"):
            yield child


def _text_spans(content: object) -> List[str]:
    if isinstance(content, str):
        return [content] if content.strip() else []
    spans: List[str] = []
    if isinstance(content, list):
        for block in content:
            if not isinstance(block, dict) or block.get("type") != "text":
                continue
            text = block.get("text")
            if isinstance(text, str) and text.strip():
                spans.append(text)
    return spans


def extract_entries(path: Path) -> Iterator[TextEntry]:
    """Yield one entry per text span of a transcript; invalid lines are skipped."""
    project = path.parent.name
    try:
        handle = path.open("r", encoding="utf-8", errors="replace")
    except OSError as exc:
        logger.error("Failed to open transcript: %s (%s)", path, exc)
        return
    with handle:
        for raw in handle:
            line = raw.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError as exc:
                logger.debug("Skipped line in %s: %r (%s)", path.name, line[:50], exc)
                continue
            if not isinstance(record, dict):
                continue
            message = record.get("message")
            if not isinstance(message, dict):
                continue
            cwd = record.get("cwd") if isinstance(record.get("cwd"), str) else None
            for text in _text_spans(message.get("content")):
                yield TextEntry(
                    text=text,
                    source_file=str(path),
                    project=project,
                    group_key=cwd or project,
                    timestamp=record.get("timestamp"),
                    role=message.get("role"),
                    session_id=record.get("sessionId") or path.stem,
                )


def load_entries(root: Path) -> List[TextEntry]:
    """Load every text entry under ``root``; list order is the corpus line order."""
    entries: List[TextEntry] = []
    for path in walk_transcripts(root):
        entries.extend(extract_entries(path))
    logger.debug("Loaded %d entries from %s", len(entries), root)
    return entries


def parse_timestamp(value: str) -> Optional[datetime]:
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def filter_by_date_range(
    entries: List[TextEntry],
    after: Optional[datetime] = None,
    before: Optional[datetime] = None,
) -> List[TextEntry]:
    """Drop entries outside [after, before]; entries without a usable timestamp are kept.

    Must run before the corpus file is written so line numbers stay aligned.
    """
    if after is None and before is None:
        return entries
    kept: List[TextEntry] = []
    for entry in entries:
        stamp = parse_timestamp(entry.timestamp) if entry.timestamp else None
        if stamp is None:
            kept.append(entry)
            continue
        if after is not None and stamp < after:
            continue
        if before is not None and stamp > before:
            continue
        kept.append(entry)
    return kept


def corpus_line(text: str) -> str:
    return _LINE_BREAKS.sub(" ", text)


@contextlib.contextmanager
def corpus_file(entries: List[TextEntry], prefix: str = "llmgrep-") -> Iterator[str]:
    """Materialize the corpus (line ``i`` == ``entries[i]``) and remove it on exit."""
    fd, name = tempfile.mkstemp(prefix=prefix, suffix=".txt")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
            for entry in entries:
                f.write(corpus_line(entry.text) + "\n")
        yield name
    finally:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(name)
