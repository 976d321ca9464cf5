from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..domain.models import RankedResult
from ..infrastructure.config import TRUNCATE_PREVIEW_LENGTH, TRUNCATE_TEXT_LENGTH
from ..ingestion.transcripts import parse_timestamp

BAR_WIDTH = 10
_WHITESPACE = re.compile(r"\s+")


def truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[: max(0, max_length - 3)] + "..."


def distance_to_percent(distance: float) -> int:
    """Similarity as a whole percentage (distance 0.0 -> 100%)."""
    return int(round((1.0 - min(1.0, max(0.0, distance))) * 100))


def create_visual_bar(distance: float, width: int = BAR_WIDTH) -> str:
    filled = int(round(distance_to_percent(distance) / 100.0 * width))
    return "█" * filled + "░" * (width - filled)


def short_date(timestamp: Optional[str]) -> str:
    parsed = parse_timestamp(timestamp) if timestamp else None
    if parsed is None:
        return ""
    local = parsed.astimezone()
    return f"{local:%b} {local.day}"


def folder_label(group_key: str, home: Optional[str] = None) -> str:
    """Last two path parts of the working directory; "(home)" for the home directory."""
    home = home if home is not None else str(Path.home())
    if not group_key or group_key in ("-", home) or group_key.rstrip("/") == home.rstrip("/"):
        return "(home)"
    parts = [p for p in re.split(r"[\\/]", group_key) if p]
    return "/".join(parts[-2:]) if parts else "(home)"


def preview(text: str, length: int = TRUNCATE_PREVIEW_LENGTH) -> str:
    return truncate(_WHITESPACE.sub(" ", text).strip(), length)


def format_result_line(index: int, result: RankedResult, home: Optional[str] = None) -> str:
    entry = result.entry
    bar = create_visual_bar(result.distance)
    pct = f"{distance_to_percent(result.distance)}%"
    if entry is None:
        return f"{index:>3}. {bar} {pct:>4}  (line {result.line_number} not found in corpus)"
    date = short_date(entry.timestamp)
    folder = truncate(folder_label(entry.group_key, home), 18)
    return f"{index:>3}. {bar} {pct:>4}  {date:<7} {folder:<18} \"{preview(entry.text)}\""


def format_result_detail(index: int, result: RankedResult) -> str:
    """Multi-line rendering used by ``search`` output."""
    entry = result.entry
    lines = [f"[{index}] {create_visual_bar(result.distance)} {distance_to_percent(result.distance)}% (distance {result.distance:.4f})"]
    if entry is None:
        lines.append(f"    line {result.line_number} not found in corpus")
        return "\n".join(lines)
    meta = [p for p in (entry.role, short_date(entry.timestamp), entry.group_key or entry.project) if p]
    if meta:
        lines.append("    " + " | ".join(meta))
    lines.append(f"    {entry.source_file}")
    lines.append("    " + truncate(entry.text.strip(), TRUNCATE_TEXT_LENGTH).replace("\n", "\n    "))
    return "\n".join(lines)


def group_by_key(results: Sequence[RankedResult]) -> List[Tuple[str, List[Tuple[int, RankedResult]]]]:
    """Group results by working directory, keeping the global 1-based numbering.

    Groups appear in order of their best (first) result.
    """
    groups: Dict[str, List[Tuple[int, RankedResult]]] = {}
    for i, result in enumerate(results, start=1):
        key = result.entry.group_key if result.entry is not None else ""
        groups.setdefault(key, []).append((i, result))
    return list(groups.items())


def serialize_result(result: RankedResult) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "line_number": result.line_number,
        "distance": float(result.distance),
        "similarity": distance_to_percent(result.distance),
    }
    entry = result.entry
    if entry is not None:
        data.update(
            {
                "text": entry.text,
                "source_file": entry.source_file,
                "project": entry.project,
                "group_key": entry.group_key,
                "timestamp": entry.timestamp,
                "role": entry.role,
                "session_id": entry.session_id,
            }
        )
        data = {k: v for k, v in data.items() if v is not None}
    return data
