"""Rebuild a readable multi-turn transcript from a ``.jsonl`` conversation log."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..infrastructure.logging import get_logger
from .transcripts import parse_timestamp

logger = get_logger("llmgrep.ingestion.conversation")

RULE = "=" * 80


@dataclass(frozen=True)
class ConversationTurn:
    """One user/assistant record with the content blocks worth exporting."""
    role: str
    timestamp: Optional[str] = None
    blocks: List[Dict[str, Any]] = field(default_factory=list)


def _blocks(content: object) -> List[Dict[str, Any]]:
    if isinstance(content, str):
        return [{"type": "text", "text": content}]
    out: List[Dict[str, Any]] = []
    if not isinstance(content, list):
        return out
    for block in content:
        if not isinstance(block, dict):
            continue
        kind = block.get("type")
        if kind == "text" and block.get("text"):
            out.append({"type": "text", "text": block["text"]})
        elif kind == "tool_use":
            out.append({"type": "tool_use", "tool_name": block.get("name"), "tool_input": block.get("input")})
        elif kind == "tool_result":
            out.append({"type": "tool_result", "tool_result": block.get("content")})
    return out


def read_turns(path: Path, session_id: Optional[str] = None) -> List[ConversationTurn]:
    """Read turns from a transcript, optionally restricted to one session id."""
    turns: List[ConversationTurn] = []
    with path.open("r", encoding="utf-8", errors="replace") as handle:
        for raw in handle:
            line = raw.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError:
                continue
            if not isinstance(record, dict):
                continue
            message = record.get("message")
            if not isinstance(message, dict) or not message.get("role"):
                continue
            record_session = record.get("sessionId")
            if session_id and record_session and record_session != session_id:
                continue
            blocks = _blocks(message.get("content"))
            if blocks:
                turns.append(ConversationTurn(role=str(message["role"]), timestamp=record.get("timestamp"), blocks=blocks))
    return turns


def _local_time(timestamp: Optional[str]) -> str:
    if not timestamp:
        return ""
    parsed = parse_timestamp(timestamp)
    if parsed is None:
        return timestamp
    return parsed.astimezone().strftime("%Y-%m-%d %H:%M:%S")


def format_conversation(turns: List[ConversationTurn]) -> str:
    parts: List[str] = []
    for turn in turns:
        header = turn.role.upper()
        stamp = _local_time(turn.timestamp)
        if stamp:
            header += f" - {stamp}"
        parts.append(f"\n{RULE}\n{header}\n{RULE}\n\n")
        for block in turn.blocks:
            if block["type"] == "text":
                parts.append(f"{block['text']}\n\n")
            elif block["type"] == "tool_use":
                parts.append(f"[TOOL USE: {block.get('tool_name')}]\n")
                parts.append(json.dumps(block.get("tool_input"), indent=2) + "\n\n")
            elif block["type"] == "tool_result":
                parts.append("[TOOL RESULT]\n")
                result = block.get("tool_result")
                if isinstance(result, str):
                    parts.append(result + "\n\n")
                else:
                    parts.append(json.dumps(result, indent=2) + "\n\n")
    return "".join(parts)


def extract_conversation(source_file: str, session_id: Optional[str] = None) -> str:
    """Materialize the full conversation that owns a selected entry."""
    path = Path(source_file)
    turns = read_turns(path, session_id)
    logger.debug("Materialized %d turns from %s", len(turns), path)
    return format_conversation(turns)
