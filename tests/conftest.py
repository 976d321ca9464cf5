"""
Pytest configuration and fixtures for llmgrep tests.

Provides a scripted search primitive, sample transcript trees, and a clean
environment for configuration tests.
"""

import json
import os
from pathlib import Path
from typing import Callable, List, Optional

import pytest

from llmgrep.domain.interfaces import SimilaritySearch
from llmgrep.domain.models import RawMatch, SearchMode


def matches(count: int, start: float = 0.1) -> List[RawMatch]:
    """``count`` raw matches with increasing distances."""
    return [RawMatch(line_number=i, distance=round(start + i * 0.001, 6)) for i in range(count)]


class CountingSearch(SimilaritySearch):
    """Scripted search primitive.

    ``count_at(cutoff)`` decides how many matches a cutoff call returns; top-K
    calls return ``min(k, top_k_pool)`` matches. Every call is recorded.
    """

    def __init__(self, count_at: Callable[[float], int], top_k_pool: int = 100, error: Optional[Exception] = None):
        self.count_at = count_at
        self.top_k_pool = top_k_pool
        self.error = error
        self.calls: List[SearchMode] = []

    def search(self, query: str, corpus_path: str, mode: SearchMode) -> List[RawMatch]:
        self.calls.append(mode)
        if self.error is not None:
            raise self.error
        if mode.top_k is not None:
            return matches(min(mode.top_k, self.top_k_pool))
        return matches(self.count_at(mode.max_distance))

    @property
    def cutoffs(self) -> List[float]:
        return [m.max_distance for m in self.calls if m.max_distance is not None]


def step_counts(table):
    """Count function from ``[(upper_bound, count), ...]``: first bound >= cutoff wins."""

    def count_at(cutoff: float) -> int:
        for bound, count in table:
            if cutoff <= bound + 1e-9:
                return count
        return table[-1][1]

    return count_at


@pytest.fixture
def counting_search():
    """Factory for scripted search primitives."""
    return CountingSearch


def _record(role, content, *, session="s1", cwd="/home/dev/work/app", ts="2024-11-24T10:00:00Z"):
    return {
        "type": role,
        "sessionId": session,
        "cwd": cwd,
        "timestamp": ts,
        "message": {"role": role, "content": content},
    }


@pytest.fixture
def projects_tree(tmp_path):
    """Transcript root with two projects and a mix of valid and broken lines."""
    root = tmp_path / "projects"
    alpha = root / "-home-dev-work-app"
    beta = root / "-home-dev-other"
    alpha.mkdir(parents=True)
    beta.mkdir(parents=True)

    lines = [
        json.dumps(_record("user", "How do I fix the docker build cache?")),
        "{not json",
        json.dumps(
            _record(
                "assistant",
                [
                    {"type": "text", "text": "Use --no-cache once,\nthen rebuild."},
                    {"type": "tool_use", "name": "Bash", "input": {"command": "docker build ."}},
                ],
                ts="2024-11-24T10:01:00Z",
            )
        ),
        json.dumps({"type": "summary", "summary": "no message here"}),
    ]
    (alpha / "s1.jsonl").write_text("\n".join(lines) + "\n", encoding="utf-8")

    other = [
        json.dumps(_record("user", "Plan the database migration", session="s2", cwd="/home/dev/other", ts="2024-12-02T09:00:00Z")),
        json.dumps(_record("assistant", [{"type": "tool_result", "content": "ok"}], session="s2", cwd="/home/dev/other")),
    ]
    (beta / "s2.jsonl").write_text("\n".join(other) + "\n", encoding="utf-8")
    (beta / "notes.txt").write_text("ignored", encoding="utf-8")
    return root


_ENV_VARS = [
    "LLMGREP_PROJECTS_DIR",
    "LLMGREP_BACKEND",
    "LLMGREP_SEARCH_BIN",
    "OLLAMA_URL",
    "EMBED_MODEL",
    "LLMGREP_MAX_RESULTS",
    "LLMGREP_OPTIMAL_MIN",
    "LLMGREP_MAX_ATTEMPTS",
    "LLMGREP_PRECISION",
    "LLMGREP_SEARCH_TIMEOUT",
    "LLMGREP_TIMEOUT_PER_1K",
    "LLMGREP_HTTP_TIMEOUT",
]


@pytest.fixture
def clean_environment(monkeypatch, tmp_path):
    """Remove llmgrep variables and run from a directory without a .env file."""
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    yield


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: mark test as unit test")
    config.addinivalue_line("markers", "cli: mark test as CLI command test")
    config.addinivalue_line("markers", "env: mark test as environment resolution test")
