from __future__ import annotations

import re
import subprocess
from typing import List, Optional, Sequence

from ...domain.errors import PrimitiveFailure, TimeoutExceeded
from ...domain.interfaces import SimilaritySearch
from ...domain.models import RawMatch, SearchMode
from ..config import search_command
from ..logging import get_logger
from ..timeouts import Deadline

logger = get_logger("llmgrep.infrastructure.semtools")

INSTALL_HINT = 'Make sure "search" command is installed (npm install -g @llamaindex/semtools)'

# <file>:<start>::<end> (<distance>); the file part may itself contain colons (C:\...)
_MATCH_LINE = re.compile(r"^(.*):(\d+)::(\d+)\s+\(([0-9.]+)\)")


def parse_search_output(output: str) -> List[RawMatch]:
    """Parse ``search -n 0`` output into raw matches; unrecognized lines are skipped."""
    matches: List[RawMatch] = []
    for line in output.splitlines():
        if not line.strip():
            continue
        m = _MATCH_LINE.match(line)
        if not m:
            logger.debug("Skipped search output line: %r", line[:80])
            continue
        matches.append(RawMatch(line_number=int(m.group(2)), distance=float(m.group(4))))
    return matches


def build_search_args(command: str, query: str, corpus_path: str, mode: SearchMode) -> List[str]:
    args = [command, query, corpus_path, "-n", "0"]
    if mode.max_distance is not None:
        args += ["-m", str(mode.max_distance)]
    else:
        args += ["--top-k", str(mode.top_k)]
    return args


class SemtoolsSearch(SimilaritySearch):
    """Similarity search adapter for the semtools ``search`` executable."""

    def __init__(self, command: Optional[str] = None, deadline: Optional[Deadline] = None) -> None:
        self._command = command or search_command()
        self.deadline = deadline

    def search(self, query: str, corpus_path: str, mode: SearchMode) -> List[RawMatch]:
        args = build_search_args(self._command, query, corpus_path, mode)
        timeout = self.deadline.bound() if self.deadline is not None else None
        proc = self._run(args, timeout)
        if proc.returncode != 0:
            stderr = (proc.stderr or "").strip()
            raise PrimitiveFailure(
                f"Search failed with code {proc.returncode}",
                exit_code=proc.returncode,
                stderr=stderr[-2000:],
            )
        return parse_search_output(proc.stdout or "")

    def _run(self, args: Sequence[str], timeout: Optional[float]) -> subprocess.CompletedProcess:
        # subprocess.run kills the child before re-raising TimeoutExpired
        try:
            return subprocess.run(
                list(args),
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except FileNotFoundError as exc:
            raise PrimitiveFailure(INSTALL_HINT) from exc
        except PermissionError as exc:
            raise PrimitiveFailure(f"Cannot execute {args[0]!r}: {exc}") from exc
        except subprocess.TimeoutExpired as exc:
            seconds = self.deadline.seconds if self.deadline is not None else float(timeout or 0)
            raise TimeoutExceeded(seconds) from exc
