from __future__ import annotations

import contextlib
import os
from pathlib import Path
from typing import Dict, Optional, Tuple

# Distance presets exposed as --strict / --precise / --broad
THRESHOLD_STRICT = 0.3
THRESHOLD_PRECISE = 0.4
THRESHOLD_BROAD = 0.5

# Auto-expand policy: one call at the default cutoff, one more at the fallback
DEFAULT_CUTOFF = THRESHOLD_PRECISE
FALLBACK_CUTOFF = THRESHOLD_BROAD

DISTANCE_THRESHOLDS: Tuple[float, ...] = (0.3, 0.35, 0.4, 0.45, 0.5)
BROADEN_STEP = 0.1
BROADEN_CEILING = 0.6

DEFAULT_TOP_K = 3
DEFAULT_LIMIT = 10
TRUNCATE_PREVIEW_LENGTH = 150
TRUNCATE_TEXT_LENGTH = 500


def _parse_dotenv(dotenv_path: Path) -> Dict[str, str]:
    """Parse a simple .env file (KEY=VALUE per line, '#' comments, quotes stripped)."""
    env: Dict[str, str] = {}
    if dotenv_path.exists():
        with contextlib.suppress(OSError):
            for raw in dotenv_path.read_text(encoding="utf-8", errors="ignore").splitlines():
                s = raw.strip()
                if not s or s.startswith("#") or "=" not in s:
                    continue
                k, v = s.split("=", 1)
                k = k.strip()
                v = v.strip().strip('"').strip("'")
                if k:
                    env[k] = v
    return env


def env_get(key: str) -> Optional[str]:
    """Get environment value from process env, falling back to .env in CWD."""
    v = os.getenv(key)
    if v is not None and v.strip():
        return v.strip()
    v2 = _parse_dotenv(Path(".env")).get(key)
    return v2.strip() if v2 is not None and v2.strip() else None


def env_str(name: str, default: str) -> str:
    return env_get(name) or default


def env_int(name: str, default: int) -> int:
    try:
        value = int(env_str(name, str(default)))
    except ValueError:
        return default
    return value if value > 0 else default


def env_float(name: str, default: float) -> float:
    try:
        value = float(env_str(name, str(default)))
    except ValueError:
        return default
    return value if value > 0 else default


def projects_dir() -> Path:
    explicit = env_get("LLMGREP_PROJECTS_DIR")
    if explicit:
        return Path(explicit).expanduser()
    return Path.home() / ".claude" / "projects"


def search_backend() -> str:
    return env_str("LLMGREP_BACKEND", "semtools").lower()


def search_command() -> str:
    return env_str("LLMGREP_SEARCH_BIN", "search")


def ollama_url() -> str:
    return env_str("OLLAMA_URL", "http://localhost:11434").rstrip("/")


def embed_model() -> str:
    return env_str("EMBED_MODEL", "mxbai-embed-large")


def max_results_display() -> int:
    return env_int("LLMGREP_MAX_RESULTS", 25)


def optimal_result_min() -> int:
    """
    Soft target for refinement: a cutoff yielding at least this many (and at most
    ``max_results_display()``) results is accepted without further narrowing.
    """
    return min(env_int("LLMGREP_OPTIMAL_MIN", 15), max_results_display())


def refine_max_attempts() -> int:
    return env_int("LLMGREP_MAX_ATTEMPTS", 15)


def binary_search_precision() -> float:
    return env_float("LLMGREP_PRECISION", 0.02)


def http_timeout_seconds() -> float:
    return env_float("LLMGREP_HTTP_TIMEOUT", 30.0)


def search_timeout_seconds(entry_count: int) -> float:
    """
    Wall-clock budget for one whole search chain, refinement included.
    Grows with the corpus since every probe re-embeds against all entries.
    """
    base = env_float("LLMGREP_SEARCH_TIMEOUT", 120.0)
    per_thousand = env_float("LLMGREP_TIMEOUT_PER_1K", 10.0)
    return base + per_thousand * (max(0, entry_count) / 1000.0)
