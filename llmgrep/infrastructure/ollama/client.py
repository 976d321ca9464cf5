from __future__ import annotations

import math
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import requests

from ...domain.errors import PrimitiveFailure
from ...domain.interfaces import EmbeddingService, SimilaritySearch
from ...domain.models import RawMatch, SearchMode
from ..config import embed_model, http_timeout_seconds, ollama_url
from ..logging import get_logger
from ..timeouts import Deadline

logger = get_logger("llmgrep.infrastructure.ollama")


class OllamaEmbeddingService(EmbeddingService):
    """Embedding adapter for Ollama /api/embeddings."""

    def __init__(self, deadline: Optional[Deadline] = None) -> None:
        self.deadline = deadline

    def embed_texts(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []
        url = f"{ollama_url()}/api/embeddings"
        model = embed_model()
        out: List[List[float]] = []
        for t in texts:
            timeout = http_timeout_seconds()
            if self.deadline is not None:
                timeout = self.deadline.bound(timeout)
            try:
                r = requests.post(url, json={"model": model, "prompt": t}, timeout=timeout)
                r.raise_for_status()
                data = r.json()
                out.append([float(x) for x in data["embedding"]])
            except requests.Timeout as exc:
                if self.deadline is not None:
                    self.deadline.check()
                raise PrimitiveFailure(f"Ollama did not answer within {timeout:.0f}s at {url}") from exc
            except requests.RequestException as exc:
                raise PrimitiveFailure(f"Ollama embedding request failed: {exc}") from exc
            except (KeyError, TypeError, ValueError) as exc:
                raise PrimitiveFailure(f"Unexpected Ollama response: {exc}") from exc
        return out


def cosine_distance(a: List[float], b: List[float]) -> float:
    """Return ``1 - cos(a, b)`` clamped to [0, 1]."""
    if len(a) != len(b):
        raise PrimitiveFailure(f"Inconsistent embedding dimension: {len(a)} vs {len(b)}")
    dot = sum(x * y for x, y in zip(a, b))
    na = math.sqrt(sum(x * x for x in a))
    nb = math.sqrt(sum(y * y for y in b))
    if na == 0.0 or nb == 0.0:
        return 1.0
    return min(1.0, max(0.0, 1.0 - dot / (na * nb)))


class OllamaSimilaritySearch(SimilaritySearch):
    """Similarity search primitive computed locally from Ollama embeddings.

    Corpus vectors are cached per corpus file for the life of this object, so
    repeated probes against the same corpus only embed the query again.
    """

    def __init__(self, embeddings: Optional[EmbeddingService] = None) -> None:
        self._emb = embeddings or OllamaEmbeddingService()
        self._cache: Dict[Tuple[str, int], List[List[float]]] = {}

    def _corpus_vectors(self, corpus_path: str) -> List[List[float]]:
        path = Path(corpus_path)
        try:
            stat = path.stat()
            lines = path.read_text(encoding="utf-8").split("\n")
        except OSError as exc:
            raise PrimitiveFailure(f"Cannot read corpus file {corpus_path}: {exc}") from exc
        if lines and lines[-1] == "":
            lines.pop()
        key = (str(path.resolve()), stat.st_mtime_ns)
        if key not in self._cache:
            logger.debug("Embedding %d corpus lines with %s", len(lines), embed_model())
            self._cache[key] = self._emb.embed_texts(lines)
        return self._cache[key]

    def search(self, query: str, corpus_path: str, mode: SearchMode) -> List[RawMatch]:
        vectors = self._corpus_vectors(corpus_path)
        if not vectors:
            return []
        qvec = self._emb.embed_texts([query])[0]
        scored = [RawMatch(line_number=i, distance=cosine_distance(qvec, v)) for i, v in enumerate(vectors)]
        if mode.max_distance is not None:
            cutoff = float(mode.max_distance)
            return [m for m in scored if m.distance < cutoff]
        ranked = sorted(scored, key=lambda m: m.distance)
        return ranked[: int(mode.top_k or 0)]
