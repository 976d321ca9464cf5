from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List
from .models import RawMatch, SearchMode


class SimilaritySearch(ABC):
    """Port for the similarity search primitive (e.g., semtools ``search``)."""

    @abstractmethod
    def search(self, query: str, corpus_path: str, mode: SearchMode) -> List[RawMatch]:
        """Return distance-annotated matches for ``query`` over the corpus file.

        Line ``i`` of the corpus corresponds to entry ``i``. An empty list means
        zero matches; a failed call must raise instead.

        Raises:
            PrimitiveFailure: The primitive exited with a failure or could not run.
            TimeoutExceeded: The wall-clock budget ran out during the call.
        """
        raise NotImplementedError


class EmbeddingService(ABC):
    """Port for an embedding provider (e.g., Ollama)."""

    @abstractmethod
    def embed_texts(self, texts: List[str]) -> List[List[float]]:
        """Embed a batch of texts into vectors, preserving order."""
        raise NotImplementedError
