from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from ..domain.models import TextEntry
from ..infrastructure.config import DEFAULT_CUTOFF, DISTANCE_THRESHOLDS, FALLBACK_CUTOFF


@dataclass(frozen=True)
class RefinementRequest:
    """Inputs of one refinement run.

    A linear probe is accepted outright once it reaches ``accept_min`` results;
    ``optimal_min`` is the count a bracket search settles for.
    """
    query: str
    corpus_path: str
    probes: Tuple[float, ...] = DISTANCE_THRESHOLDS
    max_attempts: int = 15
    window: int = 25
    accept_min: int = 1
    optimal_min: int = 15
    precision: float = 0.02


@dataclass(frozen=True)
class SearchRequest:
    """One top-level query against a materialized corpus.

    ``max_distance`` wins over ``top_k`` when both are set; with neither, the
    auto-expand policy (``default_cutoff`` then ``fallback_cutoff``) applies.
    """
    query: str
    corpus_path: str
    entries: Sequence[TextEntry]
    max_distance: Optional[float] = None
    top_k: Optional[int] = None
    auto_refine: bool = True
    default_cutoff: float = DEFAULT_CUTOFF
    fallback_cutoff: float = FALLBACK_CUTOFF
    probes: Tuple[float, ...] = DISTANCE_THRESHOLDS
    max_attempts: int = 15
    window: int = 25
    accept_min: int = 1
    optimal_min: int = 15
    precision: float = 0.02

    def refinement(self) -> RefinementRequest:
        return RefinementRequest(
            query=self.query,
            corpus_path=self.corpus_path,
            probes=tuple(self.probes),
            max_attempts=self.max_attempts,
            window=self.window,
            accept_min=self.accept_min,
            optimal_min=self.optimal_min,
            precision=self.precision,
        )
