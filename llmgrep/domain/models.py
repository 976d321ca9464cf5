from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from .errors import ValidationError


@dataclass(frozen=True)
class TextEntry:
    """One extracted message or content block from a transcript.

    Fields:
        text: Span content as written in the transcript.
        source_file: Path of the owning ``.jsonl`` transcript.
        project: Name of the folder holding the transcript.
        group_key: Coarse grouping label (recorded cwd, else project folder).
        timestamp: Optional ISO-8601 timestamp of the record.
        role: Optional author role ("user", "assistant", ...).
        session_id: Optional owning conversation id.
    """
    text: str
    source_file: str
    project: str = ""
    group_key: str = ""
    timestamp: Optional[str] = None
    role: Optional[str] = None
    session_id: Optional[str] = None


@dataclass(frozen=True)
class RawMatch:
    """A hit returned by the similarity search primitive.

    Fields:
        line_number: Index into the entry sequence the corpus was built from.
        distance: Cosine distance in [0, 1]; smaller is more relevant.
    """
    line_number: int
    distance: float


@dataclass(frozen=True)
class RankedResult:
    """A raw match joined to its entry by index.

    ``entry`` is a lookup result, not an owned value; it stays ``None`` when the
    line number does not resolve.
    """
    line_number: int
    distance: float
    entry: Optional[TextEntry] = None


@dataclass(frozen=True)
class SearchMode:
    """Exactly one of ``max_distance`` or ``top_k`` per primitive call."""
    max_distance: Optional[float] = None
    top_k: Optional[int] = None

    def __post_init__(self) -> None:
        if (self.max_distance is None) == (self.top_k is None):
            raise ValidationError("SearchMode needs exactly one of max_distance or top_k")

    @classmethod
    def cutoff(cls, distance: float) -> "SearchMode":
        return cls(max_distance=float(distance))

    @classmethod
    def nearest(cls, k: int) -> "SearchMode":
        return cls(top_k=int(k))


class RefinementStatus(str, Enum):
    ACCEPTED = "accepted"
    FALLBACK_ACCEPTED = "fallback_accepted"
    EXHAUSTED = "exhausted"


@dataclass
class RefinementState:
    """Mutable bookkeeping for one refinement call chain."""
    left: float = 0.0
    right: float = 0.0
    best_distance: Optional[float] = None
    best_count: int = 0
    attempts_used: int = 0
    probes: List[Tuple[float, int]] = field(default_factory=list)

    def record(self, distance: float, count: int) -> None:
        self.attempts_used += 1
        self.probes.append((distance, count))

    def remember_best(self, distance: float, count: int) -> None:
        self.best_distance = distance
        self.best_count = count


@dataclass(frozen=True)
class RefinementOutcome:
    """Terminal outcome of the threshold refinement engine.

    Fields:
        status: Accepted, accepted via best-so-far fallback, or exhausted.
        cutoff: Distance cutoff that produced ``matches`` (None when exhausted).
        matches: Raw matches at ``cutoff``, unranked.
        attempts: Number of primitive calls issued.
        probes: (cutoff, count) pairs in the order they were probed.
    """
    status: RefinementStatus
    cutoff: Optional[float] = None
    matches: Tuple[RawMatch, ...] = ()
    attempts: int = 0
    probes: Tuple[Tuple[float, int], ...] = ()

    @property
    def found(self) -> bool:
        return self.status is not RefinementStatus.EXHAUSTED


class SearchStatus(str, Enum):
    ACCEPTED = "accepted"
    NO_MATCHES = "no_matches"
    TOO_MANY = "too_many"
    REFINED = "refined"
    FALLBACK = "fallback"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class SearchOutcome:
    """What the search flow hands to a presentation layer.

    Fields:
        status: How the flow terminated.
        results: Ranked results (empty for NO_MATCHES and EXHAUSTED).
        cutoff: Distance cutoff of ``results`` (None in top-K mode).
        raw_count: Size of the first result set, before any refinement.
        attempts: Total primitive calls issued, refinement included.
    """
    status: SearchStatus
    results: Tuple[RankedResult, ...] = ()
    cutoff: Optional[float] = None
    raw_count: int = 0
    attempts: int = 0

    @property
    def displayable(self) -> bool:
        return self.status in (SearchStatus.ACCEPTED, SearchStatus.REFINED, SearchStatus.FALLBACK)
