from __future__ import annotations

from typing import List, Optional, Tuple

from ..dto import SearchRequest
from ..ranking import assemble
from .refine_threshold import RefineThresholdUseCase
from ...domain.errors import ValidationError
from ...domain.interfaces import SimilaritySearch
from ...domain.models import RawMatch, RefinementStatus, SearchMode, SearchOutcome, SearchStatus
from ...infrastructure.config import BROADEN_CEILING, BROADEN_STEP
from ...infrastructure.logging import get_logger

logger = get_logger("llmgrep.application.search")

_REFINED_STATUS = {
    RefinementStatus.ACCEPTED: SearchStatus.REFINED,
    RefinementStatus.FALLBACK_ACCEPTED: SearchStatus.FALLBACK,
    RefinementStatus.EXHAUSTED: SearchStatus.EXHAUSTED,
}


def can_broaden(cutoff: Optional[float], shown: int, window: int) -> bool:
    return cutoff is not None and cutoff < BROADEN_CEILING and shown < window


class SearchConversationsUseCase:
    """Use-case: run the first search for a query and settle it into a displayable outcome."""

    def __init__(self, search: SimilaritySearch, refiner: Optional[RefineThresholdUseCase] = None) -> None:
        self._search = search
        self._refiner = refiner or RefineThresholdUseCase(search)

    def execute(self, req: SearchRequest) -> SearchOutcome:
        if req.max_distance is not None:
            cutoff: Optional[float] = float(req.max_distance)
            matches = self._call(req, SearchMode.cutoff(cutoff))
            calls = 1
        elif req.top_k is not None:
            cutoff = None
            matches = self._call(req, SearchMode.nearest(req.top_k))
            calls = 1
        else:
            cutoff, matches, calls = self.auto_expand(req)
        return self._settle(req, matches, cutoff, calls)

    def auto_expand(self, req: SearchRequest) -> Tuple[float, List[RawMatch], int]:
        """Search at the default cutoff and, only if that is empty, once more at the fallback.

        Returns (cutoff, matches, calls); never more than two primitive calls.
        """
        matches = self._call(req, SearchMode.cutoff(req.default_cutoff))
        if matches:
            return req.default_cutoff, matches, 1
        logger.info(
            "No results at distance %.2f, widening to %.2f",
            req.default_cutoff,
            req.fallback_cutoff,
        )
        matches = self._call(req, SearchMode.cutoff(req.fallback_cutoff))
        return req.fallback_cutoff, matches, 2

    def broaden(self, req: SearchRequest, cutoff: float) -> SearchOutcome:
        """Re-run one step broader than ``cutoff``; NO_MATCHES means keep the current list."""
        if cutoff >= BROADEN_CEILING:
            raise ValidationError(f"cannot broaden past distance {BROADEN_CEILING}")
        wider = min(1.0, round(cutoff + BROADEN_STEP, 4))
        matches = self._call(req, SearchMode.cutoff(wider))
        return self._settle(req, matches, wider, 1)

    def _call(self, req: SearchRequest, mode: SearchMode) -> List[RawMatch]:
        matches = self._search.search(req.query, req.corpus_path, mode)
        logger.debug("Search %s -> %d result(s)", mode, len(matches))
        return matches

    def _settle(
        self,
        req: SearchRequest,
        matches: List[RawMatch],
        cutoff: Optional[float],
        calls: int,
    ) -> SearchOutcome:
        count = len(matches)
        if count == 0:
            return SearchOutcome(status=SearchStatus.NO_MATCHES, cutoff=cutoff, attempts=calls)
        if count <= req.window:
            return SearchOutcome(
                status=SearchStatus.ACCEPTED,
                results=tuple(assemble(matches, req.entries)),
                cutoff=cutoff,
                raw_count=count,
                attempts=calls,
            )
        if not req.auto_refine:
            return SearchOutcome(
                status=SearchStatus.TOO_MANY,
                results=tuple(assemble(matches, req.entries)),
                cutoff=cutoff,
                raw_count=count,
                attempts=calls,
            )

        logger.info("Too many results (%d); auto-refining", count)
        refined = self._refiner.execute(req.refinement())
        status = _REFINED_STATUS[refined.status]
        if status is SearchStatus.EXHAUSTED:
            return SearchOutcome(status=status, raw_count=count, attempts=calls + refined.attempts)
        return SearchOutcome(
            status=status,
            results=tuple(assemble(refined.matches, req.entries)),
            cutoff=refined.cutoff,
            raw_count=count,
            attempts=calls + refined.attempts,
        )
