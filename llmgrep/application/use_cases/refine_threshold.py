from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

from ..dto import RefinementRequest
from ...domain.errors import ValidationError
from ...domain.interfaces import SimilaritySearch
from ...domain.models import RawMatch, RefinementOutcome, RefinementState, RefinementStatus, SearchMode
from ...infrastructure.logging import get_logger

logger = get_logger("llmgrep.application.refine")


def _validate(req: RefinementRequest) -> None:
    if not isinstance(req.max_attempts, int) or req.max_attempts < 1:
        raise ValidationError(f"max_attempts must be a positive integer, got {req.max_attempts!r}")
    if req.window < 1:
        raise ValidationError(f"window must be at least 1, got {req.window}")
    if not 1 <= req.accept_min <= req.window:
        raise ValidationError(f"accept_min must be within [1, {req.window}], got {req.accept_min}")
    if not 1 <= req.optimal_min <= req.window:
        raise ValidationError(f"optimal_min must be within [1, {req.window}], got {req.optimal_min}")
    if req.precision <= 0:
        raise ValidationError(f"precision must be positive, got {req.precision}")
    if not req.probes:
        raise ValidationError("at least one probe distance is required")
    previous = -1.0
    for d in req.probes:
        if not 0.0 <= d <= 1.0:
            raise ValidationError(f"probe distance {d} is outside [0, 1]")
        if d <= previous:
            raise ValidationError(f"probe distances must be strictly ascending: {tuple(req.probes)}")
        previous = d


class RefineThresholdUseCase:
    """Use-case: find a distance cutoff whose result count fits the display window.

    Stage 1 probes ``req.probes`` in ascending order. A probe with at least
    ``accept_min`` (1 by default) and at most ``window`` results is accepted on
    the spot; with a higher floor, a smaller non-empty probe is remembered as
    growable. When a later probe is too broad, the range between the growable
    probe and that probe is bisected (stage 2), and a midpoint is accepted once
    it reaches ``optimal_min``. If no probe is accepted, the best in-window
    cutoff seen is run once more and accepted (stage 3), otherwise the outcome
    is EXHAUSTED.

    Every probe is one call to the search primitive, and the attempt budget
    covers stages 1 and 2. Primitive failures and timeouts propagate unchanged.
    """

    def __init__(self, search: SimilaritySearch) -> None:
        self._search = search

    def execute(self, req: RefinementRequest) -> RefinementOutcome:
        _validate(req)
        state = RefinementState()

        for distance in req.probes:
            if state.attempts_used >= req.max_attempts:
                logger.info("Max refinement attempts reached (%d)", req.max_attempts)
                break
            matches = self._probe(req, distance, state)
            count = len(matches)
            if count == 0:
                continue
            if count <= req.window:
                if count >= req.accept_min:
                    return self._outcome(RefinementStatus.ACCEPTED, distance, matches, state)
                state.remember_best(distance, count)
                continue
            if state.best_distance is not None and state.best_count < req.window:
                logger.info(
                    "Detected jump from %d to %d results; fine-tuning between %.2f and %.2f",
                    state.best_count,
                    count,
                    state.best_distance,
                    distance,
                )
                refined = self._bisect(req, state.best_distance, distance, state)
                if refined is not None:
                    return refined
                break

        return self._fallback(req, state)

    def bisect(self, req: RefinementRequest, left: float, right: float) -> Optional[RefinementOutcome]:
        """Binary-search between a non-broad ``left`` and a too-broad ``right`` cutoff.

        Returns None when no in-window count was found inside the bracket.
        """
        _validate(req)
        return self._bisect(req, left, right, RefinementState())

    def _bisect(
        self,
        req: RefinementRequest,
        left: float,
        right: float,
        state: RefinementState,
    ) -> Optional[RefinementOutcome]:
        if not left < right:
            raise ValidationError(f"bracket must satisfy left < right, got [{left}, {right}]")
        state.left, state.right = left, right
        best: Optional[Tuple[float, List[RawMatch]]] = None

        while state.attempts_used < req.max_attempts and state.right - state.left > req.precision:
            mid = (state.left + state.right) / 2
            matches = self._probe(req, mid, state)
            count = len(matches)
            if count == 0:
                state.left = mid
            elif count <= req.window:
                best = (mid, matches)
                state.remember_best(mid, count)
                if count >= req.optimal_min:
                    logger.info("Found optimal: %d results at distance %.4f", count, mid)
                    return self._outcome(RefinementStatus.ACCEPTED, mid, matches, state)
                state.left = mid
            else:
                state.right = mid

        if best is not None:
            return self._outcome(RefinementStatus.ACCEPTED, best[0], best[1], state)
        return None

    def _fallback(self, req: RefinementRequest, state: RefinementState) -> RefinementOutcome:
        if state.best_distance is None:
            logger.info("Could not find a good distance threshold after %d attempt(s)", state.attempts_used)
            return RefinementOutcome(
                status=RefinementStatus.EXHAUSTED,
                attempts=state.attempts_used,
                probes=tuple(state.probes),
            )
        logger.info(
            "Using best result with %d matches at distance %.4f",
            state.best_count,
            state.best_distance,
        )
        matches = self._probe(req, state.best_distance, state)
        return self._outcome(RefinementStatus.FALLBACK_ACCEPTED, state.best_distance, matches, state)

    def _probe(self, req: RefinementRequest, distance: float, state: RefinementState) -> List[RawMatch]:
        matches = self._search.search(req.query, req.corpus_path, SearchMode.cutoff(distance))
        state.record(distance, len(matches))
        logger.info("Probe %d at distance %.4f -> %d result(s)", state.attempts_used, distance, len(matches))
        return matches

    @staticmethod
    def _outcome(
        status: RefinementStatus,
        cutoff: float,
        matches: Sequence[RawMatch],
        state: RefinementState,
    ) -> RefinementOutcome:
        return RefinementOutcome(
            status=status,
            cutoff=cutoff,
            matches=tuple(matches),
            attempts=state.attempts_used,
            probes=tuple(state.probes),
        )
