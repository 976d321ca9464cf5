from __future__ import annotations

from typing import List, Sequence

from ..domain.models import RankedResult, RawMatch, TextEntry


def assemble(raw_matches: Sequence[RawMatch], entries: Sequence[TextEntry]) -> List[RankedResult]:
    """Join raw matches to entries by index and rank by ascending distance.

    Matches whose line number does not resolve keep a ``None`` entry instead of
    being dropped. The sort is stable, so equal distances keep input order.
    Inputs are not mutated.
    """
    joined = [
        RankedResult(
            line_number=m.line_number,
            distance=m.distance,
            entry=entries[m.line_number] if 0 <= m.line_number < len(entries) else None,
        )
        for m in raw_matches
    ]
    return sorted(joined, key=lambda r: r.distance)
