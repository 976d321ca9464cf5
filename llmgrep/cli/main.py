from __future__ import annotations

import json
import signal
import sys
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

from ..application.dto import SearchRequest
from ..application.use_cases.search_conversations import SearchConversationsUseCase, can_broaden
from ..domain.errors import PrimitiveFailure, TimeoutExceeded, ValidationError
from ..domain.interfaces import SimilaritySearch
from ..domain.models import RankedResult, SearchOutcome, SearchStatus, TextEntry
from ..infrastructure.clipboard import ClipboardError, copy_to_clipboard
from ..infrastructure.config import (
    DEFAULT_LIMIT,
    binary_search_precision,
    max_results_display,
    optimal_result_min,
    projects_dir,
    refine_max_attempts,
    search_backend,
)
from ..infrastructure.logging import get_logger, set_debug
from ..infrastructure.ollama.client import OllamaEmbeddingService, OllamaSimilaritySearch
from ..infrastructure.semtools.client import SemtoolsSearch
from ..infrastructure.timeouts import Deadline, deadline_for
from ..ingestion.conversation import extract_conversation
from ..ingestion.transcripts import corpus_file, filter_by_date_range, load_entries
from .formatting import format_result_detail, format_result_line, group_by_key, serialize_result
from .parsers import build_parser

logger = get_logger("llmgrep.cli")

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_USAGE = 2
EXIT_SEARCH_FAILED = 3
EXIT_TIMEOUT = 4
EXIT_INTERRUPTED = 130
EXIT_TERMINATED = 143

BROADEN = "b"

NO_MATCHES_MESSAGE = "No results found. The query may be too specific; try --broad or different wording."
TOO_MANY_MESSAGE = "Too many results ({count}). Refine the query or narrow it with --strict or --max-distance."
EXHAUSTED_MESSAGE = (
    "Could not find a good distance threshold automatically ({count} results at first).\n"
    "Try refining your query or pass a manual distance with --max-distance."
)


def build_search(backend: str, deadline: Deadline) -> SimilaritySearch:
    """Create the similarity search adapter for ``backend`` bound to one deadline."""
    if backend == "semtools":
        return SemtoolsSearch(deadline=deadline)
    if backend == "ollama":
        return OllamaSimilaritySearch(OllamaEmbeddingService(deadline=deadline))
    raise ValidationError(f"Unknown search backend '{backend}' (expected semtools or ollama)")


def status_message(outcome: SearchOutcome) -> Optional[str]:
    status = outcome.status
    if status is SearchStatus.NO_MATCHES:
        return NO_MATCHES_MESSAGE
    if status is SearchStatus.TOO_MANY:
        return TOO_MANY_MESSAGE.format(count=outcome.raw_count)
    if status is SearchStatus.EXHAUSTED:
        return EXHAUSTED_MESSAGE.format(count=outcome.raw_count)
    if status is SearchStatus.REFINED:
        return (
            f"Auto-refined {outcome.raw_count} results down to {len(outcome.results)} "
            f"at distance {outcome.cutoff:.4f}."
        )
    if status is SearchStatus.FALLBACK:
        return f"Showing the closest fit found: {len(outcome.results)} results at distance {outcome.cutoff:.4f}."
    return None


def run(argv: Optional[Sequence[str]] = None) -> int:
    ap = build_parser()
    ns = ap.parse_args(list(argv or []))
    if getattr(ns, "debug", False):
        set_debug(True)

    try:
        return dispatch_commands(ns)
    except ValidationError as ex:
        print(f"Error: {ex}", file=sys.stderr)
        return EXIT_USAGE
    except TimeoutExceeded as ex:
        logger.error("%s", ex)
        return EXIT_TIMEOUT
    except PrimitiveFailure as ex:
        logger.error("Search tool unavailable or failed: %s", ex)
        if ex.stderr:
            logger.debug("search stderr: %s", ex.stderr)
        return EXIT_SEARCH_FAILED
    except KeyboardInterrupt:
        print("\nCancelled.", file=sys.stderr)
        return EXIT_INTERRUPTED
    except Exception as ex:  # keep CLI concise and user-friendly
        logger.error("%s: %s", type(ex).__name__, ex)
        return EXIT_ERROR


def dispatch_commands(ns) -> int:
    """
    Dispatches CLI commands:
    - search: non-interactive ranked listing (text or JSON)
    - pick: interactive selection, conversation copied to the clipboard
    - show: print (or copy) one materialized conversation
    """
    if ns.cmd == "search":
        return search_results(ns)
    if ns.cmd == "pick":
        return pick_result(ns)
    if ns.cmd == "show":
        return show_conversation(ns)

    print(json.dumps({"status": "error", "error": f"Unknown command: {ns.cmd}"}))
    return EXIT_USAGE


def _validated_query(ns) -> str:
    query = str(ns.query).strip()
    if not query:
        raise ValidationError("query must not be empty")
    if ns.after is not None and ns.before is not None and ns.after >= ns.before:
        raise ValidationError("--after date must be before --before date")
    return query


def _load(ns) -> List[TextEntry]:
    root = Path(ns.dir).expanduser() if ns.dir else projects_dir()
    if not root.is_dir():
        raise ValidationError(f"Transcript directory not found: {root}")
    entries = filter_by_date_range(load_entries(root), ns.after, ns.before)
    logger.info("Searching %d entries under %s", len(entries), root)
    return entries


def _request(ns, query: str, corpus: str, entries: List[TextEntry]) -> SearchRequest:
    top_k = ns.top_k
    if ns.max_distance is None and top_k is None:
        top_k = ns.default_top_k
    return SearchRequest(
        query=query,
        corpus_path=corpus,
        entries=entries,
        max_distance=ns.max_distance,
        top_k=top_k,
        auto_refine=not ns.no_refine,
        max_attempts=refine_max_attempts(),
        window=max_results_display(),
        optimal_min=optimal_result_min(),
        precision=binary_search_precision(),
    )


def _use_case(ns, deadline: Deadline) -> SearchConversationsUseCase:
    backend = (ns.backend or search_backend()).lower()
    return SearchConversationsUseCase(build_search(backend, deadline))


def search_results(ns) -> int:
    query = _validated_query(ns)
    entries = _load(ns)
    if not entries:
        print("No conversation entries found.")
        return EXIT_OK

    with corpus_file(entries) as corpus:
        outcome = _use_case(ns, deadline_for(len(entries))).execute(_request(ns, query, corpus, entries))

    limit = ns.limit or DEFAULT_LIMIT
    shown = outcome.results[:limit]
    if ns.json:
        print(
            json.dumps(
                {
                    "status": outcome.status.value,
                    "cutoff": outcome.cutoff,
                    "total": len(outcome.results),
                    "message": status_message(outcome),
                    "result": [serialize_result(r) for r in shown],
                },
                indent=2,
            )
        )
        return EXIT_OK

    message = status_message(outcome)
    if message:
        print(message)
    for i, result in enumerate(shown, start=1):
        print(format_result_detail(i, result))
        print()
    hidden = len(outcome.results) - len(shown)
    if hidden > 0:
        print(f"... {hidden} more (use --limit to show more)")
    return EXIT_OK


def print_grouped(results: Sequence[RankedResult]) -> None:
    for key, items in group_by_key(results):
        print(f"\n{key or '(unknown)'}")
        for i, result in items:
            print(format_result_line(i, result))


def prompt_selection(
    count: int,
    allow_broaden: bool,
    input_fn: Optional[Callable[[str], str]] = None,
) -> Union[int, str, None]:
    """Ask for a result number; returns a 0-based index, ``BROADEN``, or None to cancel."""
    ask = input_fn or input
    hint = ", b = broader" if allow_broaden else ""
    while True:
        try:
            raw = ask(f"\nSelect [1-{count}{hint}, q = cancel]: ")
        except EOFError:
            return None
        choice = raw.strip().lower()
        if choice in ("q", "quit"):
            return None
        if choice == BROADEN and allow_broaden:
            return BROADEN
        if choice.isdigit() and 1 <= int(choice) <= count:
            return int(choice) - 1
        print(f"Please enter a number between 1 and {count}.")


def _choose(
    ns,
    use_case: SearchConversationsUseCase,
    deadline: Deadline,
    req: SearchRequest,
    outcome: SearchOutcome,
    input_fn: Optional[Callable[[str], str]],
) -> Optional[RankedResult]:
    limit = ns.limit or req.window
    while True:
        message = status_message(outcome)
        if not outcome.displayable:
            print(message)
            return None
        if message:
            print(message)
        shown = outcome.results[:limit]
        print_grouped(shown)
        choice = prompt_selection(len(shown), can_broaden(outcome.cutoff, len(outcome.results), req.window), input_fn)
        if choice is None:
            print("Cancelled.")
            return None
        if choice == BROADEN:
            # Time spent at the prompt does not count against the broader search.
            deadline.restart()
            wider = use_case.broaden(req, outcome.cutoff)
            if wider.status is SearchStatus.NO_MATCHES:
                print("No additional results found.")
                continue
            outcome = wider
            continue
        return shown[choice]


def copy_conversation(result: RankedResult) -> int:
    entry = result.entry
    if entry is None:
        logger.error("Selected result (line %d) has no matching entry", result.line_number)
        return EXIT_ERROR
    conversation = extract_conversation(entry.source_file, entry.session_id)
    try:
        copy_to_clipboard(conversation)
    except ClipboardError as ex:
        logger.error("%s", ex)
        print(conversation)
        return EXIT_ERROR
    print(f"Copied conversation ({len(conversation)} characters) from {entry.source_file} to the clipboard.")
    return EXIT_OK


def pick_result(ns, input_fn: Optional[Callable[[str], str]] = None) -> int:
    query = _validated_query(ns)
    entries = _load(ns)
    if not entries:
        print("No conversation entries found.")
        return EXIT_OK

    with corpus_file(entries) as corpus:
        req = _request(ns, query, corpus, entries)
        deadline = deadline_for(len(entries))
        use_case = _use_case(ns, deadline)
        outcome = use_case.execute(req)
        selected = _choose(ns, use_case, deadline, req, outcome, input_fn)

    if selected is None:
        return EXIT_OK
    return copy_conversation(selected)


def show_conversation(ns) -> int:
    path = Path(ns.file).expanduser()
    if not path.is_file():
        raise ValidationError(f"Transcript not found: {path}")
    conversation = extract_conversation(str(path), ns.session)
    if not conversation:
        print("No conversation turns found.")
        return EXIT_OK
    if ns.copy:
        try:
            copy_to_clipboard(conversation)
        except ClipboardError as ex:
            logger.error("%s", ex)
            return EXIT_ERROR
        print(f"Copied conversation ({len(conversation)} characters) to the clipboard.")
        return EXIT_OK
    print(conversation)
    return EXIT_OK


def _terminate(signum, frame) -> None:
    # SystemExit unwinds through corpus_file, so the temporary corpus is removed.
    raise SystemExit(EXIT_TERMINATED)


def main() -> int:
    signal.signal(signal.SIGTERM, _terminate)
    return run(sys.argv[1:])


if __name__ == "__main__":
    raise SystemExit(main())
