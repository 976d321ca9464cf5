"""
Unit tests for llmgrep CLI parsing, command dispatch, and output.

The search backend, the clipboard, and the prompt are replaced with test
doubles; transcripts come from the ``projects_tree`` fixture.
"""

import json
import os
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from conftest import CountingSearch, step_counts
from llmgrep.cli.formatting import (
    create_visual_bar,
    distance_to_percent,
    folder_label,
    format_result_line,
    group_by_key,
    serialize_result,
    truncate,
)
from llmgrep.cli.main import build_search, prompt_selection, run
from llmgrep.cli.parsers import build_parser
from llmgrep.domain.errors import PrimitiveFailure, TimeoutExceeded, ValidationError
from llmgrep.domain.models import RankedResult, TextEntry
from llmgrep.infrastructure.clipboard import ClipboardError
from llmgrep.infrastructure.ollama.client import OllamaSimilaritySearch
from llmgrep.infrastructure.semtools.client import SemtoolsSearch
from llmgrep.infrastructure.timeouts import Deadline


class TestCommandParsing:
    """Test CLI argument parsing functionality."""

    def test_build_parser_structure(self):
        parser = build_parser()

        assert parser.prog == "llmgrep"
        assert "conversation history" in parser.description
        with pytest.raises(SystemExit):
            parser.parse_args(["--help"])

    @pytest.mark.parametrize(
        "flags,expected",
        [(["-s"], 0.3), (["--precise"], 0.4), (["-b"], 0.5), (["-m", "0.27"], 0.27)],
    )
    def test_threshold_flags(self, flags, expected):
        args = build_parser().parse_args(["search", "docker"] + flags)

        assert args.max_distance == expected

    def test_search_defaults(self):
        args = build_parser().parse_args(["search", "docker"])

        assert args.cmd == "search"
        assert args.query == "docker"
        assert args.max_distance is None
        assert args.top_k is None
        assert args.default_top_k == 3
        assert args.limit is None
        assert args.no_refine is False

    def test_pick_has_no_default_top_k(self):
        assert build_parser().parse_args(["pick", "docker"]).default_top_k is None

    def test_dates_are_utc(self):
        args = build_parser().parse_args(["pick", "q", "--after", "2024-11-01", "--before", "2024-12-01"])

        assert args.after == datetime(2024, 11, 1, tzinfo=timezone.utc)
        assert args.before == datetime(2024, 12, 1, tzinfo=timezone.utc)

    @pytest.mark.parametrize(
        "argv",
        [
            ["search", "q", "-m", "1.5"],
            ["search", "q", "-m", "abc"],
            ["search", "q", "--top-k", "0"],
            ["search", "q", "--limit", "-2"],
            ["search", "q", "--after", "11/01/2024"],
            ["search", "q", "-s", "-b"],
            ["search", "q", "--backend", "faiss"],
            [],
        ],
    )
    def test_invalid_arguments_exit_2(self, argv):
        with pytest.raises(SystemExit) as info:
            build_parser().parse_args(argv)
        assert info.value.code == 2

    def test_show_args(self):
        args = build_parser().parse_args(["show", "/tmp/s.jsonl", "--session", "abc", "--copy"])

        assert args.cmd == "show"
        assert args.file == "/tmp/s.jsonl"
        assert args.session == "abc"
        assert args.copy is True


class TestBackendFactory:
    def test_backends(self):
        deadline = Deadline(10)
        assert isinstance(build_search("semtools", deadline), SemtoolsSearch)
        assert isinstance(build_search("ollama", deadline), OllamaSimilaritySearch)

    def test_unknown_backend(self):
        with pytest.raises(ValidationError):
            build_search("faiss", Deadline(10))


@pytest.fixture
def patched_search():
    """Patch the backend factory; yields a setter for the scripted search."""
    holder = {}

    def use(search):
        holder["search"] = search
        return search

    with patch("llmgrep.cli.main.build_search", side_effect=lambda backend, deadline: holder["search"]) as factory:
        use.factory = factory
        yield use


@pytest.mark.cli
class TestSearchCommand:
    def test_default_search_uses_top_k(self, projects_tree, patched_search, capsys, clean_environment):
        search = patched_search(CountingSearch(lambda d: 0))

        code = run(["search", "docker", "--dir", str(projects_tree)])

        assert code == 0
        assert [m.top_k for m in search.calls] == [3]
        out = capsys.readouterr().out
        assert "How do I fix the docker build cache?" in out
        assert "[1]" in out and "[3]" in out

    def test_json_output(self, projects_tree, patched_search, capsys, clean_environment):
        patched_search(CountingSearch(lambda d: 2))

        code = run(["search", "docker", "-p", "--json", "--dir", str(projects_tree)])

        assert code == 0
        doc = json.loads(capsys.readouterr().out)
        assert doc["status"] == "accepted"
        assert doc["cutoff"] == 0.4
        assert [r["line_number"] for r in doc["result"]] == [0, 1]
        assert doc["result"][1]["session_id"] == "s1"

    def test_limit(self, projects_tree, patched_search, capsys, clean_environment):
        patched_search(CountingSearch(lambda d: 3))

        run(["search", "q", "-b", "--limit", "1", "--dir", str(projects_tree)])

        out = capsys.readouterr().out
        assert "[2]" not in out
        assert "2 more" in out

    def test_no_matches_is_graceful(self, projects_tree, patched_search, capsys, clean_environment):
        patched_search(CountingSearch(lambda d: 0))

        code = run(["search", "q", "-s", "--dir", str(projects_tree)])

        assert code == 0
        assert "No results found" in capsys.readouterr().out

    def test_exhausted_is_graceful(self, projects_tree, patched_search, capsys, clean_environment):
        patched_search(CountingSearch(lambda d: 90))

        code = run(["search", "q", "-b", "--dir", str(projects_tree)])

        assert code == 0
        assert "--max-distance" in capsys.readouterr().out

    def test_date_filter_applied_before_search(self, projects_tree, patched_search, capsys, clean_environment):
        patched_search(CountingSearch(lambda d: 1))

        run(["search", "q", "-b", "--json", "--after", "2024-12-01", "--dir", str(projects_tree)])

        doc = json.loads(capsys.readouterr().out)
        assert doc["result"][0]["text"] == "Plan the database migration"

    def test_inverted_dates_exit_2(self, projects_tree, patched_search, clean_environment):
        search = patched_search(CountingSearch(lambda d: 1))

        code = run(["search", "q", "--after", "2024-12-01", "--before", "2024-11-01", "--dir", str(projects_tree)])

        assert code == 2
        assert search.calls == []

    def test_missing_directory_exit_2(self, tmp_path, clean_environment):
        assert run(["search", "q", "--dir", str(tmp_path / "missing")]) == 2

    def test_primitive_failure_exit_3(self, projects_tree, patched_search, clean_environment):
        patched_search(CountingSearch(lambda d: 1, error=PrimitiveFailure("Search failed with code 1", exit_code=1)))

        assert run(["search", "q", "-b", "--dir", str(projects_tree)]) == 3

    def test_timeout_exit_4(self, projects_tree, patched_search, clean_environment):
        patched_search(CountingSearch(lambda d: 1, error=TimeoutExceeded(120)))

        assert run(["search", "q", "-b", "--dir", str(projects_tree)]) == 4

    def test_corpus_removed_after_failure(self, projects_tree, patched_search, clean_environment):
        seen = []

        class Recording(CountingSearch):
            def search(self, query, corpus_path, mode):
                seen.append(corpus_path)
                return super().search(query, corpus_path, mode)

        patched_search(Recording(lambda d: 1, error=PrimitiveFailure("boom")))
        run(["search", "q", "-b", "--dir", str(projects_tree)])

        assert len(seen) == 1
        assert not os.path.exists(seen[0])


@pytest.mark.cli
class TestPickCommand:
    @patch("llmgrep.cli.main.copy_to_clipboard")
    @patch("builtins.input", side_effect=["2"])
    def test_pick_copies_selected_conversation(self, mock_input, mock_copy, projects_tree, patched_search, capsys, clean_environment):
        search = patched_search(CountingSearch(lambda d: 2))

        code = run(["pick", "docker", "--dir", str(projects_tree)])

        assert code == 0
        assert search.cutoffs == [0.4]
        copied = mock_copy.call_args.args[0]
        assert "How do I fix the docker build cache?" in copied
        assert "Plan the database migration" not in copied
        assert "Copied conversation" in capsys.readouterr().out

    @patch("llmgrep.cli.main.copy_to_clipboard")
    @patch("builtins.input", side_effect=["b", "1"])
    def test_broaden_then_pick(self, mock_input, mock_copy, projects_tree, patched_search, clean_environment):
        search = patched_search(CountingSearch(step_counts([(0.4, 1), (1.0, 2)])))

        with patch.object(Deadline, "restart", autospec=True, side_effect=Deadline.restart) as restart:
            code = run(["pick", "q", "--dir", str(projects_tree)])

        assert code == 0
        assert search.cutoffs == pytest.approx([0.4, 0.5])
        # one adapter serves the whole session, so backend caches survive a broaden
        assert patched_search.factory.call_count == 1
        deadline = patched_search.factory.call_args.args[1]
        # created once, restarted once before the broader search
        assert [c.args[0] for c in restart.call_args_list] == [deadline, deadline]
        mock_copy.assert_called_once()

    @patch("llmgrep.cli.main.copy_to_clipboard")
    @patch("builtins.input", side_effect=["q"])
    def test_cancel(self, mock_input, mock_copy, projects_tree, patched_search, capsys, clean_environment):
        patched_search(CountingSearch(lambda d: 2))

        assert run(["pick", "q", "--dir", str(projects_tree)]) == 0
        mock_copy.assert_not_called()
        assert "Cancelled." in capsys.readouterr().out

    @patch("llmgrep.cli.main.copy_to_clipboard", side_effect=ClipboardError("xclip missing"))
    @patch("builtins.input", side_effect=["1"])
    def test_clipboard_failure_prints_conversation(self, mock_input, mock_copy, projects_tree, patched_search, capsys, clean_environment):
        patched_search(CountingSearch(lambda d: 1))

        code = run(["pick", "q", "--dir", str(projects_tree)])

        assert code == 1
        assert "Plan the database migration" in capsys.readouterr().out

    @patch("builtins.input", side_effect=["9", "x", EOFError()])
    def test_prompt_reasks_until_valid(self, mock_input):
        assert prompt_selection(3, False) is None
        assert mock_input.call_count == 3

    def test_prompt_broaden_only_when_allowed(self):
        answers = iter(["b", "b"])
        assert prompt_selection(2, True, lambda prompt: next(answers)) == "b"
        answers = iter(["b", "2"])
        assert prompt_selection(2, False, lambda prompt: next(answers)) == 1


@pytest.mark.cli
class TestShowCommand:
    def test_show_prints_conversation(self, projects_tree, capsys):
        code = run(["show", str(projects_tree / "-home-dev-work-app" / "s1.jsonl")])

        assert code == 0
        assert "[TOOL USE: Bash]" in capsys.readouterr().out

    @patch("llmgrep.cli.main.copy_to_clipboard")
    def test_show_copy(self, mock_copy, projects_tree):
        assert run(["show", str(projects_tree / "-home-dev-other" / "s2.jsonl"), "--copy"]) == 0
        assert "[TOOL RESULT]" in mock_copy.call_args.args[0]

    def test_show_missing_file(self, tmp_path):
        assert run(["show", str(tmp_path / "missing.jsonl")]) == 2


class TestFormatting:
    def test_truncate(self):
        assert truncate("short", 10) == "short"
        assert truncate("a" * 20, 10) == "a" * 7 + "..."

    def test_percent_and_bar(self):
        assert distance_to_percent(0.23) == 77
        assert distance_to_percent(0.0) == 100
        assert create_visual_bar(0.0) == "█" * 10
        assert create_visual_bar(1.0) == "░" * 10
        assert create_visual_bar(0.23) == "█" * 8 + "░" * 2

    def test_folder_label(self):
        assert folder_label("/home/dev/work/app", home="/home/dev") == "work/app"
        assert folder_label("/home/dev", home="/home/dev") == "(home)"
        assert folder_label("", home="/home/dev") == "(home)"

    def test_result_line(self):
        entry = TextEntry(
            text="Use --no-cache\nonce",
            source_file="/tmp/s.jsonl",
            group_key="/home/dev/work/app",
            timestamp="2024-11-24T12:00:00Z",
        )
        line = format_result_line(1, RankedResult(line_number=4, distance=0.1, entry=entry), home="/home/dev")

        assert line.startswith("  1. █████████░  90%")
        assert "work/app" in line
        assert '"Use --no-cache once"' in line

    def test_missing_entry_is_visible(self):
        line = format_result_line(2, RankedResult(line_number=42, distance=0.3))
        assert "line 42 not found" in line
        assert serialize_result(RankedResult(line_number=42, distance=0.3)) == {
            "line_number": 42,
            "distance": 0.3,
            "similarity": 70,
        }

    def test_group_by_key_keeps_numbering(self):
        a = TextEntry(text="a", source_file="f", group_key="/x")
        b = TextEntry(text="b", source_file="f", group_key="/y")
        results = [RankedResult(0, 0.1, a), RankedResult(1, 0.2, b), RankedResult(2, 0.3, a)]

        groups = group_by_key(results)

        assert [key for key, _ in groups] == ["/x", "/y"]
        assert [i for i, _ in groups[0][1]] == [1, 3]
        assert [i for i, _ in groups[1][1]] == [2]
