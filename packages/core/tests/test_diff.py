"""Tests for unified diff parsing and filtering."""

from __future__ import annotations

from dataclasses import replace

from mrlens_core.config import ReviewConfig
from mrlens_core.diff import (
    ParsedFile,
    filter_reviewable_files,
    format_diff_for_prompt,
    is_skipped,
    line_ranges,
    parse_changes,
    parse_unified_diff,
)
from mrlens_core.platforms.base import FileChange

DIFF = """\
diff --git a/app.py b/app.py
--- a/app.py
+++ b/app.py
@@ -10,4 +10,5 @@ def handler():
 context_a
-removed
+added_one
+added_two
 context_b
\\ No newline at end of file
"""


def _file(path, diff=DIFF, **kwargs):
    return FileChange(old_path=path, new_path=path, diff=diff, **kwargs)


# ---------------------------------------------------------------------------
# parse_unified_diff
# ---------------------------------------------------------------------------


class TestParseUnifiedDiff:
    def test_hunk_header(self):
        (chunk,) = parse_unified_diff(DIFF)
        assert (chunk.old_start, chunk.old_lines, chunk.new_start, chunk.new_lines) == (10, 4, 10, 5)

    def test_line_numbers(self):
        (chunk,) = parse_unified_diff(DIFF)
        got = [(c.type, c.content, c.line_number) for c in chunk.changes]
        assert got == [
            ("normal", "context_a", 10),
            ("del", "removed", 11),
            ("add", "added_one", 11),
            ("add", "added_two", 12),
            ("normal", "context_b", 13),
        ]

    def test_context_line_keeps_old_number(self):
        (chunk,) = parse_unified_diff(DIFF)
        assert chunk.changes[-1].old_line_number == 12

    def test_counts_default_to_one(self):
        (chunk,) = parse_unified_diff("@@ -3 +3 @@\n-a\n+b\n")
        assert chunk.old_lines == 1 and chunk.new_lines == 1

    def test_multiple_hunks(self):
        chunks = parse_unified_diff("@@ -1,1 +1,1 @@\n-a\n+b\n@@ -20,1 +20,2 @@\n x\n+y\n")
        assert [c.new_start for c in chunks] == [1, 20]
        assert chunks[1].changes[1].line_number == 21

    def test_malformed_header_skipped(self):
        chunks = parse_unified_diff("@@ garbage @@\n+lost\n@@ -1 +1 @@\n+kept\n")
        assert len(chunks) == 1
        assert chunks[0].changes[0].content == "kept"

    def test_empty(self):
        assert parse_unified_diff("") == []


# ---------------------------------------------------------------------------
# parse_changes / filtering
# ---------------------------------------------------------------------------


class TestParseChanges:
    def test_drops_empty_diffs(self):
        files = parse_changes([_file("a.py"), _file("binary.png", diff="")])
        assert [f.path for f in files] == ["a.py"]

    def test_rename_keeps_old_path(self):
        change = FileChange(old_path="old.py", new_path="new.py", diff=DIFF, renamed_file=True)
        (parsed,) = parse_changes([change])
        assert parsed.is_renamed and parsed.old_path == "old.py"

    def test_old_path_only_for_renames(self):
        (parsed,) = parse_changes([_file("a.py")])
        assert parsed.old_path is None


class TestIsSkipped:
    def test_basename_glob(self):
        assert is_skipped("web/yarn.lock", ["*.lock"])

    def test_full_path_glob(self):
        assert is_skipped("src/generated/api.py", ["src/generated/*.py"])

    def test_directory_prefix(self):
        assert is_skipped("vendor/lib/x.go", ["vendor/"])
        assert is_skipped("app/migrations/0001.py", ["migrations"])

    def test_not_skipped(self):
        assert not is_skipped("src/app.py", ["*.lock", "vendor/"])


class TestFilterReviewableFiles:
    def test_skip_patterns_applied(self):
        files = parse_changes([_file("a.py"), _file("package-lock.json")])
        kept = filter_reviewable_files(files, ReviewConfig())
        assert [f.path for f in kept] == ["a.py"]

    def test_max_files(self):
        files = parse_changes([_file(f"f{i}.py") for i in range(5)])
        kept = filter_reviewable_files(files, ReviewConfig(max_files=2))
        assert [f.path for f in kept] == ["f0.py", "f1.py"]

    def test_max_lines_per_file(self):
        (kept,) = filter_reviewable_files(parse_changes([_file("a.py")]), ReviewConfig(max_lines_per_file=2))
        assert len(kept.chunks[0].changes) == 2


# ---------------------------------------------------------------------------
# Ranges and prompt rendering
# ---------------------------------------------------------------------------


class TestLineRanges:
    def test_range_excludes_deleted_lines(self):
        files = parse_changes([_file("a.py")])
        assert line_ranges(files) == {"a.py": (10, 13)}

    def test_pure_deletion_absent(self):
        files = parse_changes([_file("gone.py", diff="@@ -1,2 +0,0 @@\n-a\n-b\n", deleted_file=True)])
        assert line_ranges(files) == {}


class TestFormatDiffForPrompt:
    def test_contains_numbers_and_markers(self):
        text = format_diff_for_prompt(parse_changes([_file("a.py", new_file=True)]))
        assert "### File: a.py [NEW FILE]" in text
        assert "Lines 10-14" in text
        assert "  11 + added_one" in text
        assert "  11 - removed" in text

    def test_renamed_tag(self):
        f = replace(ParsedFile(path="b.py"), is_renamed=True, old_path="a.py")
        assert "[RENAMED from a.py]" in format_diff_for_prompt([f])
