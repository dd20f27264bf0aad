"""Unified diff parsing, filtering, and prompt rendering.

Each changed file is parsed into hunks whose lines carry the line number they
occupy after the change: added and context lines use the new-file number,
deleted lines the old-file number. These numbers are what the model is asked
to cite and what the analyzer validates against.
"""

from __future__ import annotations

import fnmatch
import logging
import re
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Iterable, Literal

if TYPE_CHECKING:
    from mrlens_core.config import ReviewConfig
    from mrlens_core.platforms.base import FileChange

logger = logging.getLogger(__name__)

_HUNK_RE = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")

ChangeType = Literal["add", "del", "normal"]


@dataclass(frozen=True)
class ParsedChange:
    type: ChangeType
    content: str  # without the leading +/-/space
    line_number: int
    old_line_number: int | None = None


@dataclass(frozen=True)
class ParsedChunk:
    old_start: int
    old_lines: int
    new_start: int
    new_lines: int
    changes: tuple[ParsedChange, ...] = ()


@dataclass(frozen=True)
class ParsedFile:
    path: str
    old_path: str | None = None
    is_new: bool = False
    is_deleted: bool = False
    is_renamed: bool = False
    chunks: tuple[ParsedChunk, ...] = field(default_factory=tuple)


def parse_unified_diff(diff_text: str) -> list[ParsedChunk]:
    """Parse the hunks of a single file's unified diff.

    File header lines (``diff --git``, ``---``, ``+++``) before the first hunk
    are ignored, as are ``\\ No newline at end of file`` markers. A hunk with a
    malformed ``@@`` header is skipped up to the next valid header.
    """
    chunks: list[ParsedChunk] = []
    header: tuple[int, int, int, int] | None = None
    changes: list[ParsedChange] = []
    old_line = new_line = 0
    in_hunk = False

    def _flush():
        if header is not None:
            chunks.append(ParsedChunk(*header, changes=tuple(changes)))

    for line in diff_text.splitlines():
        if line.startswith("@@"):
            _flush()
            changes = []
            match = _HUNK_RE.match(line)
            if not match:
                logger.debug("Skipping malformed hunk header: %r", line)
                header = None
                in_hunk = False
                continue
            old_start, old_count, new_start, new_count = match.groups()
            header = (
                int(old_start),
                int(old_count) if old_count is not None else 1,
                int(new_start),
                int(new_count) if new_count is not None else 1,
            )
            old_line, new_line = header[0], header[2]
            in_hunk = True
            continue

        if not in_hunk or line.startswith("\\"):
            continue

        if line.startswith("+"):
            changes.append(ParsedChange("add", line[1:], new_line))
            new_line += 1
        elif line.startswith("-"):
            changes.append(ParsedChange("del", line[1:], old_line, old_line))
            old_line += 1
        else:
            content = line[1:] if line.startswith(" ") else line
            changes.append(ParsedChange("normal", content, new_line, old_line))
            old_line += 1
            new_line += 1

    _flush()
    return chunks


def parse_changes(changes: Iterable[FileChange]) -> list[ParsedFile]:
    """Turn the platform's per-file changes into ParsedFiles, dropping empty diffs."""
    parsed = []
    for change in changes:
        if not change.diff:
            continue
        parsed.append(
            ParsedFile(
                path=change.new_path,
                old_path=change.old_path if change.renamed_file else None,
                is_new=change.new_file,
                is_deleted=change.deleted_file,
                is_renamed=change.renamed_file,
                chunks=tuple(parse_unified_diff(change.diff)),
            )
        )
    return parsed


def is_skipped(path: str, patterns: Iterable[str]) -> bool:
    """Return True if path matches any skip pattern.

    Supports:
    - fnmatch globs on the full path: "src/generated/*.py"
    - fnmatch globs on the basename: "*.lock", "*.min.js"
    - Directory names/prefixes: "migrations/", "vendor" (matches any file within that tree)
    """
    basename = path.rsplit("/", 1)[-1]
    for pattern in patterns:
        if fnmatch.fnmatch(path, pattern) or fnmatch.fnmatch(basename, pattern):
            return True
        prefix = pattern.rstrip("/") + "/"
        if path.startswith(prefix) or ("/" + prefix) in path:
            return True
    return False


def filter_reviewable_files(files: list[ParsedFile], review_config: ReviewConfig) -> list[ParsedFile]:
    """Drop skipped files, then cap the file count and the changes kept per hunk.

    Anything beyond the caps is dropped silently.
    """
    kept = [f for f in files if not is_skipped(f.path, review_config.skip_files)]
    skipped = len(files) - len(kept)
    if skipped:
        logger.debug("Skipped %d file(s) matching skip patterns", skipped)
    if len(kept) > review_config.max_files:
        logger.info("Capping review at %d of %d file(s)", review_config.max_files, len(kept))
        kept = kept[: review_config.max_files]

    limit = review_config.max_lines_per_file
    return [
        replace(f, chunks=tuple(replace(c, changes=c.changes[:limit]) for c in f.chunks))
        for f in kept
    ]


def line_ranges(files: Iterable[ParsedFile]) -> dict[str, tuple[int, int]]:
    """Return {path: (min_line, max_line)} over added and context lines.

    Files with no such lines (pure deletions) are absent from the result.
    """
    ranges: dict[str, tuple[int, int]] = {}
    for f in files:
        numbers = [c.line_number for chunk in f.chunks for c in chunk.changes if c.type != "del"]
        if numbers:
            ranges[f.path] = (min(numbers), max(numbers))
    return ranges


def _status_tag(f: ParsedFile) -> str:
    if f.is_new:
        return " [NEW FILE]"
    if f.is_deleted:
        return " [DELETED]"
    if f.is_renamed:
        return f" [RENAMED from {f.old_path}]"
    return ""


def format_diff_for_prompt(files: Iterable[ParsedFile]) -> str:
    """Render files as fenced diff blocks with resolved line numbers."""
    rendered = []
    for f in files:
        blocks = []
        for chunk in f.chunks:
            location = f"Lines {chunk.new_start}-{chunk.new_start + chunk.new_lines - 1}"
            lines = []
            for c in chunk.changes:
                prefix = {"add": "+", "del": "-"}.get(c.type, " ")
                number = c.old_line_number if c.type == "del" else c.line_number
                lines.append(f"{number:>4} {prefix} {c.content}")
            blocks.append("```diff\n" + location + "\n" + "\n".join(lines) + "\n```")
        rendered.append(f"\n### File: {f.path}{_status_tag(f)}\n" + "\n\n".join(blocks))
    return "\n\n---\n".join(rendered)
