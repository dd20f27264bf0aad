"""Prompt construction and comment formatting.

Every body posted to the host platform starts with AI_COMMENT_MARKER. The
marker is how a later run finds its own summary note to update and its own
inline discussions to delete, and how the event router ignores notes it wrote.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from mrlens_core.diff import ParsedFile, format_diff_for_prompt
from mrlens_core.schema import InlineComment, Summary

AI_COMMENT_MARKER = "<!-- ai-code-review-bot -->"

_SYSTEM_PROMPT = """You are a senior software engineer reviewing a teammate's code. Be direct, helpful, and conversational.

## CRITICAL: Always Provide Output
- You MUST review the code provided, no matter how small or limited
- Even trivial changes need at least a brief summary
- If unclear, review what you can see and note assumptions
- Empty reviews or refusals are NOT acceptable

## Focus On
Production issues that matter:
- Bugs, security vulnerabilities, performance problems
- Hard-to-maintain code, missing error handling
- Skip: style nitpicks, theoretical issues, subjective preferences

## Line Numbers
Each diff line is prefixed with its line number. Use the number shown for added (+)
or unchanged lines as the "line" of an inline comment. Never comment on deleted (-) lines.

## Output Format
**Inline Comments**: Direct, actionable feedback on specific lines. Explain what's wrong and why.
Include suggestedCode for straightforward fixes.

**Summary**: Brief overall assessment. Mention positives naturally, list main concerns, keep it conversational.
issuesCount must match the severities of your inline comments.

## Severity (assign but don't mention in message)
- critical: Security holes, data loss, definite bugs
- major: Significant bugs, performance issues, maintainability problems
- minor: Small improvements, optimizations
- suggestion: Alternative approaches

## Style
- Explain WHY, not just WHAT
- Use natural language: "This could cause..." or "Consider..."
- Vary phrasing, be direct but respectful"""


@dataclass(frozen=True)
class ReviewContext:
    project_name: str
    mr_title: str
    author: str
    source_branch: str
    target_branch: str
    mr_description: str | None = None


def build_system_prompt(language: str | None = None) -> str:
    if language:
        return f"{_SYSTEM_PROMPT}\n\nYou must respond in {language}."
    return _SYSTEM_PROMPT


def build_user_prompt(files: Iterable[ParsedFile], context: ReviewContext) -> str:
    parts = [f"## {context.mr_title}"]
    parts.append(
        f"Project: {context.project_name} · Author: {context.author} · "
        f"{context.source_branch} → {context.target_branch}"
    )
    if context.mr_description:
        parts.append(context.mr_description)
    parts.append(format_diff_for_prompt(files))
    return "\n".join(parts)


def format_summary_comment(summary: Summary) -> str:
    counts = summary.issues_count
    lines = [AI_COMMENT_MARKER, "## Code Review", "", summary.overall_assessment, ""]

    if summary.positive_aspects:
        lines.append("**What looks good:**")
        lines.extend(f"- {p}" for p in summary.positive_aspects)
        lines.append("")

    if summary.concerns:
        lines.append("**Things to address:**")
        lines.extend(f"- {c}" for c in summary.concerns)
        lines.append("")

    parts = []
    if counts.critical:
        parts.append(f"{counts.critical} critical")
    if counts.major:
        parts.append(f"{counts.major} major")
    if counts.minor:
        parts.append(f"{counts.minor} minor")
    if counts.suggestion:
        parts.append(f"{counts.suggestion} suggestion{'s' if counts.suggestion > 1 else ''}")
    if parts:
        lines.append("---")
        lines.append(f"_{', '.join(parts)}_")

    return "\n".join(lines).rstrip() + "\n"


def format_inline_comment(comment: InlineComment) -> str:
    body = f"{AI_COMMENT_MARKER}\n{comment.message}"
    if comment.suggested_code:
        body += f"\n\n```suggestion\n{comment.suggested_code}\n```"
    return body


def format_pending_comment() -> str:
    return f"{AI_COMMENT_MARKER}\n_Reviewing..._"


def format_error_comment(error: str) -> str:
    return f"{AI_COMMENT_MARKER}\n**Review failed**\n\n{error}"


def status_description(summary: Summary, state: str) -> str:
    """Commit-status description for a finished review."""
    total = summary.issues_count.total()
    if total == 0:
        return "No issues found"
    if state == "failed":
        return f"Found {total} issue(s)"
    return f"⚠️ Found {total} issue(s)"


def failed_status_description(error_message: str) -> str:
    return f"Review failed: {error_message[:240]}"
