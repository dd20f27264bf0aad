"""Diff analysis: one structured model call per merge request.

The model's inline comments are checked against the line numbers actually
present in the diff before anything is posted. A comment on an unknown file,
or on a line outside the touched range widened by LINE_TOLERANCE, is dropped.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from mrlens_core.diff import ParsedFile, line_ranges
from mrlens_core.prompts import ReviewContext, build_system_prompt, build_user_prompt
from mrlens_core.providers.base import BaseProvider
from mrlens_core.schema import CodeReviewResult, empty_review

logger = logging.getLogger(__name__)

LINE_TOLERANCE = 10


@dataclass
class AnalysisResult:
    review: CodeReviewResult
    provider_used: str
    model_used: str
    duration_ms: int


class DiffAnalyzer:
    def __init__(self, provider: BaseProvider, temperature: float | None = None, max_tokens: int | None = None):
        self.provider = provider
        self.temperature = temperature
        self.max_tokens = max_tokens

    def analyze(
        self,
        files: list[ParsedFile],
        context: ReviewContext,
        model_id: str,
        language: str | None = None,
    ) -> AnalysisResult:
        if not files:
            logger.warning("No files to analyze for %s", context.project_name)
            return AnalysisResult(
                review=empty_review("No reviewable files found in this merge request."),
                provider_used="none",
                model_used="none",
                duration_ms=0,
            )

        system_prompt = build_system_prompt(language)
        user_prompt = build_user_prompt(files, context)
        logger.info("Analyzing %d file(s) for %s: %s", len(files), context.project_name, context.mr_title)

        start = time.monotonic()
        try:
            review = self.provider.generate_structured(
                model_id,
                system_prompt,
                user_prompt,
                CodeReviewResult,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except Exception as e:
            duration_ms = int((time.monotonic() - start) * 1000)
            logger.error(
                "Analysis failed after %dms (provider=%s, model=%s, project=%s): %s",
                duration_ms,
                self.provider.NAME,
                model_id,
                context.project_name,
                e,
            )
            raise

        duration_ms = int((time.monotonic() - start) * 1000)
        validated = validate_review(review, files)
        logger.info(
            "Analysis completed in %dms (provider=%s, model=%s): %d inline comment(s)",
            duration_ms,
            self.provider.NAME,
            model_id,
            len(validated.inline_comments),
        )
        return AnalysisResult(
            review=validated,
            provider_used=self.provider.NAME,
            model_used=model_id,
            duration_ms=duration_ms,
        )


def validate_review(review: CodeReviewResult, files: list[ParsedFile]) -> CodeReviewResult:
    """Drop inline comments whose file or line is not backed by the diff."""
    ranges = line_ranges(files)
    kept = []
    for comment in review.inline_comments:
        span = ranges.get(comment.file)
        if span is None:
            logger.warning("Comment references unknown file %s, skipping", comment.file)
            continue
        low, high = span
        if comment.line < max(1, low - LINE_TOLERANCE) or comment.line > high + LINE_TOLERANCE:
            logger.warning(
                "Comment on %s:%d is outside lines %d-%d, skipping", comment.file, comment.line, low, high
            )
            continue
        kept.append(comment)

    dropped = len(review.inline_comments) - len(kept)
    if dropped:
        logger.info("Filtered %d invalid comment(s)", dropped)
    return review.model_copy(update={"inline_comments": kept})
