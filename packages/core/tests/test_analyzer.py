"""Tests for DiffAnalyzer and comment validation."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from mrlens_core.analyzer import DiffAnalyzer, validate_review
from mrlens_core.diff import parse_changes
from mrlens_core.errors import ProviderError
from mrlens_core.platforms.base import FileChange
from mrlens_core.prompts import ReviewContext
from mrlens_core.providers.base import BaseProvider
from mrlens_core.schema import CodeReviewResult, InlineComment, IssuesCount, Summary

# Touches new-file lines 50-52.
DIFF = "@@ -50,2 +50,3 @@\n a\n+b\n c\n"

CONTEXT = ReviewContext(
    project_name="group/app", mr_title="Change", author="bob", source_branch="f", target_branch="main"
)


def _files():
    return parse_changes([FileChange(old_path="a.py", new_path="a.py", diff=DIFF)])


def _review(*comments):
    return CodeReviewResult(
        inline_comments=list(comments),
        summary=Summary(
            overall_assessment="ok",
            positive_aspects=[],
            concerns=[],
            issues_count=IssuesCount(critical=0, major=len(comments), minor=0, suggestion=0),
        ),
    )


def _comment(file="a.py", line=51):
    return InlineComment(file=file, line=line, severity="major", message="m")


def _provider(result=None, error=None):
    provider = MagicMock(spec=BaseProvider)
    provider.NAME = "stub"
    if error is not None:
        provider.generate_structured.side_effect = error
    else:
        provider.generate_structured.return_value = result
    return provider


# ---------------------------------------------------------------------------
# validate_review
# ---------------------------------------------------------------------------


class TestValidateReview:
    def test_keeps_lines_inside_range(self):
        review = validate_review(_review(_comment(line=50), _comment(line=52)), _files())
        assert len(review.inline_comments) == 2

    def test_tolerance_boundaries(self):
        review = validate_review(
            _review(_comment(line=40), _comment(line=62), _comment(line=39), _comment(line=63)), _files()
        )
        assert [c.line for c in review.inline_comments] == [40, 62]

    def test_drops_unknown_file(self):
        review = validate_review(_review(_comment(file="other.py")), _files())
        assert review.inline_comments == []

    def test_summary_untouched(self):
        original = _review(_comment(file="other.py"))
        review = validate_review(original, _files())
        assert review.summary == original.summary
        assert len(original.inline_comments) == 1


# ---------------------------------------------------------------------------
# DiffAnalyzer.analyze
# ---------------------------------------------------------------------------


class TestDiffAnalyzer:
    def test_empty_input_skips_model(self):
        provider = _provider()
        result = DiffAnalyzer(provider).analyze([], CONTEXT, "model-x")
        provider.generate_structured.assert_not_called()
        assert result.provider_used == "none"
        assert result.model_used == "none"
        assert result.duration_ms == 0
        assert result.review.inline_comments == []

    def test_passes_prompts_and_settings(self):
        provider = _provider(_review())
        DiffAnalyzer(provider, temperature=0.1, max_tokens=500).analyze(_files(), CONTEXT, "model-x", "German")
        args, kwargs = provider.generate_structured.call_args
        model, system, user, schema = args
        assert model == "model-x"
        assert system.endswith("You must respond in German.")
        assert "### File: a.py" in user
        assert schema is CodeReviewResult
        assert kwargs == {"temperature": 0.1, "max_tokens": 500}

    def test_result_is_validated(self):
        provider = _provider(_review(_comment(line=51), _comment(line=500)))
        result = DiffAnalyzer(provider).analyze(_files(), CONTEXT, "model-x")
        assert [c.line for c in result.review.inline_comments] == [51]
        assert result.provider_used == "stub"
        assert result.model_used == "model-x"

    def test_provider_error_propagates(self):
        provider = _provider(error=ProviderError("rate limited", status_code=429))
        with pytest.raises(ProviderError):
            DiffAnalyzer(provider).analyze(_files(), CONTEXT, "model-x")
