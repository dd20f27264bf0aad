"""Structured output contract for a code review.

The model is asked to return JSON matching CodeReviewResult. Field aliases are
camelCase because that is the shape rendered into the prompt; Python code uses
the snake_case attribute names.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Severity = Literal["critical", "major", "minor", "suggestion"]

# Ordered most to least severe.
SEVERITY_ORDER: tuple[str, ...] = ("critical", "major", "minor", "suggestion")


class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class InlineComment(_Model):
    file: str = Field(description="File path")
    line: int = Field(description="Line number in the new file")
    severity: Severity
    message: str = Field(description="What needs to be changed and why")
    suggested_code: str | None = Field(
        default=None,
        description="The literal replacement code. Only provide if a concrete fix exists.",
    )


class IssuesCount(_Model):
    critical: int
    major: int
    minor: int
    suggestion: int

    def total(self, include_suggestions: bool = False) -> int:
        total = self.critical + self.major + self.minor
        return total + self.suggestion if include_suggestions else total


class Summary(_Model):
    overall_assessment: str = Field(description="Brief overall assessment of the changes")
    positive_aspects: list[str] = Field(description="What looks good (keep it short)")
    concerns: list[str] = Field(description="Issues that should be addressed")
    issues_count: IssuesCount


class CodeReviewResult(_Model):
    inline_comments: list[InlineComment]
    summary: Summary


def empty_review(assessment: str) -> CodeReviewResult:
    """A neutral review with no comments and zero counts."""
    return CodeReviewResult(
        inline_comments=[],
        summary=Summary(
            overall_assessment=assessment,
            positive_aspects=[],
            concerns=[],
            issues_count=IssuesCount(critical=0, major=0, minor=0, suggestion=0),
        ),
    )
