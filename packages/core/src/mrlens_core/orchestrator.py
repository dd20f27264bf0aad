"""End-to-end review of one merge request.

Two kinds of failure are distinguished:
  - Fatal to the run: fetching the MR and the analysis itself. These raise,
    and the queue's retry policy decides what happens next.
  - Recoverable per item: one inline comment or one stale note that cannot be
    posted or deleted. These are logged, collected in ReviewResult.errors,
    and the run continues.

Every host-platform write other than the initial fetch is best-effort.

Re-reviewing the same MR is idempotent: earlier inline discussions carrying
AI_COMMENT_MARKER are deleted and the earlier summary note is edited in
place, so repeated triggers never pile up comments.
"""

from __future__ import annotations

import logging
import traceback
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable

from mrlens_core.analyzer import AnalysisResult, DiffAnalyzer
from mrlens_core.config import ReviewConfig
from mrlens_core.diff import ParsedFile, filter_reviewable_files, parse_changes
from mrlens_core.errors import FileNotInDiffError
from mrlens_core.platforms.base import BasePlatform, MergeRequestChanges, ProjectId
from mrlens_core.prompts import (
    AI_COMMENT_MARKER,
    ReviewContext,
    failed_status_description,
    format_error_comment,
    format_inline_comment,
    format_pending_comment,
    format_summary_comment,
    status_description,
)
from mrlens_core.schema import SEVERITY_ORDER, InlineComment, Summary, empty_review

if TYPE_CHECKING:
    from mrlens_store.base import BaseStore

logger = logging.getLogger(__name__)

NO_CHANGES_ASSESSMENT = "No reviewable code changes found in this merge request."


@dataclass
class ReviewRequest:
    project_id: ProjectId
    mr_iid: int
    review_id: int
    triggered_by: str = "manual"
    trigger_event: str | None = None
    webhook_event_id: int | None = None


@dataclass
class ReviewResult:
    analysis: AnalysisResult
    inline_comments_posted: int = 0
    summary_posted: bool = False
    errors: list[str] = field(default_factory=list)


def has_issues_above_threshold(summary: Summary, threshold: str) -> bool:
    """True if any severity at or above ``threshold`` has a non-zero count."""
    counts = summary.issues_count
    for severity in SEVERITY_ORDER[: SEVERITY_ORDER.index(threshold) + 1]:
        if getattr(counts, severity) > 0:
            return True
    return False


class ReviewOrchestrator:
    def __init__(
        self,
        platform: BasePlatform,
        analyzer: DiffAnalyzer,
        store: BaseStore,
        review_config: ReviewConfig,
        model_id: str,
        is_retryable: Callable[[BaseException], bool] | None = None,
    ):
        self.platform = platform
        self.analyzer = analyzer
        self.store = store
        self.review_config = review_config
        self.model_id = model_id
        # Used only to flag persisted error logs; the queue makes the actual retry decision.
        self.is_retryable = is_retryable or (lambda _e: True)

    def review_merge_request(self, request: ReviewRequest) -> ReviewResult:
        project_id, mr_iid, review_id = request.project_id, request.mr_iid, request.review_id
        errors: list[str] = []
        logger.info(
            "Starting review %d of %s!%d (trigger: %s)", review_id, project_id, mr_iid, request.triggered_by
        )

        mr = self.platform.get_changes(project_id, mr_iid)
        commit_sha = mr.diff_refs.head_sha

        note_id = self._cleanup_old_comments(project_id, mr_iid, errors)
        note_id = self._set_running_status(project_id, mr_iid, commit_sha, note_id)

        files = filter_reviewable_files(parse_changes(mr.changes), self.review_config)

        if not files:
            logger.info("No reviewable files in %s!%d after filtering", project_id, mr_iid)
            review = empty_review(NO_CHANGES_ASSESSMENT)
            self.store.finish_review(review_id, "completed")
            summary_posted = self._set_final_status(project_id, mr_iid, commit_sha, note_id, "success", review.summary)
            return ReviewResult(
                analysis=AnalysisResult(review=review, provider_used="none", model_used="none", duration_ms=0),
                summary_posted=summary_posted,
                errors=errors,
            )

        context = ReviewContext(
            project_name=mr.project_path or str(project_id),
            mr_title=mr.title,
            mr_description=mr.description or None,
            author=mr.author,
            source_branch=mr.source_branch,
            target_branch=mr.target_branch,
        )

        try:
            analysis = self.analyzer.analyze(files, context, self.model_id, self.review_config.language)
        except Exception as e:
            message = str(e)
            logger.error("AI analysis failed for %s!%d (review %d): %s", project_id, mr_iid, review_id, message)
            self.store.add_error_log(
                review_id,
                error_type=type(e).__name__,
                error_message=message,
                error_stack="".join(traceback.format_exception(type(e), e, e.__traceback__)),
                retryable=self.is_retryable(e),
            )
            self.store.finish_review(review_id, "failed", error_message=message)
            self._set_failed_status(project_id, mr_iid, commit_sha, note_id, message)
            raise

        posted = 0
        if self.review_config.inline_comments:
            for comment in analysis.review.inline_comments:
                try:
                    self._post_inline_comment(project_id, mr_iid, mr, comment, files)
                    posted += 1
                except Exception as e:
                    msg = f"Failed to post inline comment on {comment.file}:{comment.line}: {e}"
                    logger.error(msg)
                    errors.append(msg)

        summary = analysis.review.summary
        blocking = (
            has_issues_above_threshold(summary, self.review_config.failure_threshold)
            and self.review_config.failure_behavior == "blocking"
        )
        summary_posted = self._set_final_status(
            project_id, mr_iid, commit_sha, note_id, "failed" if blocking else "success", summary
        )

        self.store.add_result_log(
            review_id,
            inline_comments=[c.model_dump(by_alias=True) for c in analysis.review.inline_comments],
            summary=summary.model_dump(by_alias=True),
            provider_used=analysis.provider_used,
            model_used=analysis.model_used,
            duration_ms=analysis.duration_ms,
            inline_comments_posted=posted,
            summary_posted=summary_posted,
        )
        self.store.finish_review(review_id, "failed" if blocking else "completed")

        logger.info(
            "Review %d of %s!%d finished: %s, %d inline comment(s) posted, %d error(s), provider %s",
            review_id,
            project_id,
            mr_iid,
            "failed" if blocking else "completed",
            posted,
            len(errors),
            analysis.provider_used,
        )
        return ReviewResult(
            analysis=analysis, inline_comments_posted=posted, summary_posted=summary_posted, errors=errors
        )

    # ------------------------------------------------------------------ #
    # Comment lifecycle                                                    #
    # ------------------------------------------------------------------ #

    def _cleanup_old_comments(self, project_id: ProjectId, mr_iid: int, errors: list[str]) -> int | None:
        """Delete earlier marker-tagged inline notes; return the earlier summary note id, if any."""
        summary_note_id: int | None = None
        deleted = 0
        try:
            discussions = self.platform.list_discussions(project_id, mr_iid)
        except Exception as e:
            logger.warning("Could not list discussions on %s!%d: %s", project_id, mr_iid, e)
            errors.append(f"Failed to list discussions: {e}")
            return None

        for discussion in discussions:
            if not discussion.notes or AI_COMMENT_MARKER not in discussion.notes[0].body:
                continue
            if discussion.individual_note:
                summary_note_id = discussion.notes[0].id
                continue
            for note in discussion.notes:
                if AI_COMMENT_MARKER not in note.body:
                    continue
                try:
                    self.platform.delete_discussion_note(project_id, mr_iid, discussion.id, note.id)
                    deleted += 1
                except Exception as e:
                    logger.warning("Failed to delete note %s of discussion %s: %s", note.id, discussion.id, e)
                    errors.append(f"Failed to delete note {note.id}: {e}")

        logger.info(
            "Cleaned up %d old inline note(s) on %s!%d (summary note: %s)",
            deleted,
            project_id,
            mr_iid,
            summary_note_id,
        )
        return summary_note_id

    def _set_running_status(
        self, project_id: ProjectId, mr_iid: int, commit_sha: str, note_id: int | None
    ) -> int | None:
        try:
            self.platform.set_commit_status(project_id, commit_sha, "running", "AI code review in progress")
        except Exception as e:
            logger.warning("Failed to set running commit status: %s", e)
        try:
            if note_id is None:
                note_id = self.platform.post_note(project_id, mr_iid, format_pending_comment()).id
            else:
                self.platform.update_note(project_id, mr_iid, note_id, format_pending_comment())
        except Exception as e:
            logger.warning("Failed to post pending note: %s", e)
        return note_id

    def _set_final_status(
        self,
        project_id: ProjectId,
        mr_iid: int,
        commit_sha: str,
        note_id: int | None,
        state: str,
        summary: Summary,
    ) -> bool:
        try:
            self.platform.set_commit_status(project_id, commit_sha, state, status_description(summary, state))
        except Exception as e:
            logger.warning("Failed to set commit status: %s", e)

        if not self.review_config.summary_comment:
            return False
        body = format_summary_comment(summary)
        try:
            if note_id is not None:
                self.platform.update_note(project_id, mr_iid, note_id, body)
            else:
                self.platform.post_note(project_id, mr_iid, body)
        except Exception as e:
            logger.warning("Failed to update summary comment: %s", e)
            return False
        return True

    def _set_failed_status(
        self, project_id: ProjectId, mr_iid: int, commit_sha: str, note_id: int | None, message: str
    ) -> None:
        try:
            self.platform.set_commit_status(project_id, commit_sha, "failed", failed_status_description(message))
        except Exception as e:
            logger.warning("Failed to set commit status: %s", e)
        body = format_error_comment(message)
        try:
            if note_id is not None:
                self.platform.update_note(project_id, mr_iid, note_id, body)
            else:
                self.platform.post_note(project_id, mr_iid, body)
        except Exception as e:
            logger.warning("Failed to post error comment: %s", e)

    def _post_inline_comment(
        self,
        project_id: ProjectId,
        mr_iid: int,
        mr: MergeRequestChanges,
        comment: InlineComment,
        files: list[ParsedFile],
    ) -> None:
        file = next((f for f in files if f.path == comment.file), None)
        if file is None:
            raise FileNotInDiffError(f"File not found: {comment.file}")
        self.platform.post_positioned_comment(
            project_id,
            mr_iid,
            format_inline_comment(comment),
            comment.file,
            comment.line,
            mr.diff_refs,
            old_path=file.old_path,
        )
        logger.debug("Posted %s comment on %s:%d", comment.severity, comment.file, comment.line)
