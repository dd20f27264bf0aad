"""GitHub pull requests mapped onto the merge-request model via PyGithub.

Issue comments are individual-note discussions (the summary note lives
there); pull-request review comments are threaded discussions and are what
inline feedback becomes. The project id is the repository's full name.
"""

from __future__ import annotations

import logging
from typing import Callable, TypeVar

from github import Auth, Github, GithubException

from mrlens_core.errors import PlatformError
from mrlens_core.platforms.base import (
    COMMIT_STATUS_NAME,
    BasePlatform,
    DiffRefs,
    Discussion,
    FileChange,
    MergeRequestChanges,
    Note,
    ProjectId,
    ProjectInfo,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_STATE_MAP = {
    "pending": "pending",
    "running": "pending",
    "success": "success",
    "failed": "failure",
    "canceled": "error",
}

# GitHub rejects longer commit-status descriptions.
_MAX_STATUS_DESCRIPTION = 140


def _call(what: str, fn: Callable[[], T]) -> T:
    try:
        return fn()
    except GithubException as e:
        retry_after = None
        headers = e.headers or {}
        if headers.get("retry-after"):
            try:
                retry_after = float(headers["retry-after"])
            except ValueError:
                retry_after = None
        message = (e.data or {}).get("message") if isinstance(e.data, dict) else None
        raise PlatformError(
            f"GitHub {what} failed with {e.status}: {message or e}",
            status_code=e.status,
            retry_after=retry_after,
        ) from e


class GitHubPlatform(BasePlatform):
    NAME = "github"

    def __init__(self, token: str, client: Github | None = None):
        self._gh = client or Github(auth=Auth.Token(token))

    def close(self) -> None:
        self._gh.close()

    def _repo(self, project_id: ProjectId):
        return _call("get_repo", lambda: self._gh.get_repo(project_id))

    def _pull(self, project_id: ProjectId, mr_iid: int):
        repo = self._repo(project_id)
        return repo, _call("get_pull", lambda: repo.get_pull(mr_iid))

    def get_changes(self, project_id: ProjectId, mr_iid: int) -> MergeRequestChanges:
        _, pr = self._pull(project_id, mr_iid)
        files = _call("get_files", lambda: list(pr.get_files()))
        return MergeRequestChanges(
            title=pr.title or "",
            description=pr.body or "",
            author=pr.user.login if pr.user else "",
            source_branch=pr.head.ref,
            target_branch=pr.base.ref,
            web_url=pr.html_url or "",
            project_path=str(project_id),
            diff_refs=DiffRefs(base_sha=pr.base.sha, head_sha=pr.head.sha, start_sha=pr.base.sha),
            changes=[
                FileChange(
                    old_path=f.previous_filename or f.filename,
                    new_path=f.filename,
                    diff=f.patch or "",
                    new_file=f.status == "added",
                    deleted_file=f.status == "removed",
                    renamed_file=f.status == "renamed",
                )
                for f in files
            ],
        )

    def post_note(self, project_id: ProjectId, mr_iid: int, body: str) -> Note:
        _, pr = self._pull(project_id, mr_iid)
        comment = _call("create_issue_comment", lambda: pr.create_issue_comment(body))
        return Note(id=comment.id, body=comment.body or body)

    def update_note(self, project_id: ProjectId, mr_iid: int, note_id: int, body: str) -> Note:
        _, pr = self._pull(project_id, mr_iid)
        comment = _call("get_issue_comment", lambda: pr.get_issue_comment(note_id))
        _call("edit_issue_comment", lambda: comment.edit(body))
        return Note(id=note_id, body=body)

    def post_positioned_comment(
        self,
        project_id: ProjectId,
        mr_iid: int,
        body: str,
        path: str,
        line: int,
        diff_refs: DiffRefs,
        old_path: str | None = None,
    ) -> Discussion:
        repo, pr = self._pull(project_id, mr_iid)
        commit = _call("get_commit", lambda: repo.get_commit(diff_refs.head_sha))
        comment = _call(
            "create_review_comment",
            lambda: pr.create_review_comment(body, commit, path, line=line, side="RIGHT"),
        )
        return Discussion(id=str(comment.id), individual_note=False, notes=[Note(id=comment.id, body=body)])

    def list_discussions(self, project_id: ProjectId, mr_iid: int) -> list[Discussion]:
        _, pr = self._pull(project_id, mr_iid)
        discussions = [
            Discussion(id=str(c.id), individual_note=True, notes=[Note(id=c.id, body=c.body or "")])
            for c in _call("get_issue_comments", lambda: list(pr.get_issue_comments()))
        ]
        # Replies join the thread of the comment they answer.
        threads: dict[int, Discussion] = {}
        for c in _call("get_review_comments", lambda: list(pr.get_review_comments())):
            root = c.in_reply_to_id or c.id
            thread = threads.setdefault(root, Discussion(id=str(root), individual_note=False, notes=[]))
            thread.notes.append(Note(id=c.id, body=c.body or ""))
        return discussions + list(threads.values())

    def delete_discussion_note(self, project_id: ProjectId, mr_iid: int, discussion_id: str, note_id: int) -> None:
        _, pr = self._pull(project_id, mr_iid)
        comment = _call("get_review_comment", lambda: pr.get_review_comment(note_id))
        _call("delete_review_comment", comment.delete)

    def set_commit_status(
        self,
        project_id: ProjectId,
        sha: str,
        state: str,
        description: str = "",
        name: str = COMMIT_STATUS_NAME,
        target_url: str | None = None,
    ) -> None:
        repo = self._repo(project_id)
        commit = _call("get_commit", lambda: repo.get_commit(sha))
        kwargs = {"state": _STATE_MAP[state], "description": description[:_MAX_STATUS_DESCRIPTION], "context": name}
        if target_url:
            kwargs["target_url"] = target_url
        _call("create_status", lambda: commit.create_status(**kwargs))

    def resolve_project(self, path: str) -> ProjectInfo:
        repo = self._repo(path)
        return ProjectInfo(id=repo.full_name, path=repo.full_name, name=repo.name)
