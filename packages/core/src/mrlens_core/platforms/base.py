"""Host platform interface and the normalized types it returns.

The orchestrator only ever talks to BasePlatform. GitLab's vocabulary is the
reference: a merge request has discussions, a discussion holds notes, and an
"individual note" discussion is a plain top-level comment. Other hosts map
their own objects onto these types.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Union

ProjectId = Union[int, str]

# Commit-status states in GitLab's vocabulary.
STATUS_STATES = ("pending", "running", "success", "failed", "canceled")

COMMIT_STATUS_NAME = "ai-code-review"


@dataclass(frozen=True)
class DiffRefs:
    base_sha: str
    head_sha: str
    start_sha: str


@dataclass(frozen=True)
class FileChange:
    old_path: str
    new_path: str
    diff: str
    new_file: bool = False
    deleted_file: bool = False
    renamed_file: bool = False


@dataclass(frozen=True)
class MergeRequestChanges:
    title: str
    author: str
    source_branch: str
    target_branch: str
    diff_refs: DiffRefs
    description: str = ""
    web_url: str = ""
    project_path: str = ""
    changes: list[FileChange] = field(default_factory=list)


@dataclass(frozen=True)
class Note:
    id: int
    body: str


@dataclass(frozen=True)
class Discussion:
    id: str
    individual_note: bool
    notes: list[Note] = field(default_factory=list)


@dataclass(frozen=True)
class ProjectInfo:
    id: ProjectId
    path: str
    name: str


class BasePlatform(ABC):
    """Source-control host operations used by the review pipeline."""

    NAME: str = ""

    @abstractmethod
    def get_changes(self, project_id: ProjectId, mr_iid: int) -> MergeRequestChanges:
        """Fetch MR metadata, diff refs and per-file diffs."""

    @abstractmethod
    def post_note(self, project_id: ProjectId, mr_iid: int, body: str) -> Note:
        """Post a top-level comment on the MR."""

    @abstractmethod
    def update_note(self, project_id: ProjectId, mr_iid: int, note_id: int, body: str) -> Note:
        """Replace the body of an existing top-level comment."""

    @abstractmethod
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
        """Start a discussion anchored to ``line`` of the new version of ``path``."""

    @abstractmethod
    def list_discussions(self, project_id: ProjectId, mr_iid: int) -> list[Discussion]:
        """All discussions on the MR, top-level comments included."""

    @abstractmethod
    def delete_discussion_note(self, project_id: ProjectId, mr_iid: int, discussion_id: str, note_id: int) -> None:
        """Delete one note from a discussion."""

    @abstractmethod
    def set_commit_status(
        self,
        project_id: ProjectId,
        sha: str,
        state: str,
        description: str = "",
        name: str = COMMIT_STATUS_NAME,
        target_url: str | None = None,
    ) -> None:
        """Set the commit status for ``sha``. ``state`` is one of STATUS_STATES."""

    @abstractmethod
    def resolve_project(self, path: str) -> ProjectInfo:
        """Look up a project by its namespaced path."""

    def close(self) -> None:
        """Release any held resources. No-op by default."""
