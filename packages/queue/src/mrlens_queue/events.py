"""Maps inbound change-notification events onto queue entries.

Events arrive already authenticated. GitLab payloads are routed by
``object_kind``; GitHub payloads (which carry no object_kind) are recognised
by shape and translated onto the same rules, with the repository full name
as the project id.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from mrlens_core.config import WebhookConfig
from mrlens_core.prompts import AI_COMMENT_MARKER
from mrlens_store.base import BaseStore
from mrlens_store.models import NewTask

logger = logging.getLogger(__name__)

_GITHUB_PR_ACTIONS = {"opened": "open", "synchronize": "update", "reopened": "reopen", "closed": "close"}


@dataclass
class RouteResult:
    handled: bool
    event_type: str | None = None
    skip_reason: str | None = None
    task_id: int | None = None


@dataclass
class _MergeRequestRef:
    project_id: str
    mr_iid: int
    project_path: str = ""
    title: str = ""
    author: str = ""
    description: str | None = None
    source_branch: str = ""
    target_branch: str = ""


def event_kind(event: dict) -> str | None:
    """The GitLab-style kind of an event: merge_request, note, push, or None."""
    kind = event.get("object_kind")
    if kind:
        return kind
    if "pull_request" in event and "action" in event:
        return "merge_request"
    if "comment" in event and "issue" in event:
        return "note"
    return None


def _is_ai_note(event: dict) -> bool:
    text = (event.get("object_attributes") or {}).get("note") or (event.get("comment") or {}).get("body") or ""
    return AI_COMMENT_MARKER in text


class EventRouter:
    def __init__(self, store: BaseStore, config: WebhookConfig, max_retries: int = 3):
        self.store = store
        self.config = config
        self.max_retries = max_retries

    def route(self, event: dict) -> RouteResult:
        kind = event_kind(event)
        if kind is None:
            logger.warning("Unsupported event with keys %s", sorted(event)[:10])
            return RouteResult(handled=False, skip_reason="Unsupported event")

        if kind == "note" and _is_ai_note(event):
            logger.debug("Ignoring AI-generated note")
            return RouteResult(handled=False, event_type=kind, skip_reason="AI-generated comment")

        is_github = "object_kind" not in event
        if kind == "merge_request":
            return self._merge_request(event, is_github)
        if kind == "note":
            return self._note(event, is_github)
        if kind == "push":
            return self._push(event)
        logger.info("Unsupported event kind %s", kind)
        return RouteResult(handled=False, event_type=kind, skip_reason="Unsupported event")

    # ------------------------------------------------------------------ #
    # Handlers                                                             #
    # ------------------------------------------------------------------ #

    def _merge_request(self, event: dict, is_github: bool) -> RouteResult:
        if is_github:
            pr = event["pull_request"]
            ref = _github_ref(event, pr)
            action = _GITHUB_PR_ACTIONS.get(event.get("action", ""), event.get("action", ""))
            draft = bool(pr.get("draft"))
            state = "opened" if pr.get("state") == "open" else pr.get("state", "")
        else:
            attrs = event.get("object_attributes") or {}
            ref = _gitlab_ref(event, attrs)
            action = attrs.get("action", "")
            draft = bool(attrs.get("draft") or attrs.get("work_in_progress"))
            state = attrs.get("state", "")

        event_id = self._record(event, "merge_request", ref)
        logger.info("Merge request event %s on %s!%d", action, ref.project_id, ref.mr_iid)

        if not self.config.mr_enabled:
            return self._skip("merge_request", "MR events disabled")
        if action not in self.config.mr_events:
            return self._skip("merge_request", f"Action '{action}' not enabled")
        if draft and not self.config.review_drafts:
            return self._skip("merge_request", "Draft MR")
        if state != "opened":
            return self._skip("merge_request", f"MR state: {state}")

        task_id = self._enqueue(ref, "webhook", action, event_id)
        return RouteResult(handled=True, event_type="merge_request", task_id=task_id)

    def _note(self, event: dict, is_github: bool) -> RouteResult:
        if is_github:
            issue = event.get("issue") or {}
            is_mr_note = "pull_request" in issue
            is_system = False
            text = (event.get("comment") or {}).get("body") or ""
            ref = _github_ref(event, issue) if is_mr_note else None
        else:
            attrs = event.get("object_attributes") or {}
            mr = event.get("merge_request")
            is_mr_note = attrs.get("noteable_type") == "MergeRequest" and bool(mr)
            is_system = bool(attrs.get("system"))
            text = attrs.get("note") or ""
            ref = _gitlab_ref(event, mr) if is_mr_note else None

        event_id = self._record(event, "note", ref)

        if not self.config.note_enabled:
            return self._skip("note", "Note events disabled")
        if ref is None:
            return self._skip("note", "Not an MR note")
        if is_system:
            return self._skip("note", "System note")

        normalized = text.strip().lower()
        command = next((c for c in self.config.note_commands if normalized.startswith(c.lower())), None)
        if command is None:
            return self._skip("note", "No review command")

        logger.info("Review command %s on %s!%d", command, ref.project_id, ref.mr_iid)
        task_id = self._enqueue(ref, "command", command, event_id)
        return RouteResult(handled=True, event_type="note", task_id=task_id)

    def _push(self, event: dict) -> RouteResult:
        project = event.get("project") or {}
        self.store.record_webhook_event("push", event, project_id=_str_or_none(project.get("id")))
        if not self.config.push_enabled:
            return self._skip("push", "Push events disabled")
        branch = (event.get("ref") or "").replace("refs/heads/", "", 1)
        if branch not in self.config.push_branches:
            return self._skip("push", "Branch not configured")
        # A push has no merge request to attach a review to.
        logger.info("Push to %s acknowledged; push review is not supported", branch)
        return self._skip("push", "Push review not implemented")

    # ------------------------------------------------------------------ #
    # Helpers                                                              #
    # ------------------------------------------------------------------ #

    def _record(self, event: dict, kind: str, ref: _MergeRequestRef | None) -> int:
        return self.store.record_webhook_event(
            kind,
            event,
            project_id=ref.project_id if ref else None,
            mr_iid=ref.mr_iid if ref else None,
        )

    def _enqueue(self, ref: _MergeRequestRef, triggered_by: str, trigger_event: str, event_id: int) -> int:
        return self.store.enqueue(
            NewTask(
                project_id=ref.project_id,
                mr_iid=ref.mr_iid,
                project_path=ref.project_path,
                mr_title=ref.title,
                mr_author=ref.author,
                mr_description=ref.description,
                source_branch=ref.source_branch,
                target_branch=ref.target_branch,
                triggered_by=triggered_by,
                trigger_event=trigger_event,
                webhook_event_id=event_id,
                max_retries=self.max_retries,
            )
        )

    @staticmethod
    def _skip(event_type: str, reason: str) -> RouteResult:
        logger.debug("Skipping %s event: %s", event_type, reason)
        return RouteResult(handled=False, event_type=event_type, skip_reason=reason)


def _str_or_none(value) -> str | None:
    return None if value is None else str(value)


def _gitlab_ref(event: dict, mr: dict) -> _MergeRequestRef:
    project = event.get("project") or {}
    user = event.get("user") or {}
    # event["user"] is whoever acted (the commenter, or the pusher of an update);
    # it names the MR author only when the ids match.
    is_author = user.get("id") is not None and user.get("id") == mr.get("author_id")
    return _MergeRequestRef(
        project_id=str(project.get("id") or mr.get("target_project_id")),
        mr_iid=int(mr["iid"]),
        project_path=project.get("path_with_namespace", ""),
        title=mr.get("title", ""),
        author=user.get("username", "") if is_author else "",
        description=mr.get("description"),
        source_branch=mr.get("source_branch", ""),
        target_branch=mr.get("target_branch", ""),
    )


def _github_ref(event: dict, pr: dict) -> _MergeRequestRef:
    repo = event.get("repository") or {}
    full_name = repo.get("full_name", "")
    return _MergeRequestRef(
        project_id=full_name,
        mr_iid=int(pr["number"]),
        project_path=full_name,
        title=pr.get("title", ""),
        author=(pr.get("user") or {}).get("login", ""),
        description=pr.get("body"),
        source_branch=(pr.get("head") or {}).get("ref", ""),
        target_branch=(pr.get("base") or {}).get("ref", ""),
    )
