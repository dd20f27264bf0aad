"""GitLab REST v4 client over httpx.

Every HTTP failure is raised as PlatformError carrying the status code and any
Retry-After header, so the queue's retry policy can classify it. Transport
failures (connection refused, timeouts) carry no status code and a message
that classifies as transient.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx

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

_PER_PAGE = 100


def _encode_project(project_id: ProjectId) -> str:
    # Namespaced paths ("group/sub/project") must be URL-encoded as one segment.
    return quote(str(project_id), safe="")


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class GitLabPlatform(BasePlatform):
    NAME = "gitlab"

    def __init__(self, url: str, token: str, timeout: float = 30.0, client: httpx.Client | None = None):
        self.base_url = url.rstrip("/") + "/api/v4"
        logger.debug("Initializing GitLab client for %s (token set: %s)", self.base_url, bool(token))
        self._client = client or httpx.Client(
            base_url=self.base_url,
            timeout=timeout,
            headers={"PRIVATE-TOKEN": token},
        )

    def close(self) -> None:
        self._client.close()

    # ------------------------------------------------------------------ #
    # HTTP plumbing                                                        #
    # ------------------------------------------------------------------ #

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise PlatformError(f"GitLab {method} {path}: timeout: {e}") from e
        except httpx.TransportError as e:
            raise PlatformError(f"GitLab {method} {path}: network error: {e}") from e
        if response.status_code >= 400:
            raise PlatformError(
                f"GitLab {method} {path} failed with {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
                retry_after=_retry_after(response),
            )
        return response

    def _json(self, method: str, path: str, **kwargs: Any) -> Any:
        response = self._request(method, path, **kwargs)
        return response.json() if response.content else None

    def _paginate(self, path: str) -> list[dict]:
        items: list[dict] = []
        page = "1"
        while page:
            response = self._request("GET", path, params={"page": page, "per_page": _PER_PAGE})
            items.extend(response.json())
            page = response.headers.get("x-next-page", "")
        return items

    def _mr_path(self, project_id: ProjectId, mr_iid: int) -> str:
        return f"/projects/{_encode_project(project_id)}/merge_requests/{mr_iid}"

    # ------------------------------------------------------------------ #
    # BasePlatform                                                         #
    # ------------------------------------------------------------------ #

    def get_changes(self, project_id: ProjectId, mr_iid: int) -> MergeRequestChanges:
        mr_path = self._mr_path(project_id, mr_iid)
        mr = self._json("GET", mr_path)
        diffs = self._paginate(f"{mr_path}/diffs")

        refs = mr.get("diff_refs") or {}
        full_ref = (mr.get("references") or {}).get("full", "")
        return MergeRequestChanges(
            title=mr.get("title", ""),
            description=mr.get("description") or "",
            author=(mr.get("author") or {}).get("username", ""),
            source_branch=mr.get("source_branch", ""),
            target_branch=mr.get("target_branch", ""),
            web_url=mr.get("web_url", ""),
            project_path=full_ref.split("!", 1)[0],
            diff_refs=DiffRefs(
                base_sha=refs.get("base_sha", ""),
                head_sha=refs.get("head_sha", ""),
                start_sha=refs.get("start_sha", ""),
            ),
            changes=[
                FileChange(
                    old_path=d.get("old_path", ""),
                    new_path=d.get("new_path", ""),
                    diff=d.get("diff") or "",
                    new_file=bool(d.get("new_file")),
                    deleted_file=bool(d.get("deleted_file")),
                    renamed_file=bool(d.get("renamed_file")),
                )
                for d in diffs
            ],
        )

    def post_note(self, project_id: ProjectId, mr_iid: int, body: str) -> Note:
        logger.debug("Posting note on %s!%s (%d chars)", project_id, mr_iid, len(body))
        data = self._json("POST", f"{self._mr_path(project_id, mr_iid)}/notes", json={"body": body})
        return Note(id=data["id"], body=data.get("body", body))

    def update_note(self, project_id: ProjectId, mr_iid: int, note_id: int, body: str) -> Note:
        logger.debug("Updating note %s on %s!%s", note_id, project_id, mr_iid)
        data = self._json("PUT", f"{self._mr_path(project_id, mr_iid)}/notes/{note_id}", json={"body": body})
        return Note(id=data["id"], body=data.get("body", body))

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
        position = {
            "position_type": "text",
            "base_sha": diff_refs.base_sha,
            "head_sha": diff_refs.head_sha,
            "start_sha": diff_refs.start_sha,
            "new_path": path,
            "old_path": old_path or path,
            "new_line": line,
        }
        logger.debug("Posting discussion on %s!%s at %s:%d", project_id, mr_iid, path, line)
        data = self._json(
            "POST",
            f"{self._mr_path(project_id, mr_iid)}/discussions",
            json={"body": body, "position": position},
        )
        return _to_discussion(data)

    def list_discussions(self, project_id: ProjectId, mr_iid: int) -> list[Discussion]:
        return [_to_discussion(d) for d in self._paginate(f"{self._mr_path(project_id, mr_iid)}/discussions")]

    def delete_discussion_note(self, project_id: ProjectId, mr_iid: int, discussion_id: str, note_id: int) -> None:
        logger.debug("Deleting note %s of discussion %s on %s!%s", note_id, discussion_id, project_id, mr_iid)
        self._request("DELETE", f"{self._mr_path(project_id, mr_iid)}/discussions/{discussion_id}/notes/{note_id}")

    def set_commit_status(
        self,
        project_id: ProjectId,
        sha: str,
        state: str,
        description: str = "",
        name: str = COMMIT_STATUS_NAME,
        target_url: str | None = None,
    ) -> None:
        logger.debug("Setting commit status %s=%s on %s@%s", name, state, project_id, sha[:8])
        payload = {"state": state, "name": name, "description": description}
        if target_url:
            payload["target_url"] = target_url
        self._request("POST", f"/projects/{_encode_project(project_id)}/statuses/{sha}", json=payload)

    def resolve_project(self, path: str) -> ProjectInfo:
        data = self._json("GET", f"/projects/{_encode_project(path)}")
        return ProjectInfo(id=data["id"], path=data.get("path_with_namespace", path), name=data.get("name", ""))


def _to_discussion(data: dict) -> Discussion:
    return Discussion(
        id=str(data["id"]),
        individual_note=bool(data.get("individual_note")),
        notes=[Note(id=n["id"], body=n.get("body") or "") for n in data.get("notes") or []],
    )
