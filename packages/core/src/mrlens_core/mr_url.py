from __future__ import annotations

import re
from urllib.parse import urlparse

_GITLAB_PATH_RE = re.compile(r"^/(?P<project>.+?)/-/merge_requests/(?P<iid>\d+)(?:/.*)?$")
_GITHUB_PATH_RE = re.compile(r"^/(?P<project>[^/]+/[^/]+)/pull/(?P<iid>\d+)(?:/.*)?$")


def parse_mr_url(url: str) -> tuple[str, int] | None:
    """Extract (project_path, mr_iid) from a GitLab merge-request or GitHub pull-request URL.

    Returns None for anything else.

    >>> parse_mr_url("https://gitlab.com/group/sub/app/-/merge_requests/42")
    ('group/sub/app', 42)
    >>> parse_mr_url("https://github.com/owner/repo/pull/7/files")
    ('owner/repo', 7)
    """
    parsed = urlparse(url.strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return None
    path = parsed.path.rstrip("/")
    for pattern in (_GITLAB_PATH_RE, _GITHUB_PATH_RE):
        match = pattern.match(path)
        if match:
            return match.group("project"), int(match.group("iid"))
    return None
