# Copyright 2026 Pramod Kumar Voola
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

# -----------------------------------------------------------------------------
# GIT INFRASTRUCTURE - Source Metadata
# -----------------------------------------------------------------------------
# Responsibility: Read commit, branch and remote information from the
# project's work tree so builds can label images with their provenance.
# Uses subprocess for lean, direct git command execution.
#
# Read-only: nothing here changes the repository.
# -----------------------------------------------------------------------------

import json
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

from appsody.domain.errors import AppsodyError

NO_COMMITS = "## No commits yet on "
BRANCH_PREFIX = "## "
BRANCH_SEPARATOR = "..."
TRIM_CHARS = "' \r\n"

LAST_COMMIT_FORMAT = (
    '--pretty=format:{"author":"%an", "authoremail":"%ae", "sha":"%H", "date":"%cd", '
    '"committer":"%cn", "committeremail":"%ce", "message":"%s"}'
)


class GitError(AppsodyError):
    """Raised when a Git operation fails."""

    pass


@dataclass
class CommitInfo:
    author: str = ""
    author_email: str = ""
    committer: str = ""
    committer_email: str = ""
    sha: str = ""
    date: str = ""
    message: str = ""
    url: str = ""
    context_dir: str = ""


@dataclass
class GitInfo:
    branch: str = ""
    upstream: str = ""
    remote_url: str = ""
    changes_made: bool = False
    commit: CommitInfo = field(default_factory=CommitInfo)


def https_remote(remote: str) -> str:
    """Rewrite an ssh remote (git@host:org/repo.git) to https without .git."""
    remote = remote.strip(TRIM_CHARS)
    if "git@" in remote:
        remote = remote.replace(":", "/", 1).replace("git@", "https://", 1)
    return remote.replace(".git", "", 1)


def parse_status_header(line: str) -> tuple[str, str]:
    """
    Split the first line of `git status -sb` into (branch, upstream).

    Examples:
        "## main...origin/main [ahead 1]" -> ("main", "origin/main")
        "## No commits yet on main" -> ("main", "")
    """
    line = line.strip(TRIM_CHARS)
    branch, upstream = "", ""
    if line.startswith(NO_COMMITS):
        return line[len(NO_COMMITS):], ""
    if line.startswith(BRANCH_PREFIX):
        rest = line[len(BRANCH_PREFIX):]
        if BRANCH_SEPARATOR in rest:
            branch, _, tail = rest.partition(BRANCH_SEPARATOR)
            upstream = tail.strip(TRIM_CHARS).split(" ")[0]
        else:
            branch = rest
    return branch.strip(TRIM_CHARS), upstream


def pick_remote(names: list[str]) -> str:
    """Prefer "origin", then "upstream", else the first name."""
    names = [name.strip() for name in names if name.strip()]
    if not names:
        return ""
    if "origin" in names:
        return "origin"
    if "upstream" in names:
        return "upstream"
    return names[0]


class GitProvider:
    """
    Git metadata reader for a project directory.

    Usage:
        git = GitProvider("/path/to/project")
        info = git.get_info()
    """

    def __init__(self, workspace_path: str) -> None:
        self._workspace = Path(workspace_path)

    def _run(self, args: list, check: bool = True) -> str:
        """
        Run a git command in the workspace and return stdout.

        Raises:
            GitError: If the command fails and check=True
        """
        try:
            result = subprocess.run(
                ["git", *args],
                cwd=self._workspace,
                capture_output=True,
                text=True,
                timeout=60,
            )
        except subprocess.TimeoutExpired:
            raise GitError("Git operation timed out (60s limit)")
        except (OSError, subprocess.SubprocessError) as e:
            raise GitError(f"Git subprocess error: {e}")

        if check and result.returncode != 0:
            raise GitError(f"Git command failed: {result.stderr or result.stdout or 'Unknown error'}")
        return result.stdout

    def version(self) -> str:
        return self._run(["version"]).strip(TRIM_CHARS)

    def last_commit(self) -> CommitInfo:
        raw = self._run(["log", "-n", "1", LAST_COMMIT_FORMAT]).strip(TRIM_CHARS)
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise GitError(f"JSON Unmarshall error: {e}")
        return CommitInfo(
            author=data.get("author", ""),
            author_email=data.get("authoremail", ""),
            committer=data.get("committer", ""),
            committer_email=data.get("committeremail", ""),
            sha=data.get("sha", ""),
            date=data.get("date", ""),
            message=data.get("message", ""),
            context_dir=self._run(["rev-parse", "--show-prefix"], check=False).strip(TRIM_CHARS),
        )

    def remote_url(self, upstream: str) -> str:
        name = upstream.split("/")[0]
        return https_remote(self._run(["config", "--local", f"remote.{name}.url"]))

    def get_info(self) -> GitInfo:
        """
        Collect branch, upstream, remote URL and last commit.

        Raises:
            GitError: If git is unavailable or the work tree has no commits
                or no remote. Partial information is discarded.
        """
        if not self.version():
            raise GitError("git does not appear to be available")

        info = GitInfo(commit=self.last_commit())

        lines = self._run(["status", "-sb"]).strip(TRIM_CHARS).splitlines()
        info.branch, info.upstream = parse_status_header(lines[0] if lines else "")
        info.changes_made = len(lines) > 1

        if not info.upstream:
            contains = self._run(["branch", "-r", "--contains", info.commit.sha], check=False)
            info.upstream = pick_remote(contains.splitlines())
        if not info.upstream:
            info.upstream = pick_remote(self._run(["remote"]).splitlines())
        if not info.upstream:
            raise GitError("Unable to determine origin to compute repository URL")

        info.remote_url = self.remote_url(info.upstream)
        if info.remote_url:
            info.commit.url = f"{info.remote_url}/commit/{info.commit.sha}"
        return info
