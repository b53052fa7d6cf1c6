from __future__ import annotations

import datetime as dt
import logging
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 3.0
COMMIT_LOG_LIMIT = 20
DIFF_STAT_DEPTH = 10
TOUCHED_FILES_DEPTH = 5
MAX_TODO_FILES = 20
MAX_TODOS_PER_FILE = 5

LOCKFILE_PATTERNS: list[str] = [
    "uv.lock",
    "package-lock.json",
    "yarn.lock",
    "pnpm-lock.yaml",
    "Cargo.lock",
    "Gemfile.lock",
    "poetry.lock",
    "Pipfile.lock",
]


def run_command(
    cmd: Sequence[str], cwd: str | None = None, timeout_s: float = DEFAULT_TIMEOUT_S
) -> str | None:
    """Run a command and return stripped stdout, or None on any failure or timeout."""

    try:
        completed = subprocess.run(
            list(cmd),
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout_s,
            check=True,
        )
    except subprocess.TimeoutExpired:
        logger.debug("command timed out after %ss: %s", timeout_s, " ".join(cmd))
        return None
    except subprocess.CalledProcessError:
        return None
    except OSError:
        return None
    return completed.stdout.strip()


def filter_lockfiles_from_diff(diff_output: str) -> str:
    lines = []
    for line in diff_output.splitlines():
        if not any(pattern in line for pattern in LOCKFILE_PATTERNS):
            lines.append(line)
    return "\n".join(lines)


@dataclass(frozen=True)
class TodoMarker:
    path: str
    line: int
    text: str

    def render(self) -> str:
        return f"{self.path}:{self.line}: {self.text}"


class GitContextSource(Protocol):
    def current_branch(self) -> str | None: ...

    def recent_commits(
        self, since: dt.datetime | None = None, limit: int = COMMIT_LOG_LIMIT
    ) -> list[str]: ...

    def diff_stat(self, depth: int = DIFF_STAT_DEPTH) -> str | None: ...

    def touched_files(self, depth: int = TOUCHED_FILES_DEPTH) -> list[str]: ...

    def find_todo_markers(
        self,
        files: Sequence[str],
        max_files: int = MAX_TODO_FILES,
        max_per_file: int = MAX_TODOS_PER_FILE,
    ) -> list[TodoMarker]: ...


class NullGitContext:
    """Stand-in for environments without version control."""

    def current_branch(self) -> str | None:
        return None

    def recent_commits(
        self, since: dt.datetime | None = None, limit: int = COMMIT_LOG_LIMIT
    ) -> list[str]:
        return []

    def diff_stat(self, depth: int = DIFF_STAT_DEPTH) -> str | None:
        return None

    def touched_files(self, depth: int = TOUCHED_FILES_DEPTH) -> list[str]:
        return []

    def find_todo_markers(
        self,
        files: Sequence[str],
        max_files: int = MAX_TODO_FILES,
        max_per_file: int = MAX_TODOS_PER_FILE,
    ) -> list[TodoMarker]:
        return []


class ShellGitContext:
    """Reads repository state by shelling out to ``git``, one bounded call at a time."""

    def __init__(self, cwd: str | None = None, timeout_s: float = DEFAULT_TIMEOUT_S) -> None:
        self.cwd = cwd
        self.timeout_s = timeout_s

    def _git(self, *args: str, cwd: str | None = None) -> str | None:
        return run_command(["git", *args], cwd=cwd or self.cwd, timeout_s=self.timeout_s)

    def current_branch(self) -> str | None:
        branch = self._git("rev-parse", "--abbrev-ref", "HEAD")
        if not branch or branch == "HEAD":
            return None
        return branch

    def recent_commits(
        self, since: dt.datetime | None = None, limit: int = COMMIT_LOG_LIMIT
    ) -> list[str]:
        args = ["log", "--oneline", "--no-decorate", f"-n{limit}"]
        if since is not None:
            args.append(f"--since={since.astimezone(dt.UTC).isoformat()}")
        output = self._git(*args)
        if not output:
            return []
        return [line for line in output.splitlines() if line.strip()]

    def diff_stat(self, depth: int = DIFF_STAT_DEPTH) -> str | None:
        count_raw = self._git("rev-list", "--count", "HEAD")
        try:
            count = int(count_raw or "0")
        except ValueError:
            return None
        depth = min(depth, count - 1)
        if depth <= 0:
            return None
        output = self._git("diff", "--stat", f"HEAD~{depth}", "HEAD")
        if not output:
            return None
        return filter_lockfiles_from_diff(output) or None

    def touched_files(self, depth: int = TOUCHED_FILES_DEPTH) -> list[str]:
        output = self._git("log", f"-n{depth}", "--name-only", "--pretty=format:")
        if not output:
            return []
        files: list[str] = []
        for line in output.splitlines():
            path = line.strip()
            if not path or path in files:
                continue
            if any(pattern in path for pattern in LOCKFILE_PATTERNS):
                continue
            files.append(path)
        return files

    def find_todo_markers(
        self,
        files: Sequence[str],
        max_files: int = MAX_TODO_FILES,
        max_per_file: int = MAX_TODOS_PER_FILE,
    ) -> list[TodoMarker]:
        # log --name-only paths are relative to the repository root.
        root = self._git("rev-parse", "--show-toplevel")
        if not root:
            return []
        markers: list[TodoMarker] = []
        for path in files[:max_files]:
            output = self._git(
                "grep", "-n", "-I", "-w", "-E", "TODO|FIXME", "--", path, cwd=root
            )
            if not output:
                continue
            for line in output.splitlines()[:max_per_file]:
                parts = line.split(":", 2)
                if len(parts) != 3:
                    continue
                try:
                    line_no = int(parts[1])
                except ValueError:
                    continue
                markers.append(TodoMarker(path=parts[0], line=line_no, text=parts[2].strip()))
        return markers


@dataclass
class GitContext:
    commits: list[str] = field(default_factory=list)
    diff_stat: str | None = None
    todos: list[TodoMarker] = field(default_factory=list)

    @property
    def has_activity(self) -> bool:
        return bool(self.commits or self.diff_stat)

    def render_activity(self) -> str:
        sections: list[str] = []
        if self.commits:
            sections.append("## Recent commits\n" + "\n".join(f"- {c}" for c in self.commits))
        if self.diff_stat:
            sections.append("## Diff stat (last commits)\n" + self.diff_stat)
        return "\n\n".join(sections)

    def render_todos(self) -> str:
        return "## TODO/FIXME markers\n" + "\n".join(f"- {t.render()}" for t in self.todos)


def extract_git_context(
    source: GitContextSource,
    since: dt.datetime | None = None,
    *,
    diff_depth: int = DIFF_STAT_DEPTH,
    touched_depth: int = TOUCHED_FILES_DEPTH,
    max_files: int = MAX_TODO_FILES,
    max_per_file: int = MAX_TODOS_PER_FILE,
) -> GitContext:
    """Collect commits, diff stat and TODO markers; a failing step is left out."""

    context = GitContext()
    try:
        context.commits = source.recent_commits(
            since=since, limit=COMMIT_LOG_LIMIT if since else DIFF_STAT_DEPTH
        )
    except Exception as exc:
        logger.debug("git commit log failed", exc_info=exc)
    try:
        context.diff_stat = source.diff_stat(diff_depth)
    except Exception as exc:
        logger.debug("git diff stat failed", exc_info=exc)
    try:
        files = source.touched_files(touched_depth)
        context.todos = source.find_todo_markers(
            files, max_files=max_files, max_per_file=max_per_file
        )
    except Exception as exc:
        logger.debug("git todo scan failed", exc_info=exc)
    return context
