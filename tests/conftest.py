"""
Pytest configuration and shared fixtures.
"""

from __future__ import annotations

import os
import shutil
import subprocess
from pathlib import Path

import pytest

from gitnotify.config import NotifyConfig
from gitnotify.core.git import Commit, CommitPatch, DiffStat

ZERO = "0" * 40


def sha(ch: str) -> str:
    """A recognizable fake object id: ``sha("a") == "aaaa...a"``."""
    return ch * 40


# ============================================================
# In-memory repository
# ============================================================


class FakeRepo:
    """Stands in for GitRepo; tests fill in only what they need."""

    def __init__(self):
        self.commits = {}
        self.history = {}
        self.ranges = {}
        self.bases = {}
        self.stats = {}
        self.diffs = {}
        self.heads = {}
        self.objects = {}
        self.peeled = {}
        self.tag_messages = {}
        self.config = {}
        self.git_dir = "/srv/git/project.git"
        self.calls = []

    def add_commit(self, ch: str, subject: str, parents=()) -> Commit:
        commit = Commit(sha=sha(ch), parents=[sha(p) for p in parents], subject=subject)
        self.commits[commit.sha] = commit
        return commit

    def resolve_git_dir(self) -> str:
        return self.git_dir

    def list_recent_commits(self, rev, count=20):
        self.calls.append(("list_recent_commits", rev))
        return self.history.get(rev, [])[:count]

    def commits_between(self, old, new):
        self.calls.append(("commits_between", old, new))
        return self.ranges[(old, new)]

    def commit(self, rev):
        return self.commits[rev]

    def merge_base(self, a, b):
        self.calls.append(("merge_base", a, b))
        return self.bases.get((a, b))

    def diff_stat(self, old, new):
        self.calls.append(("diff_stat", old, new))
        return self.stats.get((old, new), DiffStat(files=[], summary=""))

    def diff_patch(self, rev):
        self.calls.append(("diff_patch", rev))
        commit = self.commits[rev]
        return CommitPatch(
            commit=commit,
            author="A U Thor <author@example.com>",
            date="Thu, 7 Apr 2005 22:13:13 +0200",
            message=commit.subject,
            diff=self.diffs.get(rev, ""),
        )

    def branch_heads(self):
        return dict(self.heads)

    def object_type(self, rev):
        return self.objects.get(rev, "commit")

    def peel(self, rev):
        return self.peeled.get(rev, rev)

    def tag_message(self, rev):
        return self.tag_messages.get(rev)

    def config_get(self, name):
        return self.config.get(name)

    def called(self, name):
        return [c for c in self.calls if c[0] == name]


@pytest.fixture
def fake_repo():
    return FakeRepo()


@pytest.fixture
def config():
    return NotifyConfig(repo_name="project", max_size=0)


# ============================================================
# Real repositories
# ============================================================


class Workdir:
    """A scratch git working tree driven through the git CLI."""

    def __init__(self, path: Path):
        self.path = path
        self.git_dir = str(path / ".git")
        self._counter = 0

    def git(self, *args: str) -> str:
        env = dict(os.environ)
        env.update({
            "GIT_AUTHOR_NAME": "A U Thor",
            "GIT_AUTHOR_EMAIL": "author@example.com",
            "GIT_COMMITTER_NAME": "C O Mitter",
            "GIT_COMMITTER_EMAIL": "committer@example.com",
            "GIT_CONFIG_NOSYSTEM": "1",
            "HOME": str(self.path),
        })
        proc = subprocess.run(
            ["git", *args], cwd=self.path, env=env,
            capture_output=True, text=True, check=True,
        )
        return proc.stdout.strip()

    def commit(self, subject: str, filename: str | None = None, content: str | None = None) -> str:
        self._counter += 1
        name = filename or f"file{self._counter}.txt"
        with open(self.path / name, "a", encoding="utf-8") as f:
            f.write(content if content is not None else f"{subject}\n")
        self.git("add", name)
        self.git("commit", "-q", "-m", subject)
        return self.git("rev-parse", "HEAD")

    def rev(self, name: str) -> str:
        return self.git("rev-parse", name)


@pytest.fixture
def workdir(tmp_path):
    if shutil.which("git") is None:
        pytest.skip("git is not installed")
    path = tmp_path / "project"
    path.mkdir()
    wd = Workdir(path)
    wd.git("init", "-q")
    wd.git("symbolic-ref", "HEAD", "refs/heads/master")
    return wd
