from __future__ import annotations

import os
from typing import Optional

from .git import GitError, GitRepo


def git_dir(repo: GitRepo) -> Optional[str]:
    try:
        path = repo.resolve_git_dir()
    except GitError:
        return None
    return os.path.abspath(path) if path else None


def repo_name(path: str) -> str:
    """Short repository name for subjects and headers.

    ``/srv/git/project.git`` -> ``project``; ``/home/u/project/.git`` ->
    ``project``.
    """
    path = os.path.normpath(os.path.abspath(path))
    base = os.path.basename(path)
    if base == ".git":
        base = os.path.basename(os.path.dirname(path))
    if base.endswith(".git"):
        base = base[: -len(".git")]
    return base
