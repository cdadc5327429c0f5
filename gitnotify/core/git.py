"""
Git Layer - Structured queries against the repository being pushed to.

Every method runs a single git command and parses its output into the
typed records below, so the renderer never looks at raw git text.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .util import CmdResult, run, short_sha

logger = logging.getLogger(__name__)

SHA_RE = re.compile(r"^[0-9a-f]{40}([0-9a-f]{24})?$")
DIFFSTAT_SUMMARY_RE = re.compile(r"^\s*\d+ files? changed")

# %x00 separates fields; each record sits on its own line
_LOG_FORMAT = "--format=%H%x00%P%x00%s"
_PATCH_FORMAT = "--format=%H%x00%P%x00%s%x00%an <%ae>%x00%aD%x00%B"


class GitError(Exception):
    """Exception raised for git query failures."""
    pass


class GitCommandError(GitError):
    """Exception raised when a git command exits non-zero."""

    def __init__(self, args: List[str], result: CmdResult):
        self.command = args
        self.code = result.code
        self.stderr = result.stderr
        detail = result.stderr or f"exit code {result.code}"
        super().__init__(f"git {' '.join(args)} failed: {detail}")


class GitParseError(GitError):
    """Exception raised when git output does not have the expected shape."""
    pass


@dataclass(frozen=True)
class Commit:
    """A commit as seen in a log listing."""
    sha: str
    parents: List[str] = field(default_factory=list)
    subject: str = ""

    @property
    def short(self) -> str:
        return short_sha(self.sha)

    @property
    def is_merge(self) -> bool:
        return len(self.parents) > 1

    def oneline(self) -> str:
        return f"{self.short} {self.subject}"


@dataclass(frozen=True)
class CommitPatch:
    """Full log message and diff of a single commit."""
    commit: Commit
    author: str
    date: str
    message: str
    diff: str


@dataclass(frozen=True)
class DiffStat:
    files: List[str]
    summary: str

    def __bool__(self) -> bool:
        return bool(self.files or self.summary)

    def lines(self) -> List[str]:
        out = list(self.files)
        if self.summary:
            out.append(self.summary)
        return out


def _check_sha(value: str, what: str) -> str:
    if not SHA_RE.match(value):
        raise GitParseError(f"malformed {what}: {value!r}")
    return value


def parse_commit_line(line: str) -> Commit:
    fields = line.split("\x00")
    if len(fields) != 3:
        raise GitParseError(f"malformed log line: {line!r}")
    sha, parents, subject = fields
    _check_sha(sha, "commit id")
    parent_list = parents.split()
    for parent in parent_list:
        _check_sha(parent, "parent id")
    return Commit(sha=sha, parents=parent_list, subject=subject)


def parse_commit_log(output: str) -> List[Commit]:
    return [parse_commit_line(line) for line in output.splitlines() if line]


def parse_diff_stat(output: str) -> DiffStat:
    lines = [line.rstrip() for line in output.splitlines() if line.strip()]
    if not lines:
        return DiffStat(files=[], summary="")
    summary = lines[-1]
    if not DIFFSTAT_SUMMARY_RE.match(summary):
        raise GitParseError(f"malformed diffstat summary: {summary!r}")
    return DiffStat(files=lines[:-1], summary=summary.strip())


def parse_tag_message(output: str) -> str:
    """Return the message part of ``git cat-file tag`` output."""
    header, sep, message = output.partition("\n\n")
    if not sep and not header.startswith("object "):
        raise GitParseError("malformed tag object")
    return message.strip()


class GitRepo:
    """Query interface over one repository.

    ``git_dir`` is passed as ``--git-dir`` when given; otherwise git finds
    the repository itself (hooks run with GIT_DIR already set).
    """

    def __init__(self, git_dir: Optional[str] = None, git: str = "git"):
        self.git_dir = git_dir
        self.git = git

    def _cmd(self, args: List[str]) -> List[str]:
        # log messages in UTF-8 whatever i18n.commitEncoding says
        cmd = [self.git, "-c", "i18n.logoutputencoding=UTF-8"]
        if self.git_dir:
            cmd.append(f"--git-dir={self.git_dir}")
        return cmd + args

    def _run(self, args: List[str], ok_codes: tuple = (0,)) -> CmdResult:
        try:
            res = run(self._cmd(args))
        except FileNotFoundError:
            raise GitError(f"{self.git} is not installed or not found in PATH")
        if res.code not in ok_codes:
            raise GitCommandError(args, res)
        return res

    def _output(self, args: List[str]) -> str:
        return self._run(args).stdout

    def resolve_git_dir(self) -> str:
        return self._output(["rev-parse", "--git-dir"]).strip()

    def list_recent_commits(self, rev: str, count: int = 20) -> List[Commit]:
        """Newest first, at most ``count`` commits reachable from ``rev``."""
        out = self._output(["log", f"-n{count}", _LOG_FORMAT, rev, "--"])
        return parse_commit_log(out)

    def commits_between(self, old: Optional[str], new: str) -> List[Commit]:
        """Commits in (old, new], oldest first."""
        rev_range = f"{old}..{new}" if old else new
        out = self._output(["log", "--reverse", _LOG_FORMAT, rev_range, "--"])
        return parse_commit_log(out)

    def commit(self, sha: str) -> Commit:
        commits = parse_commit_log(self._output(["log", "-n1", _LOG_FORMAT, sha, "--"]))
        if len(commits) != 1:
            raise GitParseError(f"no commit found for {sha}")
        return commits[0]

    def merge_base(self, a: str, b: str) -> Optional[str]:
        # exit status 1 with no output means unrelated histories
        res = self._run(["merge-base", a, b], ok_codes=(0, 1))
        base = res.stdout.strip()
        if res.code == 1 and not base:
            logger.debug("no merge base between %s and %s", short_sha(a), short_sha(b))
            return None
        return _check_sha(base, "merge base")

    def diff_stat(self, old: str, new: str) -> DiffStat:
        out = self._output(["diff", "--no-color", "--stat", "-M", old, new, "--"])
        return parse_diff_stat(out)

    def diff_patch(self, sha: str) -> CommitPatch:
        out = self._output(["log", "-n1", _PATCH_FORMAT, sha, "--"])
        fields = out.split("\x00", 5)
        if len(fields) != 6:
            raise GitParseError(f"malformed commit header for {sha}")
        full, parents, subject, author, date, message = fields
        commit = Commit(
            sha=_check_sha(full, "commit id"),
            parents=parents.split(),
            subject=subject,
        )
        if commit.is_merge:
            # combined diff: only the hunks the merge itself resolved
            diff_args = ["diff-tree", "--no-color", "--no-commit-id", "--cc", sha]
        else:
            diff_args = [
                "diff-tree", "--no-color", "--no-commit-id", "--root",
                "-M", "--stat", "-p", sha,
            ]
        diff = self._output(diff_args)
        return CommitPatch(
            commit=commit,
            author=author,
            date=date,
            message=message.strip("\n"),
            diff=diff.strip("\n"),
        )

    def branch_heads(self) -> Dict[str, str]:
        """Map of full branch ref name to tip commit id."""
        out = self._output(
            ["for-each-ref", "--format=%(objectname) %(refname)", "refs/heads/"]
        )
        heads: Dict[str, str] = {}
        for line in out.splitlines():
            if not line:
                continue
            sha, sep, ref = line.partition(" ")
            if not sep or not ref:
                raise GitParseError(f"malformed ref line: {line!r}")
            heads[ref] = _check_sha(sha, "branch head")
        return heads

    def object_type(self, sha: str) -> str:
        return self._output(["cat-file", "-t", sha]).strip()

    def peel(self, sha: str) -> str:
        """Dereference tags until a non-tag object is reached."""
        out = self._output(["rev-parse", "--verify", "--quiet", f"{sha}^{{}}"])
        return _check_sha(out.strip(), "peeled object id")

    def tag_message(self, sha: str) -> Optional[str]:
        if self.object_type(sha) != "tag":
            return None
        return parse_tag_message(self._output(["cat-file", "tag", sha]))

    def config_get(self, name: str) -> Optional[str]:
        # exit status 1 means the key is not set
        res = self._run(["config", "--get", name], ok_codes=(0, 1))
        value = res.stdout.strip()
        if res.code == 1:
            return None
        return value
