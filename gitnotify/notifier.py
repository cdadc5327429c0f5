"""
Notification Layer - Classify ref updates and render push notifications.

A push is a list of (old, new, ref) updates. Each update is classified
(branch created/deleted/fast-forward/rewound/rebased, tag
created/changed/deleted) and rendered into a subject, a set of X-Git-*
headers and a plain text body whose size is bounded by ``max_size``.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from .config import NotifyConfig
from .core.git import Commit, GitRepo
from .core.util import indent_lines, is_zero, short_sha, short_text

logger = logging.getLogger(__name__)

BRANCH = "branch"
TAG = "tag"
OTHER = "other"

BRANCH_PREFIX = "refs/heads/"
TAG_PREFIX = "refs/tags/"

# classification kinds
CREATED = "created"
COPIED = "copied"
DELETED = "deleted"
FAST_FORWARD = "fast-forward"
REWOUND = "rewound"
REBASED = "rebased"
TAG_CREATED = "tag-created"
TAG_CHANGED = "tag-changed"
TAG_DELETED = "tag-deleted"

# "Merge branch 'x' of url into y" as written by git merge / git pull.
# Heuristic; only used to pick a subject.
MERGE_SUBJECT_RE = re.compile(r"^Merge branch '([^']+)'(?: of (\S+))?(?: into (\S+))?$")

SEPARATOR = "-" * 72
SUBJECT_MAX_CHARS = 100


@dataclass(frozen=True)
class RefUpdate:
    ref: str
    ref_type: str
    old: str
    new: str

    @classmethod
    def parse(cls, old: str, new: str, ref: str) -> "RefUpdate":
        if ref.startswith(BRANCH_PREFIX):
            ref_type = BRANCH
        elif ref.startswith(TAG_PREFIX):
            ref_type = TAG
        else:
            ref_type = OTHER
        return cls(ref=ref, ref_type=ref_type, old=old, new=new)

    @property
    def short_name(self) -> str:
        for prefix in (BRANCH_PREFIX, TAG_PREFIX):
            if self.ref.startswith(prefix):
                return self.ref[len(prefix):]
        return self.ref

    @property
    def is_create(self) -> bool:
        return is_zero(self.old)

    @property
    def is_delete(self) -> bool:
        return is_zero(self.new)

    @property
    def is_noop(self) -> bool:
        return self.old == self.new


@dataclass(frozen=True)
class Classification:
    kind: str
    merge_base: Optional[str] = None
    copy_of: Optional[str] = None
    branch: Optional[str] = None


@dataclass
class NotificationMessage:
    subject: str
    headers: Dict[str, str]
    body: str
    truncated: bool = False

    def as_text(self) -> str:
        lines = [f"Subject: {self.subject}"]
        lines += [f"{name}: {value}" for name, value in self.headers.items()]
        return "\n".join(lines) + "\n\n" + self.body


@dataclass
class _Draft:
    """What a renderer produces before the size policy is applied."""
    title: str
    sections: List[str] = field(default_factory=list)
    commits: List[Commit] = field(default_factory=list)


def merge_of_current_branch(commit: Commit, branch: str) -> bool:
    if not commit.is_merge:
        return False
    m = MERGE_SUBJECT_RE.match(commit.subject)
    if not m:
        return False
    return branch in (m.group(1), m.group(3))


def fast_forward_subject(commits: List[Commit], branch: str) -> str:
    """Pick one line that best summarizes a list of new commits.

    A tip that just merges the current branch (typically a pull of the
    remote copy of it) is used verbatim; otherwise the first non-merge
    commit wins, falling back to the first merge.
    """
    if not commits:
        return "Updated branch"
    tip = commits[-1]
    if merge_of_current_branch(tip, branch):
        return tip.subject
    for commit in commits:
        if not commit.is_merge:
            return commit.subject
    return commits[0].subject


def _commit_list(commits: Iterable[Commit]) -> str:
    return indent_lines(c.oneline() for c in commits)


class RefUpdateNotifier:
    """Turns ref updates into notification messages."""

    def __init__(self, repo: GitRepo, config: NotifyConfig):
        self.repo = repo
        self.config = config

    # -- classification -------------------------------------------------

    def classify(self, update: RefUpdate) -> Classification:
        if update.ref_type == BRANCH:
            return self._classify_branch(update)
        if update.ref_type == TAG:
            return self._classify_tag(update)
        raise ValueError(f"unsupported ref type for {update.ref}")

    def _classify_branch(self, update: RefUpdate) -> Classification:
        if update.is_create:
            other = self._branch_at(update.new, exclude=update.ref)
            if other:
                return Classification(COPIED, copy_of=other)
            return Classification(CREATED)
        if update.is_delete:
            return Classification(DELETED)
        base = self.repo.merge_base(update.old, update.new)
        if base == update.old:
            return Classification(FAST_FORWARD, merge_base=base)
        if base == update.new:
            return Classification(REWOUND, merge_base=base)
        return Classification(REBASED, merge_base=base)

    def _classify_tag(self, update: RefUpdate) -> Classification:
        if update.is_delete:
            return Classification(TAG_DELETED)
        branch = self._branch_at(self.repo.peel(update.new))
        kind = TAG_CREATED if update.is_create else TAG_CHANGED
        return Classification(kind, branch=branch)

    def _branch_at(self, sha: str, exclude: Optional[str] = None) -> Optional[str]:
        """Short name of a branch whose head is ``sha``, if any."""
        matches = sorted(
            ref for ref, head in self.repo.branch_heads().items()
            if head == sha and ref != exclude
        )
        if not matches:
            return None
        return matches[0][len(BRANCH_PREFIX):]

    # -- rendering ------------------------------------------------------

    def notify(self, update: RefUpdate) -> Optional[NotificationMessage]:
        if update.is_noop:
            logger.debug("%s unchanged, nothing to report", update.ref)
            return None
        if update.ref_type == OTHER:
            logger.warning("skipping %s: neither a branch nor a tag", update.ref)
            return None
        if update.is_create and update.is_delete:
            logger.warning("skipping %s: both old and new are missing", update.ref)
            return None

        cls = self.classify(update)
        logger.debug("%s classified as %s", update.ref, cls.kind)
        renderer = getattr(self, "_render_" + cls.kind.replace("-", "_"))
        draft = renderer(update, cls)
        return self._finish(update, draft)

    def _finish(self, update: RefUpdate, draft: _Draft) -> NotificationMessage:
        header = self._header_section(update)
        body = header + "\n\n" + "\n\n".join(draft.sections) + "\n"
        truncated = False
        size = len(body.encode("utf-8"))
        limit = self.config.max_size
        if limit and size > limit:
            logger.info(
                "%s: body is %d bytes, over the %d byte limit; sending summary",
                update.ref, size, limit,
            )
            body = header + "\n\n" + self._summary(draft, size, limit) + "\n"
            truncated = True
        return NotificationMessage(
            subject=self._subject(update, draft.title),
            headers=self._headers(update),
            body=body,
            truncated=truncated,
        )

    def _subject(self, update: RefUpdate, title: str) -> str:
        parts = []
        if self.config.subject_prefix:
            parts.append(f"[{self.config.subject_prefix}]")
        if self.config.repo_name:
            parts.append(f"{self.config.repo_name}:")
        parts.append(f"{update.short_name}:")
        parts.append(short_text(title, SUBJECT_MAX_CHARS))
        return " ".join(parts)

    def _headers(self, update: RefUpdate) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        if self.config.repo_name:
            headers["X-Git-Repo"] = self.config.repo_name
        headers["X-Git-Refname"] = update.ref
        headers["X-Git-Old-SHA"] = update.old
        headers["X-Git-New-SHA"] = update.new
        if update.ref_type == BRANCH:
            headers["X-Git-Branch"] = update.short_name
        else:
            headers["X-Git-Tag"] = update.short_name
        return headers

    def _header_section(self, update: RefUpdate) -> str:
        label = "Branch:" if update.ref_type == BRANCH else "Tag:"
        rows = []
        if self.config.repo_name:
            rows.append(("Repository:", self.config.repo_name))
        rows.append((label, update.short_name))
        rows.append(("Old:", "(none)" if update.is_create else update.old))
        rows.append(("New:", "(none)" if update.is_delete else update.new))
        return "\n".join(f"{name:<12}{value}" for name, value in rows)

    def _summary(self, draft: _Draft, size: int, limit: int) -> str:
        notice = f"The full notification is {size} bytes, over the limit of {limit} bytes."
        if not draft.commits:
            return notice + "\nIts content was omitted."
        return (
            notice + "\nOnly the list of commits is shown.\n\n"
            + _commit_list(draft.commits)
        )

    def _recent(self, sha: str) -> List[Commit]:
        return self.repo.list_recent_commits(sha, self.config.recent_count)

    def _render_created(self, update: RefUpdate, cls: Classification) -> _Draft:
        recent = self._recent(update.new)
        return _Draft(
            title="Created branch",
            sections=[
                f"Branch '{update.short_name}' created.",
                "Most recent commits:\n\n" + _commit_list(recent),
            ],
            commits=recent,
        )

    def _render_copied(self, update: RefUpdate, cls: Classification) -> _Draft:
        return _Draft(
            title=f"Created branch as copy of {cls.copy_of}",
            sections=[
                f"Branch '{update.short_name}' created as a copy of "
                f"'{cls.copy_of}' at {short_sha(update.new)}."
            ],
        )

    def _render_deleted(self, update: RefUpdate, cls: Classification) -> _Draft:
        return _Draft(
            title="Deleted branch",
            sections=[
                f"Branch '{update.short_name}' deleted.\n"
                f"It pointed to {update.old}."
            ],
        )

    def _render_fast_forward(self, update: RefUpdate, cls: Classification) -> _Draft:
        commits = self.repo.commits_between(update.old, update.new)
        sections = []
        if len(commits) > 1:
            stat = self.repo.diff_stat(update.old, update.new)
            if stat:
                sections.append(
                    f"Overall diffstat ({len(commits)} commits):\n\n"
                    + "\n".join(stat.lines())
                )
        for commit in commits:
            sections.append(self._commit_section(commit))
        return _Draft(
            title=fast_forward_subject(commits, update.short_name),
            sections=sections,
            commits=commits,
        )

    def _commit_section(self, commit: Commit) -> str:
        patch = self.repo.diff_patch(commit.sha)
        lines = [SEPARATOR, f"commit {patch.commit.sha}"]
        if patch.commit.is_merge:
            lines.append("Merge: " + " ".join(short_sha(p) for p in patch.commit.parents))
        lines.append(f"Author: {patch.author}")
        lines.append(f"Date:   {patch.date}")
        lines.append("")
        lines.append(indent_lines(patch.message.splitlines(), "    "))
        if patch.diff:
            lines.append("")
            lines.append("---")
            lines.append(patch.diff)
        return "\n".join(lines)

    def _render_rewound(self, update: RefUpdate, cls: Classification) -> _Draft:
        recent = self._recent(update.new)
        target = recent[0].oneline() if recent else short_sha(update.new)
        return _Draft(
            title=f"Rewound to {short_sha(update.new)}",
            sections=[
                f"Branch '{update.short_name}' rewound to:\n\n  {target}",
                "Most recent commits:\n\n" + _commit_list(recent),
            ],
            commits=recent,
        )

    def _render_rebased(self, update: RefUpdate, cls: Classification) -> _Draft:
        commits = self.repo.commits_between(update.old, update.new)
        if cls.merge_base:
            onto = f"Branch '{update.short_name}' rebased; common ancestor {short_sha(cls.merge_base)}."
        else:
            onto = f"Branch '{update.short_name}' replaced with an unrelated history."
        return _Draft(
            title=f"Rebased branch ({len(commits)} new commits)",
            sections=[
                onto,
                "Commits on the new branch head:\n\n" + _commit_list(commits),
            ],
            commits=commits,
        )

    def _tag_sections(self, update: RefUpdate, cls: Classification, intro: str) -> List[str]:
        sections = [intro + " " + self._describe_object(update.new) + "."]
        if cls.branch:
            sections.append(f"This is the current head of branch '{cls.branch}'.")
        message = self.repo.tag_message(update.new)
        if message:
            sections.append("Tag message:\n\n" + indent_lines(message.splitlines()))
        return sections

    def _describe_object(self, sha: str) -> str:
        target = self.repo.peel(sha)
        kind = self.repo.object_type(target)
        if kind != "commit":
            return f"{kind} {short_sha(target)}"
        return f"commit {self.repo.commit(target).oneline()}"

    def _tag_title(self, verb: str, cls: Classification) -> str:
        if cls.branch:
            return f"{verb} tag on branch {cls.branch}"
        return f"{verb} tag"

    def _render_tag_created(self, update: RefUpdate, cls: Classification) -> _Draft:
        return _Draft(
            title=self._tag_title("Created", cls),
            sections=self._tag_sections(
                update, cls, f"Tag '{update.short_name}' created, pointing to"
            ),
        )

    def _render_tag_changed(self, update: RefUpdate, cls: Classification) -> _Draft:
        return _Draft(
            title=self._tag_title("Changed", cls),
            sections=self._tag_sections(
                update, cls,
                f"Tag '{update.short_name}' moved from {short_sha(update.old)}, now pointing to",
            ),
        )

    def _render_tag_deleted(self, update: RefUpdate, cls: Classification) -> _Draft:
        return _Draft(
            title="Deleted tag",
            sections=[
                f"Tag '{update.short_name}' deleted.\n"
                f"It pointed to {update.old}."
            ],
        )

    def process(self, updates: Iterable[RefUpdate]) -> List[NotificationMessage]:
        messages = []
        for update in updates:
            message = self.notify(update)
            if message is not None:
                messages.append(message)
        return messages
