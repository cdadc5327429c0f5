"""
Configuration Layer - Explicit settings for one hook invocation.

Values come from the command line first, then from ``notify.*`` keys in
the repository's git config, then from the defaults below.
"""

from __future__ import annotations

import argparse
import logging
import shlex
from dataclasses import dataclass
from typing import Optional, Tuple

from .core import paths
from .core.git import GitRepo

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "GIT"
DEFAULT_MAX_SIZE = 10000
RECENT_COMMITS = 20

CONFIG_SECTION = "notify"


class ConfigError(Exception):
    """Exception raised for invalid configuration values."""
    pass


@dataclass(frozen=True)
class NotifyConfig:
    recipients: Tuple[str, ...] = ()
    subject_prefix: str = DEFAULT_PREFIX
    max_size: int = DEFAULT_MAX_SIZE
    repo_name: str = ""
    sender: Optional[str] = None
    sendmail: Optional[Tuple[str, ...]] = None
    stdout: bool = False
    html: bool = False
    recent_count: int = RECENT_COMMITS

    @property
    def wants_mail(self) -> bool:
        return bool(self.recipients) and not self.stdout


def parse_size(value: str, source: str) -> int:
    try:
        size = int(value)
    except ValueError:
        raise ConfigError(f"{source}: not a number: {value!r}")
    if size < 0:
        raise ConfigError(f"{source}: must not be negative: {size}")
    return size


def _git_setting(repo: GitRepo, key: str) -> Optional[str]:
    value = repo.config_get(f"{CONFIG_SECTION}.{key}")
    if value is not None:
        logger.debug("git config %s.%s = %r", CONFIG_SECTION, key, value)
    return value


def load_config(args: argparse.Namespace, repo: GitRepo) -> NotifyConfig:
    recipients = tuple(args.mail or ())
    if not recipients:
        configured = _git_setting(repo, "mailinglist")
        if configured:
            recipients = tuple(a.strip() for a in configured.split(",") if a.strip())

    prefix = args.prefix
    if prefix is None:
        prefix = _git_setting(repo, "prefix")
    if prefix is None:
        prefix = DEFAULT_PREFIX

    if args.max_size is not None:
        max_size = args.max_size
    else:
        configured = _git_setting(repo, "maxsize")
        max_size = (
            parse_size(configured, f"{CONFIG_SECTION}.maxsize")
            if configured is not None
            else DEFAULT_MAX_SIZE
        )

    name = args.repo or _git_setting(repo, "repo")
    if not name:
        git_dir = args.git_dir or paths.git_dir(repo)
        name = paths.repo_name(git_dir) if git_dir else ""

    sender = args.sender or _git_setting(repo, "from")
    sendmail = tuple(shlex.split(args.sendmail)) if args.sendmail else None

    return NotifyConfig(
        recipients=recipients,
        subject_prefix=prefix,
        max_size=max_size,
        repo_name=name,
        sender=sender,
        sendmail=sendmail,
        stdout=bool(args.stdout),
        html=bool(args.html),
    )
