from __future__ import annotations

import argparse
import logging
import sys
from typing import Iterable, List, Optional, TextIO

from gitnotify.config import ConfigError, load_config, parse_size
from gitnotify.core.git import GitError, GitRepo
from gitnotify.mailer import DeliveryError, make_sink
from gitnotify.notifier import RefUpdate, RefUpdateNotifier

logger = logging.getLogger("gitnotify")


class UsageError(Exception):
    """Exception raised for malformed ref update input."""
    pass


def _die(msg: str) -> None:
    print(f"git-notify: {msg}", file=sys.stderr)
    sys.exit(1)


def _size_arg(value: str) -> int:
    try:
        return parse_size(value, "--max-size")
    except ConfigError as exc:
        raise argparse.ArgumentTypeError(str(exc))


def parse_update_lines(lines: Iterable[str]) -> List[RefUpdate]:
    """Parse ``old new ref`` lines as fed to a post-receive hook."""
    updates = []
    for lineno, line in enumerate(lines, 1):
        fields = line.split()
        if not fields:
            continue
        if len(fields) != 3:
            raise UsageError(f"stdin line {lineno}: expected 'old new ref', got {line.strip()!r}")
        old, new, ref = fields
        updates.append(RefUpdate.parse(old, new, ref))
    return updates


def read_updates(args: argparse.Namespace, stdin: TextIO) -> List[RefUpdate]:
    if args.update:
        if len(args.update) != 3:
            raise UsageError("expected OLD NEW REF or ref updates on stdin")
        old, new, ref = args.update
        return [RefUpdate.parse(old, new, ref)]
    return parse_update_lines(stdin)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="git-notify",
        description="Send a notification for each ref updated by a push.",
    )
    parser.add_argument(
        "--version", action="version", version="git-notify 0.1.0"
    )
    parser.add_argument(
        "update", nargs="*", metavar="OLD NEW REF",
        help="a single ref update; read 'old new ref' lines from stdin when omitted",
    )
    parser.add_argument(
        "-m", "--mail", action="append", metavar="ADDR",
        help="send mail to ADDR (repeatable); print to stdout when no address is known",
    )
    parser.add_argument("-p", "--prefix", help="subject prefix (default GIT)")
    parser.add_argument(
        "-s", "--max-size", type=_size_arg, metavar="BYTES",
        help="largest body sent with diffs; 0 for no limit (default 10000)",
    )
    parser.add_argument("-r", "--repo", help="repository name used in subjects and headers")
    parser.add_argument("-d", "--git-dir", help="repository to inspect (default: from git)")
    parser.add_argument("-f", "--from", dest="sender", metavar="ADDR", help="sender address")
    parser.add_argument("--sendmail", metavar="CMD", help="mail program (default sendmail -oi -t)")
    parser.add_argument("--stdout", action="store_true", help="print even when recipients are known")
    parser.add_argument("--html", action="store_true", help="add an HTML part with highlighted diffs")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging on stderr")
    return parser


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="git-notify: %(levelname)s: %(message)s",
        stream=sys.stderr,
    )


def run_notify(
    args: argparse.Namespace,
    stdin: Optional[TextIO] = None,
    stdout: Optional[TextIO] = None,
) -> int:
    updates = read_updates(args, stdin or sys.stdin)
    if not updates:
        logger.debug("no ref updates given")
        return 0
    repo = GitRepo(args.git_dir)
    config = load_config(args, repo)
    notifier = RefUpdateNotifier(repo, config)
    sink = None
    for update in updates:
        message = notifier.notify(update)
        if message is None:
            continue
        if sink is None:
            sink = make_sink(config, stdout)
        sink.deliver(message)
    return 0


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)
    try:
        code = run_notify(args)
    except UsageError as exc:
        parser.print_usage(sys.stderr)
        _die(str(exc))
    except (GitError, ConfigError, DeliveryError) as exc:
        logger.debug("fatal error", exc_info=True)
        _die(str(exc))
    else:
        sys.exit(code)


if __name__ == "__main__":
    main()
