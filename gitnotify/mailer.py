"""
Delivery Layer - Hand finished notifications to a sink.

``OutputSink`` prints header lines and body to a stream; ``SendmailSink``
builds a MIME message and pipes it to ``sendmail -oi -t``.
"""

from __future__ import annotations

import logging
import os
import subprocess
import sys
from email.message import EmailMessage
from typing import Optional, Sequence, TextIO

from pygments import highlight
from pygments.formatters import HtmlFormatter
from pygments.lexers import DiffLexer

from .config import NotifyConfig
from .notifier import NotificationMessage

logger = logging.getLogger(__name__)

SENDMAIL_CANDIDATES = ("/usr/sbin/sendmail", "/usr/lib/sendmail")


class DeliveryError(Exception):
    """Exception raised when a notification cannot be handed off."""
    pass


def render_html(body: str) -> str:
    return highlight(
        body, DiffLexer(), HtmlFormatter(full=True, noclasses=True, nobackground=True)
    )


def build_email(
    message: NotificationMessage,
    recipients: Sequence[str],
    sender: Optional[str] = None,
    html: bool = False,
) -> EmailMessage:
    msg = EmailMessage()
    if sender:
        msg["From"] = sender
    msg["To"] = ", ".join(recipients)
    msg["Subject"] = message.subject
    for name, value in message.headers.items():
        msg[name] = value
    msg.set_content(message.body)
    if html:
        msg.add_alternative(render_html(message.body), subtype="html")
    return msg


class OutputSink:
    """Print notifications instead of mailing them.

    Consecutive messages are separated by a line of '=' characters.
    """

    SEPARATOR = "=" * 75 + "\n"

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream or sys.stdout
        self.delivered = 0

    def deliver(self, message: NotificationMessage) -> None:
        if self.delivered:
            self.stream.write(self.SEPARATOR)
        self.stream.write(message.as_text())
        if not message.body.endswith("\n"):
            self.stream.write("\n")
        self.delivered += 1
        self.stream.flush()


def find_sendmail() -> str:
    for path in SENDMAIL_CANDIDATES:
        if os.access(path, os.X_OK):
            return path
    raise DeliveryError("no sendmail executable found; use --sendmail")


class SendmailSink:
    """Pipe notifications to a sendmail compatible program."""

    def __init__(
        self,
        recipients: Sequence[str],
        command: Optional[Sequence[str]] = None,
        sender: Optional[str] = None,
        html: bool = False,
    ):
        if not recipients:
            raise DeliveryError("no mail recipients configured")
        self.recipients = list(recipients)
        if command:
            self.command = list(command)
        else:
            self.command = [find_sendmail(), "-oi", "-t"]
            if sender:
                self.command.extend(["-f", sender])
        self.sender = sender
        self.html = html

    def deliver(self, message: NotificationMessage) -> None:
        msg = build_email(message, self.recipients, self.sender, self.html)
        try:
            proc = subprocess.run(
                self.command,
                input=msg.as_bytes(),
                capture_output=True,
                check=False,
            )
        except OSError as e:
            raise DeliveryError(f"cannot execute {' '.join(self.command)}: {e}")
        if proc.returncode != 0:
            err = proc.stderr.decode("utf-8", "replace").strip()
            raise DeliveryError(
                f"{' '.join(self.command)} failed with exit code {proc.returncode}: {err}"
            )
        logger.info("mailed %r to %s", message.subject, ", ".join(self.recipients))


def make_sink(config: NotifyConfig, stream: Optional[TextIO] = None):
    if config.wants_mail:
        return SendmailSink(
            config.recipients,
            command=config.sendmail,
            sender=config.sender,
            html=config.html,
        )
    return OutputSink(stream)
