"""
Tests for notification delivery.
"""

import io
import shutil
from email import message_from_bytes

import pytest

from gitnotify.config import NotifyConfig
from gitnotify.mailer import (
    DeliveryError,
    OutputSink,
    SendmailSink,
    build_email,
    make_sink,
    render_html,
)
from gitnotify.notifier import NotificationMessage


@pytest.fixture
def message():
    return NotificationMessage(
        subject="[GIT] project: master: Fix the frobnicator",
        headers={
            "X-Git-Repo": "project",
            "X-Git-Refname": "refs/heads/master",
            "X-Git-Old-SHA": "a" * 40,
            "X-Git-New-SHA": "b" * 40,
            "X-Git-Branch": "master",
        },
        body="Repository: project\n\ndiff --git a/x b/x\n-old\n+new\n",
    )


class TestBuildEmail:
    """Tests for MIME message construction."""

    def test_headers_and_body(self, message):
        msg = build_email(message, ["a@example.com", "b@example.com"], sender="git@example.com")
        assert msg["To"] == "a@example.com, b@example.com"
        assert msg["From"] == "git@example.com"
        assert msg["Subject"] == message.subject
        assert msg["X-Git-Branch"] == "master"
        assert msg["X-Git-New-SHA"] == "b" * 40
        assert "+new" in msg.get_content()

    def test_html_alternative(self, message):
        msg = build_email(message, ["a@example.com"], html=True)
        assert msg.get_content_type() == "multipart/alternative"
        types = [part.get_content_type() for part in msg.iter_parts()]
        assert types == ["text/plain", "text/html"]

    def test_render_html(self):
        html = render_html("+added\n-removed\n")
        assert html.startswith("<!DOCTYPE html")
        assert "added" in html


class TestOutputSink:
    """Tests for printing notifications."""

    def test_prints_headers_then_body(self, message):
        stream = io.StringIO()
        OutputSink(stream).deliver(message)
        text = stream.getvalue()
        assert text.startswith("Subject: [GIT] project: master: Fix the frobnicator\n")
        assert "X-Git-Old-SHA: " + "a" * 40 + "\n" in text
        assert text.endswith("\n\nRepository: project\n\ndiff --git a/x b/x\n-old\n+new\n")

    def test_separates_consecutive_messages(self, message):
        second = NotificationMessage(subject="two", headers={}, body="body two")
        stream = io.StringIO()
        sink = OutputSink(stream)
        sink.deliver(message)
        sink.deliver(second)

        first_text, second_text = stream.getvalue().split(OutputSink.SEPARATOR)
        assert first_text == message.as_text()
        assert second_text == "Subject: two\n\nbody two\n"


class TestSendmailSink:
    """Tests for piping mail to a sendmail compatible program."""

    def test_pipes_message(self, message, tmp_path):
        if shutil.which("sh") is None:
            pytest.skip("sh is not available")
        out = tmp_path / "mail.eml"
        sink = SendmailSink(["a@example.com"], command=["sh", "-c", f"cat > '{out}'"])
        sink.deliver(message)

        mail = message_from_bytes(out.read_bytes())
        assert mail["Subject"] == message.subject
        assert mail["X-Git-Refname"] == "refs/heads/master"

    def test_sender_is_passed_to_default_program(self, monkeypatch):
        monkeypatch.setattr("gitnotify.mailer.find_sendmail", lambda: "/usr/sbin/sendmail")
        sink = SendmailSink(["a@example.com"], sender="git@example.com")
        assert sink.command == ["/usr/sbin/sendmail", "-oi", "-t", "-f", "git@example.com"]

    def test_custom_program_is_left_alone(self):
        sink = SendmailSink(["a@example.com"], command=["/usr/bin/msmtp", "-t"], sender="git@example.com")
        assert sink.command == ["/usr/bin/msmtp", "-t"]
        assert sink.sender == "git@example.com"

    def test_failing_program(self, message):
        if shutil.which("false") is None:
            pytest.skip("false is not available")
        sink = SendmailSink(["a@example.com"], command=["false"])
        with pytest.raises(DeliveryError):
            sink.deliver(message)

    def test_missing_program(self, message, tmp_path):
        sink = SendmailSink(["a@example.com"], command=[str(tmp_path / "no-such-sendmail")])
        with pytest.raises(DeliveryError):
            sink.deliver(message)

    def test_requires_recipients(self):
        with pytest.raises(DeliveryError):
            SendmailSink([], command=["/bin/true"])


class TestMakeSink:
    """Tests for choosing a sink from the configuration."""

    def test_stdout_without_recipients(self):
        assert isinstance(make_sink(NotifyConfig()), OutputSink)

    def test_stdout_forced(self):
        config = NotifyConfig(recipients=("a@example.com",), stdout=True)
        assert isinstance(make_sink(config), OutputSink)

    def test_mail_with_recipients(self):
        config = NotifyConfig(recipients=("a@example.com",), sendmail=("/bin/true",), html=True)
        sink = make_sink(config)
        assert isinstance(sink, SendmailSink)
        assert sink.command == ["/bin/true"]
        assert sink.html
