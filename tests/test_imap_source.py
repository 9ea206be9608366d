from __future__ import annotations

from email.message import EmailMessage as MimeMessage

import pytest

from jobdigest.mail import imap_source
from jobdigest.mail.imap_source import ImapEmailSource, html_to_text, parse_message


def _raw_alert() -> bytes:
    msg = MimeMessage()
    msg["Subject"] = "3 new jobs for “data analyst”"
    msg["From"] = "LinkedIn Job Alerts <jobalerts-noreply@linkedin.com>"
    msg["Message-ID"] = "<alert-1@linkedin.com>"
    msg["Date"] = "Mon, 02 Mar 2026 09:15:00 +0800"
    msg.set_content("Plain fallback")
    msg.add_alternative(
        '<html><body><p>Data Analyst at Acme</p>'
        '<a href="https://www.linkedin.com/jobs/view/123">View job</a>'
        "<script>track()</script></body></html>",
        subtype="html",
    )
    return msg.as_bytes()


def test_parse_message_prefers_html_and_keeps_links():
    parsed = parse_message("17", _raw_alert())

    assert parsed.id == "alert-1@linkedin.com"
    assert parsed.subject == "3 new jobs for “data analyst”"
    assert parsed.sender.startswith("LinkedIn Job Alerts")
    assert "View job (https://www.linkedin.com/jobs/view/123)" in parsed.body
    assert "track()" not in parsed.body
    assert parsed.received_at.hour == 1


def test_message_without_id_falls_back_to_uid():
    msg = MimeMessage()
    msg["Subject"] = "hi"
    msg.set_content("text only")
    parsed = parse_message("99", msg.as_bytes())
    assert parsed.id == "uid-99"
    assert parsed.body.strip() == "text only"


def test_html_to_text_drops_styles():
    assert html_to_text("<style>p{}</style><p>Hello</p>") == "Hello"


class FakeImap:
    def __init__(self, messages):
        self.messages = messages
        self.commands = []

    def login(self, user, password):
        self.commands.append(("LOGIN", user))

    def select(self, folder):
        self.commands.append(("SELECT", folder))
        return "OK", [b"1"]

    def uid(self, command, *args):
        self.commands.append((command, *args))
        if command == "SEARCH":
            return "OK", [b" ".join(uid.encode() for uid in self.messages)]
        if command == "FETCH":
            return "OK", [(b"1 (BODY[] {100}", self.messages[args[0]])]
        return "OK", [None]

    def expunge(self):
        self.commands.append(("EXPUNGE",))

    def logout(self):
        self.commands.append(("LOGOUT",))


@pytest.mark.asyncio
async def test_list_and_archive_on_gmail(monkeypatch):
    fake = FakeImap({"17": _raw_alert()})
    monkeypatch.setattr(imap_source.imaplib, "IMAP4_SSL", lambda host, port, timeout=None: fake)
    source = ImapEmailSource("imap.gmail.com", "me@gmail.com", "app-password")

    (message,) = await source.list_recent()
    await source.mark_read_and_archive(message.id)

    search = next(c for c in fake.commands if c[0] == "SEARCH")
    assert search[2:4] == ("UNSEEN", "SINCE")
    assert ("FETCH", "17", "(BODY.PEEK[])") in fake.commands
    assert ("STORE", "17", "+FLAGS", "(\\Seen)") in fake.commands
    assert ("STORE", "17", "-X-GM-LABELS", "(\\Inbox)") in fake.commands


@pytest.mark.asyncio
async def test_archive_moves_to_folder_elsewhere(monkeypatch):
    fake = FakeImap({"5": _raw_alert()})
    monkeypatch.setattr(imap_source.imaplib, "IMAP4_SSL", lambda host, port, timeout=None: fake)
    source = ImapEmailSource("imap.example.org", "me", "pw", archive_folder="Archive")

    await source.mark_read_and_archive("uid-5")

    assert ("COPY", "5", "Archive") in fake.commands
    assert ("EXPUNGE",) in fake.commands


@pytest.mark.asyncio
async def test_missing_credentials_fail_loudly():
    source = ImapEmailSource("imap.gmail.com", "", "")
    with pytest.raises(RuntimeError):
        await source.list_recent()
