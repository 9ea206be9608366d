"""
IMAP implementation of EmailSource.

Lists unread messages from the last few days. Message ids are the RFC 5322
Message-ID header (stable across folders); UIDs are only used to act on a
message in the selected folder. Archiving on Gmail removes the Inbox label,
elsewhere the message is moved to `archive_folder`.

imaplib is blocking, so every mailbox call runs in a worker thread.
"""
from __future__ import annotations

import asyncio
import email
import imaplib
import re
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from email.header import decode_header, make_header
from email.message import Message
from email.utils import parsedate_to_datetime
from typing import Dict, Iterator, List, Optional

from bs4 import BeautifulSoup
from loguru import logger

from jobdigest.pipeline.models import EmailMessage

_MESSAGE_ID_RE = re.compile(r"[<>\s]")


def decode_mime_text(value: Optional[str]) -> str:
    if not value:
        return ""
    try:
        return str(make_header(decode_header(value))).strip()
    except Exception:
        return value.strip()


def html_to_text(html: str) -> str:
    """Visible text with link targets kept inline, so apply URLs survive."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    for a in soup.find_all("a", href=True):
        href = a["href"].strip()
        label = a.get_text(" ", strip=True)
        if href.startswith("http"):
            a.replace_with(f"{label} ({href})" if label else href)
    return soup.get_text("\n", strip=True)


def _decode_part(part: Message) -> str:
    payload = part.get_payload(decode=True) or b""
    charset = part.get_content_charset() or "utf-8"
    try:
        return payload.decode(charset, errors="replace")
    except LookupError:
        return payload.decode("utf-8", errors="replace")


def extract_body_text(msg: Message) -> str:
    plain_parts: List[str] = []
    html_parts: List[str] = []
    parts = msg.walk() if msg.is_multipart() else [msg]
    for part in parts:
        ctype = part.get_content_type()
        if "attachment" in str(part.get("Content-Disposition", "")).lower():
            continue
        if ctype == "text/html":
            html_parts.append(html_to_text(_decode_part(part)))
        elif ctype == "text/plain":
            plain_parts.append(_decode_part(part))
    # HTML alert mails usually carry the links; prefer it when present.
    html_text = "\n".join(p for p in html_parts if p)
    plain_text = "\n".join(p for p in plain_parts if p)
    return html_text or plain_text


def message_key(msg: Message, uid: str) -> str:
    raw = msg.get("Message-ID") or msg.get("Message-Id") or ""
    key = _MESSAGE_ID_RE.sub("", raw)
    return key or f"uid-{uid}"


def parse_message(uid: str, raw: bytes) -> EmailMessage:
    msg = email.message_from_bytes(raw)
    received_at = None
    date_raw = msg.get("Date")
    if date_raw:
        try:
            received_at = parsedate_to_datetime(date_raw).astimezone(timezone.utc)
        except (TypeError, ValueError):
            received_at = None
    return EmailMessage(
        id=message_key(msg, uid),
        subject=decode_mime_text(msg.get("Subject")),
        sender=decode_mime_text(msg.get("From")),
        body=extract_body_text(msg),
        received_at=received_at,
    )


class ImapEmailSource:
    def __init__(
        self,
        host: str,
        username: str,
        password: str,
        *,
        port: int = 993,
        folder: str = "INBOX",
        lookback_days: int = 3,
        max_messages: int = 100,
        timeout_sec: float = 30.0,
        archive_folder: Optional[str] = None,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.folder = folder
        self.lookback_days = lookback_days
        self.max_messages = max_messages
        self.timeout_sec = timeout_sec
        self.archive_folder = archive_folder
        self._uids: Dict[str, str] = {}

    @classmethod
    def from_settings(cls, s) -> "ImapEmailSource":
        return cls(
            s.imap_host,
            s.imap_username or "",
            s.imap_password or "",
            port=s.imap_port,
            folder=s.imap_folder,
            lookback_days=s.imap_lookback_days,
            max_messages=s.imap_max_messages,
            timeout_sec=s.imap_timeout_sec,
            archive_folder=s.imap_archive_folder,
        )

    @property
    def is_gmail(self) -> bool:
        return "gmail" in self.host.lower() or "googlemail" in self.host.lower()

    @contextmanager
    def _mailbox(self) -> Iterator[imaplib.IMAP4_SSL]:
        if not (self.username and self.password):
            raise RuntimeError("IMAP credentials missing (JOBDIGEST_IMAP_USERNAME / JOBDIGEST_IMAP_PASSWORD)")
        mail = imaplib.IMAP4_SSL(self.host, self.port, timeout=self.timeout_sec)
        try:
            mail.login(self.username, self.password)
            status, _ = mail.select(self.folder)
            if status != "OK":
                raise RuntimeError(f"Cannot select IMAP folder {self.folder!r}")
            yield mail
        finally:
            try:
                mail.logout()
            except (imaplib.IMAP4.error, OSError):
                pass

    # -------------------------
    # Blocking implementations
    # -------------------------

    def _list_recent_sync(self) -> List[EmailMessage]:
        since = (datetime.now(timezone.utc) - timedelta(days=self.lookback_days)).strftime("%d-%b-%Y")
        out: List[EmailMessage] = []
        with self._mailbox() as mail:
            status, data = mail.uid("SEARCH", None, "UNSEEN", "SINCE", since)
            if status != "OK":
                raise RuntimeError(f"IMAP search failed: {status}")
            uids = [u.decode() for u in (data[0] or b"").split()]
            if len(uids) > self.max_messages:
                uids = uids[-self.max_messages :]
            for uid in uids:
                # BODY.PEEK leaves \Seen untouched until we decide
                f_status, fetched = mail.uid("FETCH", uid, "(BODY.PEEK[])")
                if f_status != "OK" or not fetched or not isinstance(fetched[0], tuple):
                    logger.warning("IMAP fetch failed for uid={}", uid)
                    continue
                parsed = parse_message(uid, fetched[0][1])
                self._uids[parsed.id] = uid
                out.append(parsed)
        return out

    def _resolve_uid(self, mail: imaplib.IMAP4_SSL, message_id: str) -> str:
        uid = self._uids.get(message_id)
        if uid:
            return uid
        if message_id.startswith("uid-"):
            return message_id[4:]
        status, data = mail.uid("SEARCH", None, "HEADER", "Message-ID", f"<{message_id}>")
        found = (data[0] or b"").split() if status == "OK" else []
        if not found:
            raise KeyError(f"Message {message_id} not found in {self.folder}")
        return found[-1].decode()

    def _mark_read_sync(self, message_id: str) -> None:
        with self._mailbox() as mail:
            uid = self._resolve_uid(mail, message_id)
            status, _ = mail.uid("STORE", uid, "+FLAGS", "(\\Seen)")
            if status != "OK":
                raise RuntimeError(f"IMAP STORE \\Seen failed for {message_id}")

    def _archive_sync(self, message_id: str) -> None:
        with self._mailbox() as mail:
            uid = self._resolve_uid(mail, message_id)
            status, _ = mail.uid("STORE", uid, "+FLAGS", "(\\Seen)")
            if status != "OK":
                raise RuntimeError(f"IMAP STORE \\Seen failed for {message_id}")
            if self.is_gmail:
                status, _ = mail.uid("STORE", uid, "-X-GM-LABELS", "(\\Inbox)")
            elif self.archive_folder:
                status, _ = mail.uid("COPY", uid, self.archive_folder)
                if status == "OK":
                    mail.uid("STORE", uid, "+FLAGS", "(\\Deleted)")
                    mail.expunge()
            else:
                raise RuntimeError("No archive folder configured for non-Gmail IMAP server")
            if status != "OK":
                raise RuntimeError(f"IMAP archive failed for {message_id}")
        self._uids.pop(message_id, None)

    # -------------------------
    # EmailSource interface
    # -------------------------

    async def list_recent(self) -> List[EmailMessage]:
        messages = await asyncio.to_thread(self._list_recent_sync)
        logger.info("IMAP: {} unread messages in the last {} days", len(messages), self.lookback_days)
        return messages

    async def mark_read(self, message_id: str) -> None:
        await asyncio.to_thread(self._mark_read_sync, message_id)

    async def mark_read_and_archive(self, message_id: str) -> None:
        await asyncio.to_thread(self._archive_sync, message_id)
