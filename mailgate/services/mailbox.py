"""Inbound mailbox access.

``MailTransport`` is the seam to the mail source; ``ImapMailTransport`` is the
production implementation. ``MailboxPoller`` fetches one batch of unseen
candidate replies per call and marks a message seen only when the caller
acknowledges it, so a message is delivered at least once.
"""

import imaplib
import logging
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from mailgate.core.approval.parser import TOKEN_MARKER_PREFIX, RawMessage
from mailgate.core.config import Settings
from mailgate.core.exceptions import MailboxUnavailableError

logger = logging.getLogger(__name__)

# Errors that mean "the mailbox is not reachable right now"
TRANSPORT_ERRORS = (imaplib.IMAP4.error, OSError, EOFError)


class MailTransport(ABC):
    """Session with an inbound mail source."""

    @abstractmethod
    def connect(self) -> None:
        """Open and authenticate the session."""

    @abstractmethod
    def list_unseen(self, subject_filter: Optional[str] = None) -> List[RawMessage]:
        """Return unseen messages, optionally only those whose subject contains ``subject_filter``."""

    @abstractmethod
    def mark_seen(self, uid: str) -> None:
        """Flag a message as handled."""

    @abstractmethod
    def close(self) -> None:
        """Release the session; must be safe to call more than once."""


class ImapMailTransport(MailTransport):
    """IMAP transport using UID commands and ``BODY.PEEK`` so fetching never marks mail seen."""

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        *,
        use_ssl: bool = True,
        folder: str = "INBOX",
        timeout: int = 30,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_ssl = use_ssl
        self.folder = folder
        self.timeout = timeout
        self._conn: Optional[imaplib.IMAP4] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "ImapMailTransport":
        if not settings.mailbox_configured:
            raise MailboxUnavailableError("Mailbox not configured")
        return cls(
            host=settings.imap_host,
            port=settings.imap_port,
            username=settings.imap_username,
            password=settings.imap_secret,
            use_ssl=settings.imap_use_ssl,
            folder=settings.imap_folder,
            timeout=settings.imap_timeout,
        )

    def connect(self) -> None:
        if self.use_ssl:
            conn = imaplib.IMAP4_SSL(self.host, self.port, timeout=self.timeout)
        else:
            conn = imaplib.IMAP4(self.host, self.port, timeout=self.timeout)
        try:
            conn.login(self.username, self.password)
            status, _ = conn.select(self.folder)
            if status != "OK":
                raise imaplib.IMAP4.error(f"Cannot select folder {self.folder}")
        except Exception:
            conn.shutdown()
            raise
        self._conn = conn

    def list_unseen(self, subject_filter: Optional[str] = None) -> List[RawMessage]:
        conn = self._require_connection()
        criteria = ["UNSEEN"]
        if subject_filter:
            criteria += ["SUBJECT", f'"{subject_filter}"']
        status, data = conn.uid("SEARCH", None, *criteria)
        if status != "OK":
            raise imaplib.IMAP4.error(f"SEARCH failed: {status}")

        messages = []
        for uid in (data[0] or b"").split():
            uid_text = uid.decode()
            status, fetched = conn.uid("FETCH", uid_text, "(BODY.PEEK[])")
            if status != "OK":
                raise imaplib.IMAP4.error(f"FETCH {uid_text} failed: {status}")
            raw = next((part[1] for part in fetched if isinstance(part, tuple)), None)
            if raw is None:
                logger.warning("Message %s vanished before it could be fetched", uid_text)
                continue
            messages.append(RawMessage.from_bytes(uid_text, raw))
        return messages

    def mark_seen(self, uid: str) -> None:
        conn = self._require_connection()
        status, _ = conn.uid("STORE", uid, "+FLAGS", "(\\Seen)")
        if status != "OK":
            raise imaplib.IMAP4.error(f"STORE {uid} failed: {status}")

    def close(self) -> None:
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        try:
            conn.close()
            conn.logout()
        except TRANSPORT_ERRORS:
            logger.debug("Ignoring error while closing IMAP session", exc_info=True)

    def _require_connection(self) -> imaplib.IMAP4:
        if self._conn is None:
            raise imaplib.IMAP4.error("Not connected")
        return self._conn


class MailboxPoller:
    """
    Fetches candidate replies from the mailbox, one batch per call.

    Every transport failure surfaces as ``MailboxUnavailableError``.
    """

    def __init__(
        self,
        transport_factory: Callable[[], MailTransport],
        *,
        subject_filter: Optional[str] = TOKEN_MARKER_PREFIX,
    ):
        self.transport_factory = transport_factory
        self.subject_filter = subject_filter
        self._transport: Optional[MailTransport] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "MailboxPoller":
        return cls(lambda: ImapMailTransport.from_settings(settings))

    def fetch_new_messages(self) -> List[RawMessage]:
        """Connect if needed and return unseen candidate messages."""
        try:
            if self._transport is None:
                transport = self.transport_factory()
                transport.connect()
                self._transport = transport
            messages = self._transport.list_unseen(self.subject_filter)
        except MailboxUnavailableError:
            self.close()
            raise
        except TRANSPORT_ERRORS as exc:
            self.close()
            raise MailboxUnavailableError(str(exc) or exc.__class__.__name__, cause=exc) from exc

        logger.debug("Fetched %d candidate message(s)", len(messages))
        return messages

    def acknowledge(self, message: RawMessage) -> None:
        """Mark a message seen after its decision reached a definitive result."""
        if self._transport is None:
            raise MailboxUnavailableError("Mailbox session is not open")
        try:
            self._transport.mark_seen(message.uid)
        except TRANSPORT_ERRORS as exc:
            raise MailboxUnavailableError(
                f"Could not mark message {message.uid} seen: {exc}", cause=exc
            ) from exc

    def close(self) -> None:
        if self._transport is not None:
            transport, self._transport = self._transport, None
            try:
                transport.close()
            except TRANSPORT_ERRORS:
                logger.debug("Ignoring error while closing mailbox", exc_info=True)
