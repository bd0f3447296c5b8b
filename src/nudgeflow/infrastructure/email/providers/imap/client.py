from __future__ import annotations

import imaplib
from dataclasses import dataclass
from datetime import datetime
from typing import Mapping, Optional

from loguru import logger
from pydantic import SecretStr

from nudgeflow.application.ports.mail_transport import FetchWindow
from nudgeflow.domain.entities.account import Account
from nudgeflow.domain.entities.email_record import EmailRecord
from nudgeflow.domain.errors import TransportError
from nudgeflow.domain.models import Direction
from nudgeflow.infrastructure.email.providers.imap.mapper import rfc822_to_email_record

_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def imap_date(value: datetime) -> str:
    """IMAP SEARCH date (locale independent), e.g. 05-Mar-2026."""
    return f"{value.day:02d}-{_MONTHS[value.month - 1]}-{value.year}"


def quote_folder(folder: str) -> str:
    if folder.startswith('"') or not any(c in folder for c in ' []'):
        return folder
    return f'"{folder}"'


@dataclass
class ImapConfig:
    host: str = "imap.gmail.com"
    port: int = 993
    inbox_folder: str = "INBOX"
    sent_folder: str = "[Gmail]/Sent Mail"
    timeout: float = 30.0


class ImapMailSource:
    """Read-only IMAP reader for an account's inbox and sent folder."""

    def __init__(self, cfg: ImapConfig, passwords: Mapping[str, SecretStr]) -> None:
        self.cfg = cfg
        self.passwords = passwords

    def _connect(self, account: Account) -> imaplib.IMAP4_SSL:
        password = self.passwords.get(account.account_id)
        if password is None:
            raise TransportError(f"No mailbox password configured for {account.account_id}")
        try:
            conn = imaplib.IMAP4_SSL(self.cfg.host, self.cfg.port, timeout=self.cfg.timeout)
            conn.login(account.mailbox_address, password.get_secret_value())
        except (imaplib.IMAP4.error, OSError) as e:
            raise TransportError(f"IMAP login failed for {account.mailbox_address}: {e}") from e
        return conn

    @staticmethod
    def _disconnect(conn: imaplib.IMAP4_SSL) -> None:
        try:
            conn.logout()
        except (imaplib.IMAP4.error, OSError) as e:
            logger.debug(f"IMAP logout failed: {e}")

    def fetch_inbound(self, account: Account, window: FetchWindow) -> list[EmailRecord]:
        return self.fetch(account, self.cfg.inbox_folder, Direction.INBOUND, window)

    def fetch_outbound(self, account: Account, window: FetchWindow) -> list[EmailRecord]:
        return self.fetch(account, self.cfg.sent_folder, Direction.OUTBOUND, window)

    def fetch(
        self,
        account: Account,
        folder: str,
        direction: Direction,
        window: FetchWindow,
    ) -> list[EmailRecord]:
        """Newest `window.limit` messages in `folder` observed at or after `window.since`."""
        conn = self._connect(account)
        try:
            typ, _ = conn.select(quote_folder(folder), readonly=True)
            if typ != "OK":
                raise TransportError(f"Failed to select folder {folder} for {account.mailbox_address}")

            typ, uids_data = conn.uid("SEARCH", None, f"SINCE {imap_date(window.since)}")
            if typ != "OK":
                raise TransportError(f"UID SEARCH failed in {folder}")

            uids: list[int] = []
            if uids_data and uids_data[0]:
                uids = [int(x) for x in uids_data[0].split()]
            uids = sorted(uids)[-window.limit:] if window.limit else sorted(uids)

            logger.debug(f"{account.account_id}: {len(uids)} candidate message(s) in {folder}")

            records: list[EmailRecord] = []
            for uid in uids:
                record = self._fetch_one(conn, account, uid, direction)
                if record is not None and record.observed_at >= window.since:
                    records.append(record)
            return records
        except (imaplib.IMAP4.error, OSError) as e:
            raise TransportError(f"IMAP fetch failed for {account.mailbox_address}/{folder}: {e}") from e
        finally:
            self._disconnect(conn)

    def _fetch_one(
        self,
        conn: imaplib.IMAP4_SSL,
        account: Account,
        uid: int,
        direction: Direction,
    ) -> Optional[EmailRecord]:
        typ, msg_data = conn.uid("FETCH", str(uid), "(BODY.PEEK[])")
        if typ != "OK" or not msg_data or not isinstance(msg_data[0], tuple):
            logger.warning(f"Could not fetch UID {uid} for {account.account_id}")
            return None

        rfc822_bytes = msg_data[0][1]
        try:
            return rfc822_to_email_record(account.account_id, direction, rfc822_bytes)
        except (ValueError, TypeError, LookupError) as e:
            logger.warning(f"Unparseable message UID {uid} for {account.account_id}: {e}")
            return None
