"""Reconcile one mailbox: fetch, filter, classify, correlate and persist."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional

from loguru import logger

from nudgeflow.application.filters import skip_reason
from nudgeflow.application.ports.classifier import ContentClassifier
from nudgeflow.application.ports.mail_transport import FetchWindow, MailTransport
from nudgeflow.application.ports.thread_store import ThreadStore
from nudgeflow.application.use_cases.correlate_thread import ThreadCorrelator, utcnow
from nudgeflow.domain.entities.account import Account
from nudgeflow.domain.entities.email_record import EmailRecord
from nudgeflow.domain.errors import ClassificationError, PersistenceError
from nudgeflow.domain.models import Direction


@dataclass
class ReconcileResult:
    account_id: str
    fetched: int = 0
    new_emails: int = 0
    new_threads: int = 0
    skipped: int = 0
    errors: int = 0
    outcomes: Counter = field(default_factory=Counter)


class ReconcileMailboxUseCase:
    """Pull new mail for an account and fold it into threads.

    Flow:
    1. Fetch inbound and outbound mail observed since the last check
    2. Drop engine-generated and internal loopback mail
    3. Inbound: keep only gateway-classified mail; it may open a new thread
    4. Outbound: keep only mail that matches an existing thread
    5. Insert each surviving email once (keyed by message id) and advance its thread
    6. Advance the account's last-check timestamp, even when nothing was new
    """

    def __init__(
        self,
        store: ThreadStore,
        transport: MailTransport,
        classifier: ContentClassifier,
        correlator: Optional[ThreadCorrelator] = None,
        fetch_limit: int = 20,
        lookback_days: int = 30,
        fetch_overlap_minutes: int = 60,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.transport = transport
        self.classifier = classifier
        self.correlator = correlator or ThreadCorrelator(store, clock=clock)
        self.fetch_limit = fetch_limit
        self.lookback = timedelta(days=lookback_days)
        self.overlap = timedelta(minutes=fetch_overlap_minutes)
        self.clock = clock

    def fetch_window(self, account: Account, now: datetime) -> FetchWindow:
        """Since the last check (minus an overlap for clock skew), never beyond the lookback."""
        earliest = now - self.lookback
        if account.last_checked_at is None:
            return FetchWindow(since=earliest, limit=self.fetch_limit)
        return FetchWindow(since=max(earliest, account.last_checked_at - self.overlap), limit=self.fetch_limit)

    def run(self, account: Account) -> ReconcileResult:
        """Reconcile the account once. Transport errors propagate to the caller."""
        now = self.clock()
        window = self.fetch_window(account, now)
        result = ReconcileResult(account_id=account.account_id)

        inbound = self.transport.fetch_inbound(account, window)
        outbound = self.transport.fetch_outbound(account, window)
        logger.info(
            f"{account.display_name}: fetched {len(inbound)} inbound, {len(outbound)} outbound "
            f"since {window.since.isoformat()}"
        )

        # Chronological order keeps the status of a thread equal to its latest email
        emails = sorted([*inbound, *outbound], key=lambda e: e.observed_at)
        result.fetched = len(emails)

        for email in emails:
            try:
                outcome = self._process_email(account, email)
            except PersistenceError as e:
                result.errors += 1
                logger.error(f"Failed to persist {email.message_id} for {account.account_id}: {e}")
                continue
            except Exception as e:
                result.errors += 1
                logger.exception(f"Failed to process {email.message_id} for {account.account_id}: {e}")
                continue

            result.outcomes[outcome] += 1
            if outcome.startswith("processed"):
                result.new_emails += 1
                if outcome == "processed_new_thread":
                    result.new_threads += 1
            else:
                result.skipped += 1

        self.store.mark_account_checked(account.account_id, now)

        logger.info(
            f"{account.display_name}: {result.new_emails} new emails, {result.new_threads} new threads, "
            f"{result.skipped} skipped, {result.errors} errors"
        )
        return result

    def _classify(self, account: Account, email: EmailRecord) -> Optional[str]:
        try:
            return self.classifier.classify(email, account.gateways)
        except ClassificationError as e:
            logger.warning(f"Classifier failed for {email.message_id}, treating as no match: {e}")
            return None

    def _process_email(self, account: Account, email: EmailRecord) -> str:
        """Process a single email.

        Returns:
            'processed_new_thread' - Email stored and opened a new thread
            'processed' - Email stored and advanced an existing thread
            'duplicate' - Message id already stored
            'skipped_<reason>' - Dropped by the pre-filter
            'skipped_own_reminder' - A reminder or nudge this engine sent
            'skipped_no_gateway' - Inbound email not about a tracked gateway
            'skipped_unmatched' - Outbound email with no existing thread
        """
        reason = skip_reason(email, account)
        if reason:
            logger.debug(f"Pre-filter skipped {email.message_id} ({reason}): {email.subject[:50]!r}")
            return f"skipped_{reason}"

        if self.store.is_reminder_message(account.account_id, email.message_id):
            logger.debug(f"Skipped own reminder {email.message_id}: {email.subject[:50]!r}")
            return "skipped_own_reminder"

        vendor = None
        if email.direction is Direction.INBOUND:
            gateway = self._classify(account, email)
            if gateway is None:
                return "skipped_no_gateway"
            email = email.with_gateway(gateway)
            vendor = self.classifier.extract_vendor_identity(email)

        with self.store.transaction():
            if self.store.has_email(account.account_id, email.message_id):
                return "duplicate"

            correlation = self.correlator.correlate(
                account.account_id,
                email,
                vendor=vendor,
                allow_create=email.direction is Direction.INBOUND,
            )
            if correlation is None:
                logger.debug(f"Outbound {email.message_id} matches no thread: {email.subject[:50]!r}")
                return "skipped_unmatched"

            if email.gateway is None:
                email = email.with_gateway(correlation.thread.gateway)
            self.store.insert_email_if_absent(email, correlation.thread.id)

        return "processed_new_thread" if correlation.is_new_thread else "processed"
