"""Wire settings, accounts and adapters into a running engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from loguru import logger

from nudgeflow.application.monitoring.health_monitor import HealthMonitor, MonitorConfig
from nudgeflow.application.ports.composer import NotificationComposer
from nudgeflow.application.scheduler import EmailScheduler
from nudgeflow.application.use_cases.reconcile_mailbox import ReconcileMailboxUseCase
from nudgeflow.application.use_cases.reminder_policy import ReminderPolicy, ReminderPolicyEngine, WorkingHours
from nudgeflow.domain.models import DeliveryProvider
from nudgeflow.infrastructure.accounts import ConfiguredAccount, get_accounts_from_env
from nudgeflow.infrastructure.classification.gateway_classifier import KeywordGatewayClassifier
from nudgeflow.infrastructure.email.providers.imap.client import ImapConfig, ImapMailSource
from nudgeflow.infrastructure.email.providers.sendgrid.sender import SendGridSender
from nudgeflow.infrastructure.email.providers.smtp.sender import SmtpConfig, SmtpSender
from nudgeflow.infrastructure.email.transport import MailboxTransport
from nudgeflow.infrastructure.notifications.composer import LLMNotificationComposer, create_llm
from nudgeflow.infrastructure.notifications.templates import TemplateComposer
from nudgeflow.infrastructure.scheduling.apscheduler_timer import APSchedulerTimer
from nudgeflow.infrastructure.settings import Settings, get_settings
from nudgeflow.infrastructure.stores import SqlThreadStore, create_thread_store


@dataclass
class Runtime:
    settings: Settings
    store: SqlThreadStore
    transport: MailboxTransport
    timer: APSchedulerTimer
    scheduler: EmailScheduler
    monitor: HealthMonitor

    def start(self) -> None:
        self.timer.start()
        if self.settings.enable_scheduler:
            self.scheduler.start_all()
        if self.settings.enable_monitor:
            self.monitor.start()

    def stop(self) -> None:
        self.scheduler.stop_all()
        if self.monitor.is_running:
            self.monitor.stop()
        self.timer.shutdown()


def reminder_policy_from(settings: Settings) -> ReminderPolicy:
    return ReminderPolicy(
        self_reminder_cooldown_minutes=settings.self_reminder_cooldown_minutes,
        short_interval_threshold_minutes=settings.short_interval_threshold_minutes,
        short_cooldown_minutes=settings.short_cooldown_minutes,
        long_cooldown_minutes=settings.long_cooldown_minutes,
        max_vendor_nudges=settings.max_vendor_nudges,
    )


def monitor_config_from(settings: Settings) -> MonitorConfig:
    return MonitorConfig(
        check_interval_minutes=settings.monitor_check_interval_minutes,
        digest_hour=settings.monitor_digest_hour,
        digest_minute=settings.monitor_digest_minute,
        digest_timezone=settings.working_hours_timezone,
        staleness_minutes=settings.monitor_staleness_minutes,
        stuck_minutes=settings.monitor_stuck_minutes,
        alert_cooldown_minutes=settings.monitor_alert_cooldown_minutes,
        email_spike_per_hour=settings.monitor_email_spike_per_hour,
        self_reminder_saturation=settings.monitor_self_reminder_saturation,
        admin_address=settings.admin_alert_email,
    )


def create_composer(settings: Settings) -> NotificationComposer:
    if settings.llm_provider == "none":
        logger.info("LLM drafting disabled, using templates")
        return TemplateComposer()
    try:
        return LLMNotificationComposer(create_llm(settings))
    except (ValueError, ImportError) as e:
        logger.warning(f"LLM drafting unavailable, using templates: {e}")
        return TemplateComposer()


def create_transport(settings: Settings, accounts: list[ConfiguredAccount]) -> MailboxTransport:
    passwords = {c.account.account_id: c.password for c in accounts}
    source = ImapMailSource(
        ImapConfig(host=settings.imap_host, port=settings.imap_port, sent_folder=settings.sent_folder),
        passwords,
    )
    senders = {DeliveryProvider.SMTP: SmtpSender(SmtpConfig(host=settings.smtp_host, port=settings.smtp_port), passwords)}
    if settings.sendgrid_api_key:
        senders[DeliveryProvider.SENDGRID] = SendGridSender(
            settings.sendgrid_api_key.get_secret_value(), base_url=settings.sendgrid_base_url
        )
    return MailboxTransport(source, senders)


def sync_accounts(store: SqlThreadStore, accounts: list[ConfiguredAccount]) -> int:
    """Upsert configured accounts; credentials stay in memory only."""
    for configured in accounts:
        store.upsert_account(configured.account)
    logger.info(f"Synced {len(accounts)} account(s) into the store")
    return len(accounts)


def build_runtime(
    settings: Optional[Settings] = None,
    accounts: Optional[list[ConfiguredAccount]] = None,
) -> Runtime:
    settings = settings or get_settings()
    if accounts is None:
        accounts = get_accounts_from_env(default_timezone=settings.working_hours_timezone)
    if not accounts:
        logger.warning("No accounts configured! Set NUDGEFLOW_ACCOUNTS and per-account variables")

    store = create_thread_store(settings)
    sync_accounts(store, accounts)

    transport = create_transport(settings, accounts)
    policy = reminder_policy_from(settings)
    timer = APSchedulerTimer(timezone=settings.working_hours_timezone)

    reconciler = ReconcileMailboxUseCase(
        store=store,
        transport=transport,
        classifier=KeywordGatewayClassifier(),
        fetch_limit=settings.fetch_limit,
        lookback_days=settings.lookback_days,
        fetch_overlap_minutes=settings.fetch_overlap_minutes,
    )
    reminders = ReminderPolicyEngine(
        store=store,
        transport=transport,
        composer=create_composer(settings),
        policy=policy,
        working_hours=WorkingHours(
            start_hour=settings.working_hours_start,
            end_hour=settings.working_hours_end,
            days=frozenset(settings.working_days),
        ),
    )
    scheduler = EmailScheduler(store=store, timer=timer, reconciler=reconciler, reminders=reminders)
    monitor = HealthMonitor(
        store=store,
        transport=transport,
        timer=timer,
        config=monitor_config_from(settings),
        policy=policy,
    )

    return Runtime(
        settings=settings,
        store=store,
        transport=transport,
        timer=timer,
        scheduler=scheduler,
        monitor=monitor,
    )
