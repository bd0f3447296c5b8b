"""Account configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from loguru import logger
from pydantic import SecretStr

from nudgeflow.domain.entities.account import Account
from nudgeflow.domain.models import DeliveryProvider

ENV_PREFIX = "NUDGEFLOW"


@dataclass(frozen=True)
class ConfiguredAccount:
    """An account plus the mailbox secret, which is never persisted."""

    account: Account
    password: SecretStr


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"{key}={raw!r} is not an integer, using {default}")
        return default


def _bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key, "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def get_accounts_from_env(
    env: Optional[Mapping[str, str]] = None,
    default_timezone: str = "Asia/Kolkata",
) -> list[ConfiguredAccount]:
    """
    Load account configurations from environment variables.

    NUDGEFLOW_ACCOUNTS=acme,globex
    NUDGEFLOW_ACME_EMAIL=onboarding@acme.in
    NUDGEFLOW_ACME_PASSWORD=xxx
    NUDGEFLOW_ACME_OPERATOR_EMAIL=ops@acme.in
    NUDGEFLOW_ACME_DISPLAY_NAME=Acme Payments       # Optional
    NUDGEFLOW_ACME_POLL_MINUTES=30                  # Optional
    NUDGEFLOW_ACME_SELF_REMINDER_MINUTES=30         # Optional
    NUDGEFLOW_ACME_VENDOR_NUDGE_MINUTES=180         # Optional
    NUDGEFLOW_ACME_GATEWAYS=razorpay,payu           # Optional, empty = all
    NUDGEFLOW_ACME_TIMEZONE=Asia/Kolkata            # Optional
    NUDGEFLOW_ACME_DELIVERY=smtp|sendgrid           # Optional
    NUDGEFLOW_ACME_ACTIVE=true                      # Optional
    """
    env = os.environ if env is None else env
    accounts: list[ConfiguredAccount] = []

    names = env.get(f"{ENV_PREFIX}_ACCOUNTS", "").strip()
    if not names:
        return accounts

    for name in names.split(","):
        name = name.strip().upper()
        if not name:
            continue
        key = f"{ENV_PREFIX}_{name}"
        email = env.get(f"{key}_EMAIL", "").strip()
        password = env.get(f"{key}_PASSWORD", "")
        operator = env.get(f"{key}_OPERATOR_EMAIL", "").strip()

        if not (email and password and operator):
            logger.warning(f"Account {name} missing email, password or operator email, skipping")
            continue

        delivery_raw = env.get(f"{key}_DELIVERY", DeliveryProvider.SMTP.value).strip().lower()
        try:
            delivery = DeliveryProvider(delivery_raw)
        except ValueError:
            logger.warning(f"Account {name}: unknown delivery {delivery_raw!r}, using smtp")
            delivery = DeliveryProvider.SMTP

        gateways = tuple(
            g.strip().lower() for g in env.get(f"{key}_GATEWAYS", "").split(",") if g.strip()
        )

        account = Account(
            account_id=name.lower(),
            display_name=env.get(f"{key}_DISPLAY_NAME", "").strip() or name.title(),
            mailbox_address=email,
            operator_address=operator,
            poll_interval_minutes=_int(env, f"{key}_POLL_MINUTES", 30),
            self_reminder_minutes=_int(env, f"{key}_SELF_REMINDER_MINUTES", 30),
            vendor_nudge_minutes=_int(env, f"{key}_VENDOR_NUDGE_MINUTES", 180),
            gateways=gateways,
            timezone=env.get(f"{key}_TIMEZONE", "").strip() or default_timezone,
            delivery=delivery,
            is_active=_bool(env, f"{key}_ACTIVE", True),
        )
        accounts.append(ConfiguredAccount(account=account, password=SecretStr(password)))
        logger.info(f"Configured account: {account.account_id} ({email}, {delivery.value})")

    return accounts
