"""One-shot cleanup of duplicate threads that share a normalized subject."""

from __future__ import annotations

import argparse

from loguru import logger

from nudgeflow.application.maintenance.dedupe_threads import merge_duplicate_threads
from nudgeflow.domain.errors import PersistenceError
from nudgeflow.infrastructure.logging import configure_logging
from nudgeflow.infrastructure.runtime import reminder_policy_from
from nudgeflow.infrastructure.settings import get_settings
from nudgeflow.infrastructure.stores import create_thread_store


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Merge duplicate onboarding threads")
    parser.add_argument("--dry-run", action="store_true", help="Only report what would be merged")
    parser.add_argument("--account", default=None, help="Restrict cleanup to one account id")
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging(settings.log_level)

    try:
        store = create_thread_store(settings)
        report = merge_duplicate_threads(
            store,
            account_id=args.account,
            dry_run=args.dry_run,
            policy=reminder_policy_from(settings),
        )
    except PersistenceError as e:
        logger.error(f"Cleanup failed, no changes were made: {e}")
        return 1

    if not report.groups:
        print("No duplicate threads found")
        return 0

    verb = "Would remove" if report.dry_run else "Removed"
    for g in report.groups:
        print(
            f"[{g.account_id}] {g.normalized_subject!r}: keep #{g.kept_thread_id}, "
            f"{verb.lower()} {list(g.removed_thread_ids)}"
        )
    print(f"{verb} {report.threads_removed} duplicate thread(s) in {len(report.groups)} group(s)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
