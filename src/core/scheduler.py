"""
Reminder Bot — Scheduled Jobs.

Reminder sweep: runs every SWEEP_INTERVAL_SECONDS and fires every due
reminder through the lifecycle.

Untimed digest: at each of DIGEST_HOURS (civil), each owner with open
"no time limit" reminders gets a list of them.

This module is provider-agnostic: it depends on the ReminderStore and
NotificationPort protocols, not on specific implementations.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone, tzinfo
from typing import TYPE_CHECKING

from src.core.formatting import format_digest
from src.core.lifecycle import SweepReport, list_untimed, run_sweep
from src.ports.notification_port import NotificationError
from src.ports.store_port import StoreError

if TYPE_CHECKING:
    from src.data.db import ReminderDB
    from src.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Reminder sweep
# ---------------------------------------------------------------------------


async def sweep_due_reminders(
    store: ReminderDB,
    notifier: NotificationPort,
    now: datetime | None = None,
    tz: tzinfo | None = None,
    all_day_defer: timedelta = timedelta(0),
) -> SweepReport:
    """Job body: fire everything due at `now` (defaults to the current instant)."""
    if now is None:
        now = datetime.now(timezone.utc)

    try:
        report = await run_sweep(store, notifier, now, tz, all_day_defer)
    except StoreError as exc:
        # Selecting due reminders failed; the next tick retries
        logger.error("Reminder sweep aborted: %s", exc)
        return SweepReport()

    if report.total_due:
        logger.info(
            "Sweep at %s: %d fired, %d failed",
            now.isoformat(), len(report.fired), len(report.failed),
        )
    return report


# ---------------------------------------------------------------------------
# Untimed digest
# ---------------------------------------------------------------------------


async def send_untimed_digest(store: ReminderDB, notifier: NotificationPort) -> int:
    """Send each owner their open reminders without a time.

    Returns the number of owners that received a digest. A failure for one
    owner is logged and does not stop the others.
    """
    try:
        owners = store.list_owners_with_untimed()
    except StoreError as exc:
        logger.error("Digest aborted, cannot list owners: %s", exc)
        return 0

    sent = 0
    for owner_id in owners:
        try:
            reminders = list_untimed(store, owner_id)
            if not reminders:
                continue
            await notifier.send_message(owner_id, format_digest(reminders))
            sent += 1
            logger.info("Digest sent to %s (%d reminders)", owner_id, len(reminders))
        except (StoreError, NotificationError) as exc:
            logger.error("Failed to send digest to %s: %s", owner_id, exc)
    return sent
