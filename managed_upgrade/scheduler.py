"""Decides whether an UpgradeConfig's scheduled time has come."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable

from managed_upgrade.upgradeconfig import UpgradeConfig

log = logging.getLogger(__name__)

_RFC3339 = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})[Tt](\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?([Zz]|[+-]\d{2}:\d{2})"
)


def _parse_rfc3339(value: str) -> datetime:
    match = _RFC3339.fullmatch(value)
    if match is None:
        raise ValueError(f"not an RFC 3339 timestamp: {value!r}")
    year, month, day, hour, minute, second, fraction, zone = match.groups()
    micro = int((fraction or "").ljust(6, "0")[:6])
    if zone in ("Z", "z"):
        tz = timezone.utc
    else:
        sign = -1 if zone[0] == "-" else 1
        tz = timezone(sign * timedelta(hours=int(zone[1:3]), minutes=int(zone[4:6])))
    return datetime(
        int(year), int(month), int(day), int(hour), int(minute), int(second), micro, tzinfo=tz
    )


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SchedulerResult:
    """Whether an upgrade may start and whether its window has passed."""

    is_ready: bool
    is_breached: bool
    time_until_upgrade: timedelta


@dataclass
class Scheduler:
    """Compares an upgrade's scheduled time with the current time."""

    clock: Callable[[], datetime] = field(default=_utc_now)

    def is_ready_to_upgrade(
        self, upgrade_config: UpgradeConfig, timeout: timedelta
    ) -> SchedulerResult:
        """Report readiness of ``upgrade_config`` given an allowed start window."""
        try:
            upgrade_time = _parse_rfc3339(upgrade_config.spec.upgrade_at)
        except ValueError:
            log.error("failed to parse spec.upgradeAt %s", upgrade_config.spec.upgrade_at)
            return SchedulerResult(False, False, timedelta(0))

        now = self.clock()
        if now > upgrade_time:
            breached = not upgrade_time + timeout > now
            return SchedulerResult(True, breached, timedelta(0))

        pending = upgrade_time - now
        hours = int(pending.total_seconds() // 3600)
        minutes = int(pending.total_seconds() // 60) - hours * 60
        log.info("Upgrade is scheduled in %d hours %d mins", hours, minutes)
        return SchedulerResult(False, False, pending)