"""The UpgradeConfig resource and its parts."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from managed_upgrade.objects import ObjectMeta


class UpgradePhase(str, Enum):
    """Phase of an upgrade recorded in an UpgradeConfig's history."""

    UNKNOWN = "Unknown"
    UPGRADING = "Upgrading"


@dataclass
class Update:
    """The desired version and channel of an upgrade."""

    version: str = ""
    channel: str = ""


@dataclass
class UpgradeConfigSpec:
    """Desired upgrade: target, schedule and drain settings."""

    desired: Update = field(default_factory=Update)
    upgrade_at: str = ""
    pdb_force_drain_timeout: int = 0
    type: str = ""
    capacity_reservation: bool = False


@dataclass
class UpgradeCondition:
    """One condition recorded during an upgrade."""

    type: str
    status: str


@dataclass
class UpgradeHistory:
    """The record of an upgrade to one version."""

    version: str
    phase: UpgradePhase = UpgradePhase.UNKNOWN
    conditions: list[UpgradeCondition] = field(default_factory=list)


@dataclass
class UpgradeConfig:
    """A scheduled cluster upgrade and its history."""

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    spec: UpgradeConfigSpec = field(default_factory=UpgradeConfigSpec)
    history: list[UpgradeHistory] = field(default_factory=list)

    def history_for(self, version: str) -> Optional[UpgradeHistory]:
        """Return the history entry for ``version``, or None if there is none."""
        return next((h for h in self.history if h.version == version), None)