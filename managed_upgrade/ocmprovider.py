"""Upgrade specs derived from the upgrade policies held by OCM."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Protocol, Sequence
from urllib.parse import ParseResult, urlparse

import semver

from managed_upgrade.upgradeconfig import Update, UpgradeConfigSpec

log = logging.getLogger(__name__)

PROVIDER_UNAVAILABLE = "OCM Provider unavailable"
CLUSTER_ID_NOT_FOUND = "cluster ID can't be found"
MISSING_CHANNEL_GROUP = "channel group not returned or empty"
RETRIEVING_POLICIES = "could not retrieve provider upgrade policies"
PROCESSING_POLICIES = "could not process provider upgrade policies"
UNPARSEABLE_BASE_URL = "OCM Base URL is not a parseable URL"


class OcmProviderError(Exception):
    """Raised when upgrade specs cannot be obtained from OCM."""


class ClusterIdNotFoundError(OcmProviderError):
    """Raised when the cluster's OCM identifier cannot be determined."""

    def __init__(self, message: str = CLUSTER_ID_NOT_FOUND) -> None:
        super().__init__(message)


@dataclass
class OcmProviderConfig:
    """Configuration of the OCM spec provider."""

    ocm_base_url: str = ""

    def is_valid(self) -> None:
        """Raise OcmProviderError when the base URL cannot be parsed."""
        if self.ocm_base_url_parsed() is None:
            raise OcmProviderError(UNPARSEABLE_BASE_URL)

    def ocm_base_url_parsed(self) -> Optional[ParseResult]:
        try:
            return urlparse(self.ocm_base_url)
        except ValueError:
            return None

    # The parsed form is what callers use; keep the public name short.
    def ocm_base_url(self) -> Optional[ParseResult]:  # type: ignore[no-redef]
        """Return the parsed base URL, or None when it cannot be parsed."""
        return self.ocm_base_url_parsed()


@dataclass
class ClusterVersionInfo:
    """The cluster's version as OCM reports it."""

    id: str = ""
    channel_group: str = ""


@dataclass
class NodeDrainGracePeriod:
    """How long nodes may take to drain."""

    value: int = 0
    unit: str = ""


@dataclass
class ClusterInfo:
    """What OCM knows about the cluster."""

    id: str = ""
    version: ClusterVersionInfo = field(default_factory=ClusterVersionInfo)
    node_drain_grace_period: NodeDrainGracePeriod = field(
        default_factory=NodeDrainGracePeriod
    )


@dataclass
class UpgradePolicy:
    """A scheduled upgrade of the cluster held by OCM."""

    id: str = ""
    kind: str = ""
    href: str = ""
    schedule: str = ""
    schedule_type: str = ""
    upgrade_type: str = ""
    version: str = ""
    next_run: str = ""
    cluster_id: str = ""
    capacity_reservation: Optional[bool] = None


@dataclass
class UpgradePolicyState:
    """The state of an upgrade policy."""

    kind: str = ""
    href: str = ""
    value: str = ""
    description: str = ""


class OcmClient(Protocol):
    """The OCM operations the provider needs."""

    def get_cluster(self) -> ClusterInfo:
        """Return the cluster's OCM record; raise ClusterIdNotFoundError if unknown."""
        ...

    def get_cluster_upgrade_policies(self, cluster_id: str) -> Sequence[UpgradePolicy]:
        """Return the upgrade policies of the cluster."""
        ...

    def get_cluster_upgrade_policy_state(
        self, policy_id: str, cluster_id: str
    ) -> UpgradePolicyState:
        """Return the state of one upgrade policy."""
        ...


def _parse_rfc3339(value: str) -> datetime:
    text = value[:-1] + "+00:00" if value.endswith(("Z", "z")) else value
    if "T" not in text and "t" not in text:
        raise ValueError(f"not an RFC 3339 timestamp: {value!r}")
    parsed = datetime.fromisoformat(text.replace("t", "T"))
    if parsed.tzinfo is None:
        raise ValueError(f"RFC 3339 timestamp lacks a zone: {value!r}")
    return parsed


def next_occurring_upgrade_policy(policies: Sequence[UpgradePolicy]) -> UpgradePolicy:
    """Return the policy that runs soonest, whatever its schedule type.

    Raises ValueError if any policy's next run is not an RFC 3339 time or if
    there are no policies.
    """
    return min(policies, key=lambda policy: _parse_rfc3339(policy.next_run))


def is_actionable_upgrade_policy(policy: UpgradePolicy, state: UpgradePolicyState) -> bool:
    """Return True when the policy should become an UpgradeConfig."""
    if state.value.lower() != "scheduled":
        return False
    # Automatic policies carry no version while the cluster is up to date.
    if not policy.version:
        log.info("Upgrade policy %s has an empty version, will ignore.", policy.id)
        return False
    return True


def infer_upgrade_channel(channel_group: str, to_version: str) -> str:
    """Return the channel named by a channel group and a target version."""
    try:
        version = semver.Version.parse(to_version)
    except (ValueError, TypeError) as exc:
        raise ValueError(f"invalid semantic TO version: {to_version}") from exc
    return f"{channel_group}-{version.major}.{version.minor}"


def build_upgrade_config_specs(
    policy: UpgradePolicy, cluster: ClusterInfo
) -> list[UpgradeConfigSpec]:
    """Turn an upgrade policy into the UpgradeConfig specs it describes."""
    # Capacity is reserved unless OCM explicitly says otherwise.
    capacity_reservation = policy.capacity_reservation is not False
    try:
        channel = infer_upgrade_channel(cluster.version.channel_group, policy.version)
    except ValueError as exc:
        raise ValueError(
            f"unable to determine channel from channel group "
            f"'{cluster.version.channel_group}' and version '{policy.version}' "
            f"for policy ID '{policy.id}'"
        ) from exc
    return [
        UpgradeConfigSpec(
            desired=Update(version=policy.version, channel=channel),
            upgrade_at=policy.next_run,
            pdb_force_drain_timeout=int(cluster.node_drain_grace_period.value),
            type=policy.upgrade_type,
            capacity_reservation=capacity_reservation,
        )
    ]


@dataclass
class OcmProvider:
    """Spec provider backed by the cluster's upgrade policies in OCM."""

    ocm_client: OcmClient

    def get(self) -> list[UpgradeConfigSpec]:
        """Return the specs of the next actionable upgrade, or an empty list."""
        log.info("Commencing sync with OCM Spec provider")
        try:
            cluster = self.ocm_client.get_cluster()
        except ClusterIdNotFoundError:
            log.error("cannot obtain internal cluster ID")
            raise
        except Exception as exc:
            log.error("cannot obtain internal cluster ID: %s", exc)
            raise OcmProviderError(PROVIDER_UNAVAILABLE) from exc

        if not cluster.id:
            raise ClusterIdNotFoundError()
        if not cluster.version.channel_group:
            raise OcmProviderError(MISSING_CHANNEL_GROUP)

        try:
            policies = self.ocm_client.get_cluster_upgrade_policies(cluster.id)
        except Exception as exc:
            log.error("error retrieving upgrade policies: %s", exc)
            raise OcmProviderError(RETRIEVING_POLICIES) from exc

        if not policies:
            log.info("No upgrade policies available")
            return []

        policy = next_occurring_upgrade_policy(policies)
        log.info("Detected upgrade policy %s as next occurring.", policy.id)

        state = self.ocm_client.get_cluster_upgrade_policy_state(policy.id, cluster.id)
        if not is_actionable_upgrade_policy(policy, state):
            return []

        try:
            return build_upgrade_config_specs(policy, cluster)
        except ValueError as exc:
            log.error("cannot build UpgradeConfigs from policy: %s", exc)
            raise OcmProviderError(PROCESSING_POLICIES) from exc