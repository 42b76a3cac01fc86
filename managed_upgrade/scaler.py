"""Temporary extra worker capacity during an upgrade.

Before workers are upgraded, every worker machine set gets a one-replica
copy labelled for the upgrade. Afterwards those copies are removed again,
with an optional drain strategy applied to the nodes they backed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Mapping, Optional, Protocol, Sequence

from managed_upgrade.objects import KubeClient, Machine, MachineSet, Node, ObjectMeta

log = logging.getLogger(__name__)

LABEL_UPGRADE = "upgrade.managed.openshift.io"
LABEL_MACHINESET = "machine.openshift.io/cluster-api-machineset"
LABEL_WORKER_POOL = "hive.openshift.io/machine-pool"
MACHINE_API_NAMESPACE = "openshift-machine-api"

_UPGRADE_LABELS = {LABEL_UPGRADE: "true"}
_WORKER_LABELS = {LABEL_WORKER_POOL: "worker"}
_UPGRADE_SUFFIX = "-upgrade"


class ScaleTimeOutError(Exception):
    """Raised when extra capacity did not become ready in time."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class DrainTimeOutError(Exception):
    """Raised when draining a node failed; carries the node's name."""

    def __init__(self, node_name: str) -> None:
        super().__init__(node_name)
        self.node_name = node_name


@dataclass(frozen=True)
class LabelRequirement:
    """A single label selector requirement, such as ``key != value``."""

    key: str
    operator: str
    values: tuple[str, ...]

    def matches(self, labels: Mapping[str, str]) -> bool:
        """Return True when ``labels`` satisfy this requirement."""
        if self.operator == "!=":
            return labels.get(self.key) not in self.values
        if self.operator == "=":
            return labels.get(self.key) in self.values
        raise ValueError(f"unsupported operator {self.operator!r}")


def not_selector_from_set(labels: Optional[Mapping[str, str]]) -> list[LabelRequirement]:
    """Build requirements matching objects whose labels differ from ``labels``."""
    if not labels:
        return []
    return [LabelRequirement(key, "!=", (value,)) for key, value in sorted(labels.items())]


class DrainResult(Protocol):
    """A step reported by a drain strategy."""

    message: str


class NodeDrainStrategy(Protocol):
    """Applies drain strategies to a node and reports whether they failed."""

    def execute(self, node: Node) -> Sequence[DrainResult]:
        """Apply the strategy to ``node`` and return what was done."""
        ...

    def has_failed(self, node: Node) -> bool:
        """Return True when draining ``node`` has failed."""
        ...


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class MachineSetScaler:
    """Scales worker capacity up and down using dedicated machine sets."""

    clock: Callable[[], datetime] = field(default=_utc_now)

    def ensure_scale_up_nodes(self, client: KubeClient, timeout: timedelta) -> bool:
        """Create the extra machine sets and report whether their nodes are ready."""
        upgrade_sets = client.list(
            MachineSet, namespace=MACHINE_API_NAMESPACE, labels=dict(_UPGRADE_LABELS)
        )
        original_sets = client.list(
            MachineSet, namespace=MACHINE_API_NAMESPACE, labels=dict(_WORKER_LABELS)
        )
        if not original_sets:
            log.info("failed to get machineset")
            raise LookupError("failed to get original machineset")

        if self._create_extra_machine_sets(client, original_sets, upgrade_sets):
            # The new machines cannot be ready yet.
            return False
        return self._nodes_are_ready(client, timeout, upgrade_sets)

    def ensure_scale_down_nodes(
        self, client: KubeClient, drain_strategy: Optional[NodeDrainStrategy]
    ) -> bool:
        """Remove the extra machine sets and report whether their machines are gone."""
        upgrade_sets = client.list(
            MachineSet, namespace=MACHINE_API_NAMESPACE, labels=dict(_UPGRADE_LABELS)
        )
        for machine_set in upgrade_sets:
            if machine_set.metadata.deletion_timestamp is None:
                client.delete(machine_set)

        if drain_strategy is not None:
            _apply_drain_strategy(drain_strategy, _extra_upgrade_nodes(client))

        remaining = client.list(
            Machine, namespace=MACHINE_API_NAMESPACE, labels=dict(_UPGRADE_LABELS)
        )
        if remaining:
            for machine in remaining:
                log.info("Found upgrade machines to be terminated :%s", machine.metadata.name)
            return False
        return True

    def _create_extra_machine_sets(
        self,
        client: KubeClient,
        original_sets: Iterable[MachineSet],
        upgrade_sets: Sequence[MachineSet],
    ) -> bool:
        existing = {ms.metadata.name for ms in upgrade_sets}
        for machine_set in original_sets:
            name = machine_set.metadata.name + _UPGRADE_SUFFIX
            if name in existing:
                log.info("machineset for upgrade already created :%s", machine_set.metadata.name)
                return False

            extra = machine_set.copy()
            extra.metadata = ObjectMeta(
                name=name,
                namespace=machine_set.metadata.namespace,
                labels=dict(_UPGRADE_LABELS),
            )
            extra.spec.replicas = 1
            extra.spec.template_labels[LABEL_UPGRADE] = "true"
            extra.spec.template_labels[LABEL_MACHINESET] = name
            extra.spec.selector_labels[LABEL_UPGRADE] = "true"
            extra.spec.selector_labels[LABEL_MACHINESET] = name
            log.info("creating machineset %s for upgrade", name)
            client.create(extra)
        return True

    def _timed_out(self, start: Optional[datetime], timeout: timedelta) -> bool:
        if start is None:
            return True
        return self.clock() > start + timeout

    def _nodes_are_ready(
        self, client: KubeClient, timeout: timedelta, upgrade_sets: Iterable[MachineSet]
    ) -> bool:
        for machine_set in upgrade_sets:
            # The creation time marks the start of the scale-up.
            start = machine_set.metadata.creation_timestamp
            name = machine_set.metadata.name
            if machine_set.status.replicas != machine_set.status.ready_replicas:
                if self._timed_out(start, timeout):
                    raise ScaleTimeOutError(f"Machineset {name} provisioning timout")
                log.info("not all machines are ready for machineset:%s", name)
                return False

            machines = client.list(
                Machine,
                namespace=MACHINE_API_NAMESPACE,
                labels={LABEL_UPGRADE: "true", LABEL_MACHINESET: name},
            )
            if len(machines) != 1:
                log.error("failed to list extra upgrade machine")
                return False

            node = client.get(Node, machines[0].status.node_ref)
            if not node.is_ready():
                if self._timed_out(start, timeout):
                    log.info("node is not ready within timeout time")
                    raise ScaleTimeOutError(
                        f"Timeout waiting for node:{node.metadata.name} to become ready"
                    )
                return False
        return True


def _extra_upgrade_nodes(client: KubeClient) -> list[Node]:
    nodes = client.list(Node)
    machines = client.list(
        Machine, namespace=MACHINE_API_NAMESPACE, labels=dict(_UPGRADE_LABELS)
    )
    extra: list[Node] = []
    for machine in machines:
        if machine.status.phase not in ("Running", "Deleting"):
            continue
        if nodes and machine.status.node_ref is None:
            raise LookupError(
                f"an upgrade machine {machine.metadata.name} exists but has no node association"
            )
        extra.extend(n for n in nodes if n.metadata.name == machine.status.node_ref)
    return extra


def _apply_drain_strategy(strategy: NodeDrainStrategy, nodes: Sequence[Node]) -> None:
    for node in nodes:
        for result in strategy.execute(node):
            log.info(result.message)
    for node in nodes:
        if strategy.has_failed(node):
            raise DrainTimeOutError(node.metadata.name)