"""Cluster object models and the client interface used to manage them."""

from __future__ import annotations

import copy
import dataclasses
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Optional, Protocol

CONDITION_TRUE = "True"
CONDITION_FALSE = "False"
NODE_READY = "Ready"


@dataclass
class ObjectMeta:
    """Identity and bookkeeping data shared by every cluster object."""

    name: str = ""
    namespace: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    finalizers: list[str] = field(default_factory=list)
    creation_timestamp: Optional[datetime] = None
    deletion_timestamp: Optional[datetime] = None
    resource_version: str = ""

    def has_label(self, key: str, value: str) -> bool:
        """Return True when the label ``key`` is set to ``value``."""
        return self.labels.get(key) == value


@dataclass
class Pod:
    """A pod scheduled on a node."""

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    node_name: str = ""


@dataclass
class NodeCondition:
    """One status condition reported by a node."""

    type: str
    status: str


@dataclass
class Node:
    """A cluster node and its status conditions."""

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    conditions: list[NodeCondition] = field(default_factory=list)

    def is_ready(self) -> bool:
        """Return True when the node reports a true Ready condition."""
        return any(
            c.type == NODE_READY and c.status == CONDITION_TRUE for c in self.conditions
        )


@dataclass
class MachineStatus:
    """Observed state of a machine: its phase and the node it backs."""

    phase: Optional[str] = None
    node_ref: Optional[str] = None


@dataclass
class Machine:
    """A machine managed by the machine API."""

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    status: MachineStatus = field(default_factory=MachineStatus)


@dataclass
class MachineSetSpec:
    """Desired state of a machine set."""

    replicas: Optional[int] = None
    selector_labels: dict[str, str] = field(default_factory=dict)
    template_labels: dict[str, str] = field(default_factory=dict)


@dataclass
class MachineSetStatus:
    """Observed replica counts of a machine set."""

    replicas: int = 0
    ready_replicas: int = 0


@dataclass
class MachineSet:
    """A group of machines scaled together."""

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    spec: MachineSetSpec = field(default_factory=MachineSetSpec)
    status: MachineSetStatus = field(default_factory=MachineSetStatus)

    def copy(self) -> "MachineSet":
        """Return an independent deep copy of this machine set."""
        return dataclasses.replace(
            self,
            metadata=copy.deepcopy(self.metadata),
            spec=copy.deepcopy(self.spec),
            status=copy.deepcopy(self.status),
        )


class NotFoundError(LookupError):
    """Raised by a client when a requested object does not exist."""

    def __init__(self, kind: str, name: str) -> None:
        super().__init__(f"{kind} {name!r} not found")
        self.kind = kind
        self.name = name


class KubeClient(Protocol):
    """Operations the package needs from a cluster API client."""

    def list(
        self,
        kind: type,
        *,
        namespace: Optional[str] = None,
        labels: Optional[Mapping[str, str]] = None,
        field_selector: Optional[Mapping[str, str]] = None,
    ) -> list[Any]:
        """Return the objects of ``kind`` that match the given selectors."""
        ...

    def get(self, kind: type, name: str, namespace: Optional[str] = None) -> Any:
        """Return one object, raising NotFoundError when it is absent."""
        ...

    def create(self, obj: Any) -> None:
        """Create ``obj`` in the cluster."""
        ...

    def update(self, obj: Any) -> None:
        """Replace the stored state of ``obj``."""
        ...

    def delete(self, obj: Any, *, grace_period_seconds: Optional[int] = None) -> None:
        """Delete ``obj`` from the cluster."""
        ...