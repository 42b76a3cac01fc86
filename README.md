# managed-upgrade

`managed-upgrade` holds the decision logic of managed cluster upgrades:

- working out when an upgrade is due, and whether its start window has passed;
- adding temporary worker capacity before an upgrade and removing it afterwards;
- turning upgrade policies from a remote provider into upgrade specs;
- keeping the cluster's single upgrade config in step with what a spec
  provider returns.

The cluster, the policy service and the cluster version are all reached
through objects you supply. The library itself makes no network calls.

## Installation

```
pip install .
```

With the test dependencies:

```
pip install ".[test]"
pytest
```

## Modules

| Module | Purpose |
| --- | --- |
| `managed_upgrade.objects` | Dataclasses for `Pod`, `Node`, `Machine`, `MachineSet` and their parts, the `KubeClient` protocol and `NotFoundError`. |
| `managed_upgrade.upgradeconfig` | `UpgradeConfig`, `UpgradeConfigSpec`, `Update`, `UpgradeHistory`, `UpgradeCondition` and `UpgradePhase`. |
| `managed_upgrade.pod` | `filter_pods`, `delete_pods`, `remove_finalizers_from_pods` and `get_pod_list`. |
| `managed_upgrade.scheduler` | `Scheduler.is_ready_to_upgrade` reports whether an upgrade is due and whether its window has been breached. |
| `managed_upgrade.scaler` | `MachineSetScaler` creates one-replica upgrade copies of worker machine sets and removes them again. |
| `managed_upgrade.ocmprovider` | `OcmProvider` turns the next actionable upgrade policy into an upgrade spec; helpers such as `infer_upgrade_channel`. |
| `managed_upgrade.specprovider` | `SpecProviderConfig` validates the configured source; `SpecProviderBuilder` builds the provider for it. |
| `managed_upgrade.upgradeconfigmanager` | `UpgradeConfigManager` refreshes the cluster's upgrade config once, or in a loop with jitter and backoff. |

## The cluster client

Everything that touches the cluster takes an object implementing
`managed_upgrade.objects.KubeClient`:

- `list(kind, *, namespace=None, labels=None, field_selector=None)`
- `get(kind, name, namespace=None)`, raising `NotFoundError` when absent
- `create(obj)`, `update(obj)`
- `delete(obj, *, grace_period_seconds=None)`

## Examples

### Is an upgrade due?

```python
from datetime import timedelta

from managed_upgrade.scheduler import Scheduler
from managed_upgrade.upgradeconfig import UpgradeConfig, UpgradeConfigSpec

config = UpgradeConfig(spec=UpgradeConfigSpec(upgrade_at="2030-01-01T00:00:00Z"))
result = Scheduler().is_ready_to_upgrade(config, timedelta(minutes=60))
print(result.is_ready, result.is_breached, result.time_until_upgrade)
```

`upgrade_at` is an RFC 3339 timestamp; one that cannot be parsed gives a
result that is neither ready nor breached. Once the upgrade time has passed
the result is ready, and `is_breached` is true when the upgrade time plus the
timeout is no longer after now. `Scheduler(clock=...)` accepts a function
returning the current aware `datetime`.

### Which channel does a version belong to?

```python
from managed_upgrade.ocmprovider import infer_upgrade_channel

infer_upgrade_channel("fast", "4.9.1")   # "fast-4.9"
```

A version that is not a semantic version raises `ValueError`.

### Working with pods

```python
from managed_upgrade.pod import delete_pods, filter_pods

web = filter_pods(pods, lambda p: p.metadata.name.startswith("web"))
result = delete_pods(client, web, ignore_already_deleting=True, grace_period_seconds=0)
print(result.num_marked_for_deletion)
```

When some deletions or updates fail, `delete_pods` and
`remove_finalizers_from_pods` raise `PodOperationError`, whose `result`
describes the pods that succeeded and whose `errors` holds the failures.

### Managing extra worker capacity

```python
from datetime import timedelta

from managed_upgrade.scaler import MachineSetScaler, ScaleTimeOutError

scaler = MachineSetScaler()
try:
    ready = scaler.ensure_scale_up_nodes(client, timedelta(minutes=30))
except ScaleTimeOutError as err:
    print("extra capacity did not become ready:", err)

done = scaler.ensure_scale_down_nodes(client, drain_strategy=None)
```

The first scale-up call creates the machine sets and returns `False`; later
calls return `True` once every upgrade machine set has its replicas ready and
its node reports Ready. A drain strategy passed to `ensure_scale_down_nodes`
needs `execute(node)` and `has_failed(node)`; a failed drain raises
`DrainTimeOutError` carrying the node name.

### Keeping the upgrade config in sync

```python
import threading

from managed_upgrade.specprovider import SpecProviderBuilder
from managed_upgrade.upgradeconfigmanager import UpgradeConfigManager

manager = UpgradeConfigManager(
    client=client,
    cv_client_builder=lambda c: cluster_version_client,
    spec_provider_builder=SpecProviderBuilder(local_provider_factory=make_local_provider),
    config_reader=lambda c: {"configManager": {"source": "LOCAL", "watchInterval": 5}},
)
changed = manager.refresh()   # one sync; True if the config was created, replaced or removed

stop = threading.Event()
manager.start_sync(stop)      # loops until stop is set
```

`config_reader` returns the configuration document; its `configManager`
section may hold `source` (`OCM` or `LOCAL`), `ocmBaseUrl` and
`watchInterval` (minutes). The cluster version client needs
`get_cluster_version()` returning a `ClusterVersion`. An optional `metrics`
object receives `update_metric_upgrade_config_synced` and
`reset_metric_upgrade_config_synced` calls. The upgrade config's namespace
is read from the `OPERATOR_NAMESPACE` environment variable.

## Errors

Failures are raised as exceptions: `OcmProviderError`,
`ClusterIdNotFoundError`, `InvalidSpecProviderError`,
`NoSpecProviderConfigError`, `UpgradeConfigManagerError` (with a `reason`
string), `ScaleTimeOutError`, `DrainTimeOutError`, `PodOperationError` and
`NotFoundError`.

## What this package does not do

- It has no client for a cluster API, for the upgrade policy service or for
  the cluster version; you pass in objects that do this work.
- It has no local spec provider of its own: the `LOCAL` source uses whatever
  `local_provider_factory` you give `SpecProviderBuilder`, and the `OCM`
  source needs an `ocm_client_factory`.
- It records no metrics itself and has no command-line program.