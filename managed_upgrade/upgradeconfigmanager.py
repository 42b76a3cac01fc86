"""Keeps the cluster's UpgradeConfig in step with the configured spec provider."""

from __future__ import annotations

import copy
import logging
import math
import os
import random
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Mapping, Optional, Protocol

from managed_upgrade.objects import CONDITION_TRUE, KubeClient, NotFoundError, ObjectMeta
from managed_upgrade.specprovider import (
    ConfigReader,
    NoSpecProviderConfigError,
    SpecProviderBuilder,
)
from managed_upgrade.upgradeconfig import UpgradeConfig, UpgradePhase

log = logging.getLogger(__name__)

UPGRADECONFIG_CR_NAME = "managed-upgrade-config"
JITTER_FACTOR = 0.1
INITIAL_SYNC_DURATION = timedelta(minutes=1)
ERROR_RETRY_DURATION = timedelta(minutes=5)

OPERATOR_PROGRESSING = "Progressing"
OPERATOR_AVAILABLE = "Available"

NO_CONFIG_MANAGER_DEFINED = "no configManager defined in configuration"
CLUSTER_IS_UPGRADING = "cluster is upgrading"
RETRIEVING_UPGRADE_CONFIGS = "unable to retrieve upgradeconfigs"
MISSING_OPERATOR_NAMESPACE = (
    "can't determine operator namespace, missing env OPERATOR_NAMESPACE"
)
PROVIDER_SPEC_PULL = "unable to retrieve upgrade spec"
REMOVING_UPGRADE_CONFIG = "unable to remove existing UpgradeConfig"
CREATING_UPGRADE_CONFIG = "unable to create new UpgradeConfig"
UPGRADE_CONFIG_NOT_FOUND = "upgrade config not found"
NOT_CONFIGURED = "no upgrade config manager configured"
UNKNOWN_CLUSTER_VERSION = "can't determine cluster version"

_DELETE_POLL_INTERVAL = 5.0
_DELETE_POLL_TIMEOUT = 60.0
_CONFIG_RETRY_SECONDS = 60.0


class UpgradeConfigManagerError(Exception):
    """Raised when the UpgradeConfig cannot be read, refreshed or replaced.

    ``reason`` holds the message and can be compared with the module's
    message constants.
    """

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


@dataclass
class UpgradeConfigManagerConfig:
    """How often the manager re-syncs, in minutes."""

    watch_interval_minutes: int = 1

    def is_valid(self) -> None:
        """Raise UpgradeConfigManagerError when no usable interval is set."""
        if self.watch_interval_minutes <= 0:
            raise UpgradeConfigManagerError(NO_CONFIG_MANAGER_DEFINED)

    def watch_interval(self) -> timedelta:
        """Return the sync interval."""
        return timedelta(minutes=self.watch_interval_minutes)


@dataclass
class ClusterOperatorCondition:
    """One condition reported by the cluster version operator."""

    type: str
    status: str


@dataclass
class ClusterVersion:
    """The cluster version resource's status conditions."""

    conditions: list[ClusterOperatorCondition] = field(default_factory=list)


class _ClusterVersionClient(Protocol):
    def get_cluster_version(self) -> ClusterVersion:
        ...


class _SyncMetrics(Protocol):
    def update_metric_upgrade_config_synced(self, name: str) -> None:
        ...

    def reset_metric_upgrade_config_synced(self, name: str) -> None:
        ...


class _StopSignal(Protocol):
    def wait(self, timeout: Optional[float] = None) -> bool:
        ...


@dataclass
class Backoff:
    """Exponential back-off between failed attempts, without jitter."""

    min: timedelta = timedelta(minutes=1)
    max: timedelta = timedelta(hours=1)
    factor: float = 2.0
    attempt: int = 0

    def duration(self) -> timedelta:
        """Return the wait before the next attempt and count this attempt."""
        attempt = self.attempt
        self.attempt += 1
        if self.min >= self.max:
            return self.max
        wait = self.min * (self.factor**attempt)
        if wait < self.min:
            return self.min
        if wait > self.max:
            return self.max
        return wait

    def reset(self) -> None:
        """Start counting attempts from zero again."""
        self.attempt = 0


def duration_with_jitter(duration: timedelta, factor: float) -> timedelta:
    """Return a random duration within ``factor`` of ``duration``.

    Raises ValueError when the resulting range is empty.
    """
    micros = duration / timedelta(microseconds=1)
    low = int(math.floor(micros * (1 - factor)))
    high = int(math.ceil(micros * (1 + factor)))
    return timedelta(microseconds=random.randrange(low, high))


def current_upgrade_config_phase(upgrade_config: UpgradeConfig) -> UpgradePhase:
    """Return the phase recorded for the desired version, or UNKNOWN."""
    version = upgrade_config.spec.desired.version
    phases = [h.phase for h in upgrade_config.history if h.version == version]
    return phases[-1] if phases else UpgradePhase.UNKNOWN


def upgrade_in_progress(
    upgrade_config: UpgradeConfig, cv_client: _ClusterVersionClient
) -> bool:
    """Return True when the UpgradeConfig or the cluster version says an upgrade runs."""
    phase = current_upgrade_config_phase(upgrade_config)
    history = upgrade_config.history_for(upgrade_config.spec.desired.version)
    if phase == UpgradePhase.UPGRADING and history is not None:
        if any(c.status == CONDITION_TRUE for c in history.conditions):
            return True

    try:
        version = cv_client.get_cluster_version()
    except Exception as exc:
        raise UpgradeConfigManagerError(UNKNOWN_CLUSTER_VERSION) from exc
    return any(
        c.type == OPERATOR_PROGRESSING and c.status == CONDITION_TRUE
        for c in version.conditions
    )


def _operator_namespace() -> str:
    namespace = os.environ.get("OPERATOR_NAMESPACE", "")
    if not namespace:
        raise UpgradeConfigManagerError(MISSING_OPERATOR_NAMESPACE)
    return namespace


def _read_config_manager_config(
    client: KubeClient, config_reader: ConfigReader
) -> UpgradeConfigManagerConfig:
    document: Mapping[str, Any] = config_reader(client)
    section = document.get("configManager")
    if not isinstance(section, Mapping):
        config = UpgradeConfigManagerConfig(watch_interval_minutes=0)
    else:
        config = UpgradeConfigManagerConfig(
            watch_interval_minutes=int(section.get("watchInterval", 1))
        )
    config.is_valid()
    return config


@dataclass
class UpgradeConfigManager:
    """Syncs the cluster's UpgradeConfig from the configured spec provider.

    ``cv_client_builder`` makes a cluster version client from the cluster
    client; ``sleep`` and ``monotonic`` drive the wait for deletions.
    """

    client: KubeClient
    cv_client_builder: Callable[[KubeClient], _ClusterVersionClient]
    spec_provider_builder: SpecProviderBuilder
    config_reader: ConfigReader
    metrics: Optional[_SyncMetrics] = None
    backoff: Backoff = field(default_factory=Backoff)
    sleep: Callable[[float], None] = time.sleep
    monotonic: Callable[[], float] = time.monotonic

    def get(self) -> UpgradeConfig:
        """Return the cluster's UpgradeConfig."""
        namespace = _operator_namespace()
        try:
            return self.client.get(UpgradeConfig, UPGRADECONFIG_CR_NAME, namespace)
        except NotFoundError as exc:
            raise UpgradeConfigManagerError(UPGRADE_CONFIG_NOT_FOUND) from exc
        except Exception as exc:
            log.error("error retrieving UpgradeConfig: %s", exc)
            raise UpgradeConfigManagerError(RETRIEVING_UPGRADE_CONFIGS) from exc

    def start_sync(self, stop_event: _StopSignal) -> None:
        """Refresh periodically until ``stop_event`` is set."""
        log.info("Starting the upgradeConfigManager")
        while True:
            try:
                config = _read_config_manager_config(self.client, self.config_reader)
                break
            except Exception as exc:
                if (
                    isinstance(exc, UpgradeConfigManagerError)
                    and exc.reason == NO_CONFIG_MANAGER_DEFINED
                ):
                    log.info("No UpgradeConfig manager configuration defined, will not sync")
                log.error("can't read upgradeConfigManager configuration: %s", exc)
                if stop_event.wait(_CONFIG_RETRY_SECONDS):
                    log.info("Stopping the upgradeConfigManager")
                    return

        duration = duration_with_jitter(INITIAL_SYNC_DURATION, JITTER_FACTOR)
        while not stop_event.wait(duration.total_seconds()):
            try:
                self.refresh()
            except Exception as exc:
                wait = self.backoff.duration()
                log.error("unable to refresh upgrade config, retrying in %s: %s", wait, exc)
                if self.metrics is not None:
                    self.metrics.update_metric_upgrade_config_synced(UPGRADECONFIG_CR_NAME)
                duration = duration_with_jitter(wait, JITTER_FACTOR)
            else:
                self.backoff.reset()
                if self.metrics is not None:
                    self.metrics.reset_metric_upgrade_config_synced(UPGRADECONFIG_CR_NAME)
                duration = duration_with_jitter(config.watch_interval(), JITTER_FACTOR)
        log.info("Stopping the upgradeConfigManager")

    def refresh(self) -> bool:
        """Bring the UpgradeConfig in line with the provider; return True if it changed."""
        namespace = _operator_namespace()

        found = True
        try:
            current = self.get()
        except UpgradeConfigManagerError as exc:
            if exc.reason != UPGRADE_CONFIG_NOT_FOUND:
                raise
            current = UpgradeConfig()
            found = False

        if upgrade_in_progress(current, self.cv_client_builder(self.client)):
            log.info("skipping spec refresh as the cluster is currently upgrading")
            return False

        try:
            provider = self.spec_provider_builder.new(self.client, self.config_reader)
        except NoSpecProviderConfigError as exc:
            raise UpgradeConfigManagerError(NOT_CONFIGURED) from exc

        try:
            specs = provider.get()
        except Exception as exc:
            log.error("error pulling provider specs: %s", exc)
            raise UpgradeConfigManagerError(PROVIDER_SPEC_PULL) from exc

        if not specs:
            if not found:
                return False
            log.info("Removing expired UpgradeConfig %s", current.metadata.name)
            try:
                self.client.delete(current)
            except Exception as exc:
                log.error("can't remove UpgradeConfig after finding no upgrade_policy: %s", exc)
                raise UpgradeConfigManagerError(REMOVING_UPGRADE_CONFIG) from exc
            return True

        if len(specs) > 1:
            log.info("More than one Upgrade Spec received, only considering the first.")

        replacement = UpgradeConfig(
            metadata=ObjectMeta(name=UPGRADECONFIG_CR_NAME, namespace=namespace),
            spec=copy.deepcopy(specs[0]),
        )
        changed = replacement.spec != current.spec
        if changed:
            self._recreate(found, current, replacement)
            log.info("Successfully create new UpgradeConfig")
        else:
            log.info(
                "no change in spec from existing UpgradeConfig %s, won't update",
                current.metadata.name,
            )
        return changed

    def _recreate(self, found: bool, existing: UpgradeConfig, new: UpgradeConfig) -> None:
        if found:
            log.info("cluster upgrade spec has changed, will delete and re-create.")
            already_deleted = False
            try:
                self.client.delete(existing, grace_period_seconds=0)
            except NotFoundError:
                log.info("UpgradeConfig already deleted")
                already_deleted = True
            except Exception as exc:
                log.error("can't remove UpgradeConfig during re-create: %s", exc)
                raise UpgradeConfigManagerError(REMOVING_UPGRADE_CONFIG) from exc

            if not already_deleted:
                try:
                    self._wait_until_deleted()
                except Exception as exc:
                    raise UpgradeConfigManagerError(
                        f"unable to confirm deletion of current UpgradeConfig: {exc}"
                    ) from exc

        new.metadata.resource_version = ""
        try:
            self.client.create(new)
        except Exception as exc:
            raise UpgradeConfigManagerError(
                f"unable to apply UpgradeConfig changes: {exc}"
            ) from exc

    def _wait_until_deleted(self) -> None:
        deadline = self.monotonic() + _DELETE_POLL_TIMEOUT
        while True:
            try:
                self.get()
            except UpgradeConfigManagerError as exc:
                if exc.reason == UPGRADE_CONFIG_NOT_FOUND:
                    log.info("UpgradeConfig deletion confirmed")
                    return
                raise
            if self.monotonic() >= deadline:
                raise TimeoutError("timed out waiting for the condition")
            self.sleep(_DELETE_POLL_INTERVAL)