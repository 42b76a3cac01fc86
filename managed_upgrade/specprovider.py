"""Chooses and builds the source of upgrade specs from configuration."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping, Optional, Protocol
from urllib.parse import ParseResult

from managed_upgrade.objects import KubeClient
from managed_upgrade.ocmprovider import OcmClient, OcmProvider, OcmProviderConfig
from managed_upgrade.upgradeconfig import UpgradeConfigSpec

log = logging.getLogger(__name__)

ConfigReader = Callable[[KubeClient], Mapping[str, Any]]


class ConfigManagerSource(str, Enum):
    """Where upgrade specs come from."""

    OCM = "OCM"
    LOCAL = "LOCAL"


class InvalidSpecProviderError(ValueError):
    """Raised when the configured spec provider is not supported."""

    def __init__(self, message: str = "invalid configManager spec provider type defined") -> None:
        super().__init__(message)


class NoSpecProviderConfigError(ValueError):
    """Raised when no spec provider is configured."""

    def __init__(self, message: str = "no configManager spec provider configured") -> None:
        super().__init__(message)


@dataclass
class SpecProviderConfig:
    """The configured spec provider source."""

    source: str = ""

    def is_valid(self) -> None:
        """Raise when the source is missing or not a supported value."""
        if not self.source:
            raise NoSpecProviderConfigError()
        if self.source.upper() not in {s.value for s in ConfigManagerSource}:
            raise InvalidSpecProviderError()


class SpecProvider(Protocol):
    """Supplies the desired UpgradeConfig specs."""

    def get(self) -> list[UpgradeConfigSpec]:
        """Return the current upgrade specs, possibly none."""
        ...


def _config_manager_section(document: Mapping[str, Any]) -> Mapping[str, Any]:
    section = document.get("configManager") or {}
    if not isinstance(section, Mapping):
        raise ValueError("configManager must be a mapping")
    return section


@dataclass
class SpecProviderBuilder:
    """Builds the spec provider named by the operator configuration.

    ``ocm_client_factory`` creates an OCM client from the cluster client and
    the parsed OCM base URL; ``local_provider_factory`` creates the local
    provider from the cluster client and the configuration document.
    """

    ocm_client_factory: Optional[
        Callable[[KubeClient, Optional[ParseResult]], OcmClient]
    ] = None
    local_provider_factory: Optional[
        Callable[[KubeClient, Mapping[str, Any]], SpecProvider]
    ] = None

    def new(self, client: KubeClient, config_reader: ConfigReader) -> SpecProvider:
        """Read the configuration with ``config_reader`` and build its provider."""
        document = config_reader(client)
        section = _config_manager_section(document)
        config = SpecProviderConfig(source=str(section.get("source", "") or ""))
        config.is_valid()

        source = ConfigManagerSource(config.source.upper())
        if source is ConfigManagerSource.OCM:
            log.info("Using OCM as the upgrade config provider")
            ocm_config = OcmProviderConfig(
                ocm_base_url=str(section.get("ocmBaseUrl", "") or "")
            )
            ocm_config.is_valid()
            if self.ocm_client_factory is None:
                raise InvalidSpecProviderError("no OCM client available for the OCM provider")
            ocm_client = self.ocm_client_factory(client, ocm_config.ocm_base_url())
            return OcmProvider(ocm_client)

        log.info("Using local CR as the upgrade config provider")
        if self.local_provider_factory is None:
            raise InvalidSpecProviderError("no local provider available for the LOCAL source")
        return self.local_provider_factory(client, document)