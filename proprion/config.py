#!/usr/bin/env python3
# CUI // SP-CTI
"""Provider Registry — named provider credential sets on disk.

Config file: --config flag > PROPRION_CONFIG > <user config dir>/config.yaml

    providers:
      my-scaleway:
        type: scaleway
        access_key: SCW...
        secret_key: ...
        organization_id: ...
        project_id: ...
        region: fr-par
        bucket: data
      my-exoscale:
        type: exoscale
        api_key: EXO...
        api_secret: ...
        zone: de-fra-1
        bucket: data

The file holds secrets; it is written with mode 0600.
"""

import logging
import os
import re
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Dict, List, Optional, Union

import platformdirs
import yaml

from proprion.errors import ConfigurationError

logger = logging.getLogger("proprion.config")

APP_NAME = "proprion"
CONFIG_ENV_VAR = "PROPRION_CONFIG"
CONFIG_FILENAME = "config.yaml"


@dataclass
class ScalewayProviderConfig:
    access_key: str
    secret_key: str = field(repr=False)
    organization_id: str
    project_id: str
    region: str
    bucket: str

    type_name = "scaleway"
    location_key = "region"

    @property
    def location(self) -> str:
        return self.region

    @property
    def endpoint(self) -> str:
        """S3 endpoint URL."""
        return f"https://s3.{self.region}.scw.cloud"


@dataclass
class ExoscaleProviderConfig:
    api_key: str
    api_secret: str = field(repr=False)
    zone: str
    bucket: str

    type_name = "exoscale"
    location_key = "zone"

    @property
    def location(self) -> str:
        return self.zone

    @property
    def endpoint(self) -> str:
        """SOS (S3-compatible) endpoint URL."""
        return f"https://sos-{self.zone}.exo.io"

    @property
    def access_key(self) -> str:
        return self.api_key

    @property
    def secret_key(self) -> str:
        return self.api_secret

    @property
    def api_base(self) -> str:
        """API host for the zone; request paths carry the /v2 prefix."""
        return f"https://api-{self.zone}.exoscale.com"


ProviderConfig = Union[ScalewayProviderConfig, ExoscaleProviderConfig]

PROVIDER_TYPES = {
    ScalewayProviderConfig.type_name: ScalewayProviderConfig,
    ExoscaleProviderConfig.type_name: ExoscaleProviderConfig,
}

# Region/zone become part of endpoint host names (fr-par, de-fra-1, ch-gva-2)
LOCATION_PATTERN = re.compile(r"^[a-z0-9]+(-[a-z0-9]+)*$")


def validate_provider(name: str, config: ProviderConfig) -> ProviderConfig:
    """Reject a config whose region/zone cannot form an endpoint host name."""
    if not LOCATION_PATTERN.match(config.location or ""):
        raise ConfigurationError(
            f"Provider '{name}' has invalid {config.location_key} '{config.location}' "
            f"(expected lowercase letters, digits and dashes, e.g. fr-par or de-fra-1)",
            config_key=f"{name}.{config.location_key}",
        )
    return config


def provider_from_dict(name: str, data: Dict) -> ProviderConfig:
    """Build a provider config from its serialized form."""
    if not isinstance(data, dict):
        raise ConfigurationError(f"Provider '{name}' is not a mapping", config_key=name)
    type_name = data.get("type")
    cls = PROVIDER_TYPES.get(type_name)
    if cls is None:
        raise ConfigurationError(
            f"Provider '{name}' has unknown type '{type_name}' "
            f"(expected one of: {', '.join(sorted(PROVIDER_TYPES))})",
            config_key=f"{name}.type",
        )
    kwargs = {}
    for f in fields(cls):
        value = data.get(f.name)
        if value is None or value == "":
            raise ConfigurationError(f"Provider '{name}' is missing '{f.name}'",
                                     config_key=f"{name}.{f.name}")
        kwargs[f.name] = str(value)
    return validate_provider(name, cls(**kwargs))


def provider_to_dict(config: ProviderConfig) -> Dict:
    data = {"type": config.type_name}
    data.update(asdict(config))
    return data


class ProviderRegistry:
    """In-memory set of named provider configurations."""

    def __init__(self, providers: Optional[Dict[str, ProviderConfig]] = None):
        self._providers: Dict[str, ProviderConfig] = dict(providers or {})

    def get(self, name: str) -> Optional[ProviderConfig]:
        return self._providers.get(name)

    def list(self) -> List[str]:
        return sorted(self._providers)

    def put(self, name: str, config: ProviderConfig) -> None:
        self._providers[name] = config

    def remove(self, name: str) -> Optional[ProviderConfig]:
        return self._providers.pop(name, None)

    def items(self):
        return [(name, self._providers[name]) for name in self.list()]

    def __len__(self) -> int:
        return len(self._providers)

    def to_dict(self) -> Dict:
        return {"providers": {name: provider_to_dict(cfg) for name, cfg in self.items()}}

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "ProviderRegistry":
        data = data or {}
        if not isinstance(data, dict):
            raise ConfigurationError("Config root must be a mapping")
        raw = data.get("providers") or {}
        if not isinstance(raw, dict):
            raise ConfigurationError("'providers' must be a mapping", config_key="providers")
        return cls({str(name): provider_from_dict(str(name), cfg) for name, cfg in raw.items()})


def default_config_path() -> Path:
    """OS-specific default config file path."""
    return Path(platformdirs.user_config_dir(APP_NAME)) / CONFIG_FILENAME


def config_path(custom_path: Optional[Union[str, Path]] = None) -> Path:
    """Resolve the config path: explicit > PROPRION_CONFIG > default."""
    if custom_path:
        return Path(custom_path)
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)
    return default_config_path()


def load(custom_path: Optional[Union[str, Path]] = None) -> ProviderRegistry:
    """Load the registry, or return an empty one if the file does not exist."""
    path = config_path(custom_path)
    if not path.exists():
        logger.debug("Config not found at %s — starting empty", path)
        return ProviderRegistry()
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as exc:
        raise ConfigurationError(f"Failed to read config file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Failed to parse config file {path}: {exc}") from exc
    registry = ProviderRegistry.from_dict(data)
    logger.info("Config loaded from %s: %d provider(s)", path, len(registry))
    return registry


def save(registry: ProviderRegistry, custom_path: Optional[Union[str, Path]] = None) -> Path:
    """Write the registry to disk (mode 0600) and return the path used."""
    path = config_path(custom_path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            yaml.safe_dump(registry.to_dict(), f, default_flow_style=False, sort_keys=False)
        os.chmod(path, 0o600)
    except OSError as exc:
        raise ConfigurationError(f"Failed to write config file {path}: {exc}") from exc
    logger.info("Config saved to %s", path)
    return path
