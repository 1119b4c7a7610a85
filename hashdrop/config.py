from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import quote

import yaml

from hashdrop.errors import ConfigError


logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.yaml"
HOSTS_DIRNAME = "hosts"
DEFAULT_CONFIG_DIRECTORIES = ("~/.config/hashdrop", "/etc/hashdrop")
ENV_CONFIG = "HASHDROP_CONFIG"
ENV_HOST = "HASHDROP_HOST"
DEFAULT_PREFIX_LENGTH = 32
MIN_PREFIX_LENGTH = 8
MAX_PREFIX_LENGTH = 64


@dataclass(slots=True)
class Host:
    alias: str
    folder: str
    url: str
    hostname: str | None = None
    user: str | None = None
    group: str | None = None
    prefix_length: int = DEFAULT_PREFIX_LENGTH

    def get_hostname(self) -> str:
        return self.hostname or self.alias

    def get_url(self, relative_path: str) -> str:
        return f"{self.url.rstrip('/')}/{quote(relative_path, safe='/')}"


@dataclass(slots=True)
class HashdropConfig:
    default_host: str | None = None
    details: bool = False
    prefix_length: int = DEFAULT_PREFIX_LENGTH
    verify_via_hash: bool = True
    hosts: dict[str, Host] = field(default_factory=dict)

    def get_host(self, alias: str | None = None) -> Host:
        alias = alias or self.default_host
        if alias is None:
            if not self.hosts:
                raise ConfigError("No hosts configured, define some!")
            if len(self.hosts) == 1:
                return next(iter(self.hosts.values()))
            raise ConfigError(
                "More than one host entry defined but neither `default_host` set in config "
                "nor --host given via command line."
            )
        try:
            return self.hosts[alias]
        except KeyError:
            raise ConfigError(f"Did not find alias: {alias}") from None


def _typed(data: dict[str, Any], key: str, expected: type, default: Any = None, *, context: str) -> Any:
    value = data.get(key, default)
    if value is None:
        return default
    # bool is an int subclass, reject it where a number is expected
    if not isinstance(value, expected) or (expected is int and isinstance(value, bool)):
        raise ConfigError(f"{context}: invalid type for key '{key}', expected {expected.__name__}")
    return value


def _required(data: dict[str, Any], key: str, expected: type, *, context: str) -> Any:
    value = _typed(data, key, expected, context=context)
    if value is None:
        raise ConfigError(f"{context}: required key '{key}' not defined!")
    return value


def check_prefix_length(length: int, *, context: str = "config") -> int:
    if not MIN_PREFIX_LENGTH <= length <= MAX_PREFIX_LENGTH:
        raise ConfigError(
            f"{context}: prefix_length needs to be between {MIN_PREFIX_LENGTH} "
            f"and {MAX_PREFIX_LENGTH} characters, got {length}."
        )
    return length


def host_from_dict(alias: str, data: Any, config: HashdropConfig) -> Host:
    context = f"host '{alias}'"
    if not isinstance(data, dict):
        raise ConfigError(f"Invalid yaml data for {context}")
    prefix_length = _typed(data, "prefix_length", int, config.prefix_length, context=context)
    return Host(
        alias=alias,
        folder=_required(data, "folder", str, context=context),
        url=_required(data, "url", str, context=context),
        hostname=_typed(data, "hostname", str, context=context),
        user=_typed(data, "user", str, context=context),
        group=_typed(data, "group", str, context=context),
        prefix_length=check_prefix_length(prefix_length, context=context),
    )


def config_from_dict(data: Any) -> HashdropConfig:
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError("Root object in configuration file is no dictionary!")

    context = "config"
    config = HashdropConfig()
    config.prefix_length = check_prefix_length(
        _typed(data, "prefix_length", int, DEFAULT_PREFIX_LENGTH, context=context)
    )
    config.details = _typed(data, "details", bool, False, context=context)
    config.verify_via_hash = _typed(data, "verify_via_hash", bool, True, context=context)
    config.default_host = os.getenv(ENV_HOST) or _typed(data, "default_host", str, context=context)

    hosts = data.get("hosts")
    if hosts is None:
        logger.debug("No 'hosts'-entry in config file.")
    elif not isinstance(hosts, dict):
        raise ConfigError(
            "'hosts' entry in config file needs to be dictionary mapping host-alias to configuration!"
        )
    else:
        for alias, host_data in hosts.items():
            config.hosts[str(alias)] = host_from_dict(str(alias), host_data, config)
    return config


def _read_yaml(path: Path) -> Any:
    try:
        return yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"Error while loading config file {path}: {exc}") from exc


def load_config_dir(directory: str | Path) -> HashdropConfig | None:
    """Load `config.yaml` plus `hosts/*.yaml` from `directory`, or None if absent."""
    config_dir = Path(directory).expanduser()
    config_file = config_dir / CONFIG_FILENAME
    if not config_file.is_file():
        logger.debug("Could not read configuration file '%s'", config_file)
        return None

    config = config_from_dict(_read_yaml(config_file))

    hosts_dir = config_dir / HOSTS_DIRNAME
    if hosts_dir.is_dir():
        for host_file in sorted(hosts_dir.glob("*.yaml")):
            alias = host_file.stem
            if alias in config.hosts:
                raise ConfigError(f"Host {alias} configured in config.yaml and as host-file.")
            config.hosts[alias] = host_from_dict(alias, _read_yaml(host_file), config)
    return config


def load_config(directory: str | Path | None = None) -> HashdropConfig:
    if directory is not None:
        candidates = [directory]
    elif os.getenv(ENV_CONFIG):
        candidates = [os.environ[ENV_CONFIG]]
    else:
        candidates = list(DEFAULT_CONFIG_DIRECTORIES)

    for candidate in candidates:
        config = load_config_dir(candidate)
        if config is not None:
            return config
    raise ConfigError(
        f"Did not find valid configuration! Looked in: {', '.join(str(c) for c in candidates)}"
    )
