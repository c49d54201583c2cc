"""TOML and environment configuration for the bootstrap agent.

Sources, lowest precedence first: built-in defaults, the TOML file
(/etc/fleetjoin/fleetjoin.toml unless another path is given), FLEETJOIN_*
environment variables, then explicit overrides (CLI flags).

Example fleetjoin.toml:

    [cluster]
    name = "analytics"
    region = "eu-west-1"
    secret_id = "analytics/join-token"

    [retry.discovery]
    max_attempts = 10
    delay = 1.0
    backoff = "exponential"
    max_delay = 60.0
"""

from __future__ import annotations

import socket
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from fleetjoin.constants import (
    CONFIG_PATH,
    CONTROL_PLANE_ROLE,
    DEFAULT_API_PORT,
    DEFAULT_PACKAGES,
    DPKG_LOCKS,
    INSTALL_MAX_ATTEMPTS,
    INSTALL_RETRY_DELAY,
    JOIN_MAX_CYCLES,
    LOCK_POLL_INTERVAL,
    STATUS_DIR,
    WORKER_ROLE,
    FleetTag,
)
from fleetjoin.coordinator import DEFAULT_DISCOVERY_POLICY
from fleetjoin.exceptions import ConfigurationError
from fleetjoin.logging import LogConfig
from fleetjoin.retry import RetryPolicy
from fleetjoin.types import ClusterIdentity, WorkerNodeRecord

type RawConfig = dict[str, Any]

# env var -> (section path, converter)
_ENV_KEYS: dict[str, tuple[tuple[str, ...], Any]] = {
    "FLEETJOIN_CLUSTER_NAME": (("cluster", "name"), str),
    "FLEETJOIN_SECRET_ID": (("cluster", "secret_id"), str),
    "FLEETJOIN_SECRET_KEY": (("cluster", "secret_key"), str),
    "FLEETJOIN_API_PORT": (("cluster", "api_port"), int),
    "FLEETJOIN_REGION": (("cluster", "region"), str),
    "FLEETJOIN_NODE_NAME": (("node", "name"), str),
    "FLEETJOIN_NODE_ROLE": (("node", "role"), str),
    "FLEETJOIN_PACKAGES": (("packages", "install"), lambda v: [p.strip() for p in v.split(",") if p.strip()]),
    "FLEETJOIN_LOG_LEVEL": (("logging", "level"), str.upper),
}

_REGION_FALLBACKS = ("AWS_REGION", "AWS_DEFAULT_REGION")


@dataclass(frozen=True, slots=True)
class DirectoryConfig:
    """Tag contract used to find the control plane."""

    cluster_tag_key: str = FleetTag.CLUSTER
    role_tag_key: str = FleetTag.ROLE
    control_plane_role: str = CONTROL_PLANE_ROLE


@dataclass(frozen=True, slots=True)
class NodeConfig:
    """Worker identity. The node name defaults to the hostname."""

    name: str | None = None
    role: str = WORKER_ROLE

    def record(self) -> WorkerNodeRecord:
        return WorkerNodeRecord(node_name=self.name or socket.gethostname(), role=self.role)


@dataclass(frozen=True, slots=True)
class BootstrapConfig:
    """Everything one bootstrap attempt needs."""

    identity: ClusterIdentity
    region: str
    secret_key: str | None = None
    directory: DirectoryConfig = field(default_factory=DirectoryConfig)
    node: NodeConfig = field(default_factory=NodeConfig)
    packages: tuple[str, ...] = DEFAULT_PACKAGES
    lock_paths: tuple[str, ...] = DPKG_LOCKS
    lock_policy: RetryPolicy = field(default_factory=lambda: RetryPolicy.fixed(None, LOCK_POLL_INTERVAL))
    install_policy: RetryPolicy = field(
        default_factory=lambda: RetryPolicy.fixed(INSTALL_MAX_ATTEMPTS, INSTALL_RETRY_DELAY),
    )
    discovery_policy: RetryPolicy = DEFAULT_DISCOVERY_POLICY
    secret_policy: RetryPolicy = DEFAULT_DISCOVERY_POLICY
    join_cycles: int = JOIN_MAX_CYCLES
    status_dir: str = STATUS_DIR
    log: LogConfig = field(default_factory=LogConfig)


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path, *, required: bool) -> RawConfig:
    if not path.is_file():
        if required:
            raise ConfigurationError(f"Config file {path} not found")
        return {}
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML in {path}: {e}") from e


def _nest(path: tuple[str, ...], value: Any) -> RawConfig:
    for key in reversed(path):
        value = {key: value}
    return value


def env_overrides(env: Mapping[str, str]) -> RawConfig:
    """Translate FLEETJOIN_* (and AWS region) variables into a raw config."""
    raw: RawConfig = {}
    for region_var in _REGION_FALLBACKS:
        if env.get(region_var):
            raw = _nest(("cluster", "region"), env[region_var])
            break

    for name, (path, convert) in _ENV_KEYS.items():
        if (value := env.get(name)) is None or value == "":
            continue
        try:
            raw = _deep_merge(raw, _nest(path, convert(value)))
        except ValueError as e:
            raise ConfigurationError(f"Invalid value for {name}: {value!r}") from e
    return raw


def load_raw(
    path: Path | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: RawConfig | None = None,
) -> RawConfig:
    file_cfg = _read_toml(path or Path(CONFIG_PATH), required=path is not None)
    merged = _deep_merge(file_cfg, env_overrides(env or {}))
    return _deep_merge(merged, overrides or {})


def _policy(raw: RawConfig, default: RetryPolicy, section: str) -> RetryPolicy:
    if not raw:
        return default
    max_attempts = raw.get("max_attempts", default.max_attempts)
    # TOML has no null: 0 means "no limit"
    if max_attempts == 0:
        max_attempts = None
    try:
        return RetryPolicy(
            max_attempts=max_attempts,
            delay=float(raw.get("delay", default.delay)),
            backoff=raw.get("backoff", default.backoff),
            max_delay=float(raw.get("max_delay", default.max_delay)),
        )
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid [retry.{section}]: {e}") from e


def _require(section: RawConfig, key: str, name: str) -> Any:
    value = section.get(key)
    if value in (None, ""):
        raise ConfigurationError(f"Missing required setting {name}")
    return value


def _int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(f"Invalid {name}: expected an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid {name}: expected an integer, got {value!r}") from e


def _strings(value: Any, name: str) -> tuple[str, ...]:
    if not isinstance(value, list | tuple) or not all(isinstance(v, str) for v in value):
        raise ConfigurationError(f"Invalid {name}: expected a list of strings, got {value!r}")
    return tuple(value)


def build_config(raw: RawConfig) -> BootstrapConfig:
    """Validate a merged raw config and build the typed BootstrapConfig."""
    cluster = raw.get("cluster", {})
    identity = ClusterIdentity(
        cluster_name=_require(cluster, "name", "cluster.name / FLEETJOIN_CLUSTER_NAME"),
        secret_id=_require(cluster, "secret_id", "cluster.secret_id / FLEETJOIN_SECRET_ID"),
        api_port=_int(cluster.get("api_port", DEFAULT_API_PORT), "cluster.api_port"),
    )
    region = _require(cluster, "region", "cluster.region / FLEETJOIN_REGION / AWS_REGION")

    retry = raw.get("retry", {})
    defaults = BootstrapConfig(identity=identity, region=region)
    discovery_policy = _policy(retry.get("discovery", {}), defaults.discovery_policy, "discovery")
    packages = raw.get("packages", {})
    logging_raw = raw.get("logging", {})
    join_cycles = _int(raw.get("join", {}).get("cycles", JOIN_MAX_CYCLES), "join.cycles")
    if join_cycles < 1:
        raise ConfigurationError(f"join.cycles must be >= 1, got {join_cycles}")

    try:
        return BootstrapConfig(
            identity=identity,
            region=region,
            secret_key=cluster.get("secret_key"),
            directory=DirectoryConfig(**raw.get("directory", {})),
            node=NodeConfig(**raw.get("node", {})),
            packages=_strings(packages.get("install", list(DEFAULT_PACKAGES)), "packages.install"),
            lock_paths=_strings(packages.get("locks", list(DPKG_LOCKS)), "packages.locks"),
            lock_policy=_policy(retry.get("lock", {}), defaults.lock_policy, "lock"),
            install_policy=_policy(retry.get("install", {}), defaults.install_policy, "install"),
            discovery_policy=discovery_policy,
            # Secret fetches share the discovery policy unless configured separately
            secret_policy=_policy(retry.get("secret", {}), discovery_policy, "secret"),
            join_cycles=join_cycles,
            status_dir=raw.get("status", {}).get("dir", STATUS_DIR),
            log=LogConfig(**logging_raw),
        )
    except TypeError as e:
        raise ConfigurationError(f"Unknown configuration key: {e}") from e


def load_config(
    path: Path | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: RawConfig | None = None,
) -> BootstrapConfig:
    return build_config(load_raw(path, env=env, overrides=overrides))
