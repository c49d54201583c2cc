"""Launch-side half of the autoscaling contract.

The Auto Scaling group stamps these tags on every worker it launches and
boots each one with the user data rendered here, which installs fleetjoin
and runs ``fleetjoin bootstrap``. Nothing in the bootstrap path reads the
autoscaler tags; they are emitted for the autoscaler's own bookkeeping.
"""

from __future__ import annotations

import json
from typing import Any

from fleetjoin.config import BootstrapConfig
from fleetjoin.constants import AUTOSCALER_OWNED_PREFIX, CONFIG_PATH, LOG_FILE, FleetTag
from fleetjoin.retry import RetryPolicy

DEFAULT_INSTALL_SPEC = "fleetjoin"


def worker_tags(config: BootstrapConfig) -> dict[str, str]:
    """Tags every launched worker carries."""
    name = config.identity.cluster_name
    return {
        FleetTag.NAME: f"{name}-{config.node.role}",
        config.directory.cluster_tag_key: name,
        config.directory.role_tag_key: config.node.role,
        FleetTag.AUTOSCALER_ENABLED: "true",
        f"{AUTOSCALER_OWNED_PREFIX}{name}": "owned",
    }


def asg_tags(asg_name: str, tags: dict[str, str]) -> list[dict[str, Any]]:
    """Format tags for autoscaling CreateOrUpdateTags, propagated at launch."""
    return [
        {
            "ResourceId": asg_name,
            "ResourceType": "auto-scaling-group",
            "Key": key,
            "Value": value,
            "PropagateAtLaunch": True,
        }
        for key, value in sorted(tags.items())
    ]


def _toml_value(value: Any) -> str:
    match value:
        case bool():
            return "true" if value else "false"
        case int() | float():
            return str(value)
        case str():
            return json.dumps(value)
        case list() | tuple():
            return "[" + ", ".join(_toml_value(v) for v in value) + "]"
        case _:
            raise TypeError(f"Cannot render {type(value).__name__} as TOML")


def _policy_values(policy: RetryPolicy) -> dict[str, Any]:
    # 0 reads back as "no limit"
    return {
        "max_attempts": policy.max_attempts or 0,
        "delay": policy.delay,
        "backoff": policy.backoff,
        "max_delay": policy.max_delay,
    }


def render_config(config: BootstrapConfig) -> str:
    """Render the config a worker boots with as TOML."""
    sections: dict[str, dict[str, Any]] = {
        "cluster": {
            "name": config.identity.cluster_name,
            "region": config.region,
            "secret_id": config.identity.secret_id,
            "api_port": config.identity.api_port,
        },
        "directory": {
            "cluster_tag_key": config.directory.cluster_tag_key,
            "role_tag_key": config.directory.role_tag_key,
            "control_plane_role": config.directory.control_plane_role,
        },
        "node": {"role": config.node.role},
        "packages": {"install": list(config.packages), "locks": list(config.lock_paths)},
        "join": {"cycles": config.join_cycles},
        "status": {"dir": config.status_dir},
        "logging": {"level": config.log.level, "file": config.log.file or LOG_FILE},
        "retry.lock": _policy_values(config.lock_policy),
        "retry.install": _policy_values(config.install_policy),
        "retry.discovery": _policy_values(config.discovery_policy),
        "retry.secret": _policy_values(config.secret_policy),
    }
    if config.secret_key:
        sections["cluster"]["secret_key"] = config.secret_key
    if config.node.name:
        sections["node"]["name"] = config.node.name

    lines: list[str] = []
    for section, values in sections.items():
        lines.append(f"[{section}]")
        lines.extend(f"{key} = {_toml_value(value)}" for key, value in values.items())
        lines.append("")
    return "\n".join(lines)


def render_user_data(
    config: BootstrapConfig,
    *,
    install_spec: str = DEFAULT_INSTALL_SPEC,
    config_path: str = CONFIG_PATH,
) -> str:
    """Worker boot script for the launch template.

    Python and pip come from the base image; everything else, including the
    cluster agent prerequisites, is handled by ``fleetjoin bootstrap``.
    """
    return "\n".join([
        "#!/bin/bash",
        "set -euo pipefail",
        "exec > >(tee -a /var/log/fleetjoin-user-data.log) 2>&1",
        "",
        f"mkdir -p {config_path.rsplit('/', 1)[0]}",
        f"cat > {config_path} <<'FLEETJOIN_EOF'",
        render_config(config).rstrip(),
        "FLEETJOIN_EOF",
        "",
        f"python3 -m pip install --quiet {install_spec}",
        f"exec fleetjoin bootstrap --config {config_path}",
        "",
    ])
