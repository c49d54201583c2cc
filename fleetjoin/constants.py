"""Centralized constants and enums for fleetjoin.

Tag keys, filesystem paths and default retry budgets live here so the
bootstrap protocol and the launch contract agree on the same values.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Final

# =============================================================================
# AWS Resource Tags
# =============================================================================


class FleetTag(StrEnum):
    """Tag keys read by the directory lookup and emitted at launch."""

    NAME = "Name"
    CLUSTER = "Cluster"
    ROLE = "Role"
    AUTOSCALER_ENABLED = "k8s.io/cluster-autoscaler/enabled"


AUTOSCALER_OWNED_PREFIX: Final = "k8s.io/cluster-autoscaler/"

CONTROL_PLANE_ROLE: Final = "control-plane"
WORKER_ROLE: Final = "worker"


# =============================================================================
# EC2 Instance States
# =============================================================================


class InstanceState(StrEnum):
    """EC2 instance state names."""

    RUNNING = "running"
    PENDING = "pending"
    STOPPED = "stopped"
    TERMINATED = "terminated"


# =============================================================================
# Cluster Agent
# =============================================================================

DEFAULT_API_PORT: Final = 6443
K3S_INSTALL_URL: Final = "https://get.k3s.io"
K3S_AGENT_SERVICE: Final = "k3s-agent"
K3S_AGENT_UNINSTALL: Final = "/usr/local/bin/k3s-agent-uninstall.sh"
REACHABILITY_TIMEOUT: Final = 5.0
INSTALLER_TIMEOUT: Final = 600
AGENT_ACTIVE_CHECKS: Final = 30
AGENT_ACTIVE_INTERVAL: Final = 2.0


# =============================================================================
# Package Manager
# =============================================================================

DPKG_LOCKS: Final = (
    "/var/lib/dpkg/lock-frontend",
    "/var/lib/dpkg/lock",
    "/var/lib/apt/lists/lock",
)
DEFAULT_PACKAGES: Final = ("curl", "ca-certificates")


# =============================================================================
# Filesystem Paths
# =============================================================================

CONFIG_PATH: Final = "/etc/fleetjoin/fleetjoin.toml"
STATUS_DIR: Final = "/var/lib/fleetjoin"
LOG_FILE: Final = "/var/log/fleetjoin.log"


# =============================================================================
# Retry Budgets
# =============================================================================

LOCK_POLL_INTERVAL: Final = 5.0
INSTALL_MAX_ATTEMPTS: Final = 5
INSTALL_RETRY_DELAY: Final = 10.0
DISCOVERY_MAX_ATTEMPTS: Final = 10
DISCOVERY_BASE_DELAY: Final = 1.0
DISCOVERY_MAX_DELAY: Final = 60.0
JOIN_MAX_CYCLES: Final = 3
