"""fleetjoin - join autoscaled workers to a single-master cluster.

Example:

    from fleetjoin import load_config, build_coordinator

    config = load_config()
    outcome = build_coordinator(config).run()
    if not outcome.joined:
        raise SystemExit(1)
"""

from fleetjoin.config import BootstrapConfig, load_config
from fleetjoin.coordinator import BootstrapCoordinator, BootstrapOutcome, BootstrapState
from fleetjoin.directory import InstanceDirectory
from fleetjoin.exceptions import (
    ConfigurationError,
    DirectoryUnavailableError,
    FatalDirectoryError,
    FatalInstallError,
    FleetjoinError,
    JoinError,
    MasterNotFoundError,
    SecretUnavailableError,
)
from fleetjoin.join import ClusterJoinExecutor
from fleetjoin.module import FleetjoinModule, build_coordinator
from fleetjoin.packages import PackageInstallGuard
from fleetjoin.retry import RetryPolicy, RetryState
from fleetjoin.secrets import SecretStore
from fleetjoin.types import ClusterIdentity, JoinResult, JoinToken, MasterEndpoint, WorkerNodeRecord

__version__ = "0.1.0"

__all__ = [
    "BootstrapConfig",
    "BootstrapCoordinator",
    "BootstrapOutcome",
    "BootstrapState",
    "ClusterIdentity",
    "ClusterJoinExecutor",
    "ConfigurationError",
    "DirectoryUnavailableError",
    "FatalDirectoryError",
    "FatalInstallError",
    "FleetjoinError",
    "FleetjoinModule",
    "InstanceDirectory",
    "JoinError",
    "JoinResult",
    "JoinToken",
    "MasterEndpoint",
    "MasterNotFoundError",
    "PackageInstallGuard",
    "RetryPolicy",
    "RetryState",
    "SecretStore",
    "SecretUnavailableError",
    "WorkerNodeRecord",
    "build_coordinator",
    "load_config",
]
