"""Custom exception hierarchy for fleetjoin.

All fleetjoin exceptions inherit from FleetjoinError. The leaf clients
raise them without deciding retryability; the coordinator classifies them.
"""

from __future__ import annotations

from collections.abc import Sequence


class FleetjoinError(Exception):
    """Base exception for all fleetjoin errors."""


class ConfigurationError(FleetjoinError):
    """Raised for invalid configuration or missing required settings."""


class FatalInstallError(FleetjoinError):
    """Raised when package installation keeps failing - do not retry."""

    def __init__(self, packages: Sequence[str], attempts: int, reason: str = "unknown") -> None:
        self.packages = tuple(packages)
        self.attempts = attempts
        self.reason = reason
        super().__init__(
            f"Failed to install {', '.join(self.packages)} after {attempts} attempts: {reason}"
        )


class MasterNotFoundError(FleetjoinError):
    """Raised when no running control-plane instance is visible yet."""

    def __init__(self, cluster_name: str, reason: str = "no running control-plane instance") -> None:
        self.cluster_name = cluster_name
        self.reason = reason
        super().__init__(f"Master for cluster '{cluster_name}' not found: {reason}")


class DirectoryUnavailableError(MasterNotFoundError):
    """Raised when the instance directory itself could not be queried."""


class FatalDirectoryError(FleetjoinError):
    """Raised when more than one running instance claims the control-plane role."""

    def __init__(self, cluster_name: str, instance_ids: Sequence[str]) -> None:
        self.cluster_name = cluster_name
        self.instance_ids = tuple(instance_ids)
        super().__init__(
            f"Cluster '{cluster_name}' has {len(self.instance_ids)} running control-plane "
            f"instances ({', '.join(self.instance_ids)}); expected exactly one"
        )


class SecretUnavailableError(FleetjoinError):
    """Raised when the join secret could not be read, for any reason."""

    def __init__(self, secret_id: str, reason: str = "unknown") -> None:
        self.secret_id = secret_id
        self.reason = reason
        super().__init__(f"Secret '{secret_id}' unavailable: {reason}")


class JoinError(FleetjoinError):
    """Raised when the node could not join the cluster. Membership is unchanged."""

    def __init__(self, master: str, reason: str = "unknown") -> None:
        self.master = master
        self.reason = reason
        super().__init__(f"Join against {master} failed: {reason}")
