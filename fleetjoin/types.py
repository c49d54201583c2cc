"""Value types shared by the bootstrap protocol.

Everything here is immutable. Masters and tokens are fetched fresh on
every bootstrap cycle and are never cached across cycles.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

from fleetjoin.constants import DEFAULT_API_PORT, WORKER_ROLE


@dataclass(frozen=True, slots=True)
class ClusterIdentity:
    """Per-deployment identity, fixed at provisioning time.

    Args:
        cluster_name: Value of the cluster tag on every instance.
        secret_id: Secrets Manager id (name or ARN) of the join token.
        api_port: Control-plane API port on the master.
    """

    cluster_name: str
    secret_id: str
    api_port: int = DEFAULT_API_PORT


@dataclass(frozen=True, slots=True)
class MasterEndpoint:
    """Private address of the single running control-plane instance."""

    instance_id: str
    address: str
    port: int = DEFAULT_API_PORT

    @property
    def url(self) -> str:
        return f"https://{self.address}:{self.port}"

    def __str__(self) -> str:
        return f"{self.address}:{self.port}"


@dataclass(frozen=True, slots=True)
class JoinToken:
    """Opaque join secret. Masked in repr so it never lands in logs."""

    _value: str = field(repr=False)

    def reveal(self) -> str:
        return self._value

    def __str__(self) -> str:
        return "JoinToken(****)"

    def __bool__(self) -> bool:
        return bool(self._value)


@dataclass(frozen=True, slots=True)
class WorkerNodeRecord:
    """Identity the worker registers under once joined."""

    node_name: str
    role: str = WORKER_ROLE

    @property
    def label(self) -> str:
        return f"role={self.role}"


class JoinResult(StrEnum):
    """Successful outcomes of a join call."""

    ALREADY_JOINED = "already-joined"
    JOINED = "joined"
