"""Control-plane discovery through EC2 instance tags.

The master is found by query, never remembered: the instance behind the
control-plane role can be replaced between two lookups, so every call
hits DescribeInstances again.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger

from fleetjoin.constants import CONTROL_PLANE_ROLE, DEFAULT_API_PORT, FleetTag, InstanceState
from fleetjoin.exceptions import DirectoryUnavailableError, FatalDirectoryError, MasterNotFoundError
from fleetjoin.types import MasterEndpoint

if TYPE_CHECKING:
    from mypy_boto3_ec2 import EC2Client

log = logger.bind(component="directory")


def master_filters(
    cluster_name: str,
    *,
    cluster_tag_key: str = FleetTag.CLUSTER,
    role_tag_key: str = FleetTag.ROLE,
    control_plane_role: str = CONTROL_PLANE_ROLE,
) -> list[dict[str, Any]]:
    """DescribeInstances filters selecting running control-plane instances."""
    return [
        {"Name": f"tag:{cluster_tag_key}", "Values": [cluster_name]},
        {"Name": f"tag:{role_tag_key}", "Values": [control_plane_role]},
        {"Name": "instance-state-name", "Values": [InstanceState.RUNNING]},
    ]


def _running_instances(pages: Any) -> list[dict[str, Any]]:
    # The state filter is the API's contract; re-check in case a page races a transition.
    return [
        instance
        for page in pages
        for reservation in page.get("Reservations", [])
        for instance in reservation.get("Instances", [])
        if instance.get("State", {}).get("Name", InstanceState.RUNNING) == InstanceState.RUNNING
    ]


class InstanceDirectory:
    """Read-only view of the EC2 instance directory for one region.

    Args:
        ec2: boto3 EC2 client bound to ``region``.
        region: Region the client queries.
        cluster_tag_key: Tag key holding the cluster name.
        role_tag_key: Tag key holding the node role.
        control_plane_role: Role value carried by the master.
        api_port: Port stamped on the returned endpoint.
    """

    def __init__(
        self,
        ec2: EC2Client,
        region: str,
        *,
        cluster_tag_key: str = FleetTag.CLUSTER,
        role_tag_key: str = FleetTag.ROLE,
        control_plane_role: str = CONTROL_PLANE_ROLE,
        api_port: int = DEFAULT_API_PORT,
    ) -> None:
        self._ec2 = ec2
        self.region = region
        self.cluster_tag_key = cluster_tag_key
        self.role_tag_key = role_tag_key
        self.control_plane_role = control_plane_role
        self.api_port = api_port

    def find_master(self, cluster_name: str, region: str | None = None) -> MasterEndpoint:
        """Locate the single running control-plane instance of a cluster.

        Raises:
            MasterNotFoundError: No running master yet (retryable).
            DirectoryUnavailableError: The EC2 API call failed (retryable).
            FatalDirectoryError: More than one running master (not retryable).
        """
        if region is not None and region != self.region:
            raise ValueError(f"Directory is bound to {self.region}, not {region}")

        filters = master_filters(
            cluster_name,
            cluster_tag_key=self.cluster_tag_key,
            role_tag_key=self.role_tag_key,
            control_plane_role=self.control_plane_role,
        )
        try:
            paginator = self._ec2.get_paginator("describe_instances")
            instances = _running_instances(paginator.paginate(Filters=filters))
        except (ClientError, BotoCoreError) as e:
            raise DirectoryUnavailableError(cluster_name, f"DescribeInstances failed: {e}") from e

        match instances:
            case []:
                raise MasterNotFoundError(cluster_name)
            case [instance]:
                return self._endpoint(cluster_name, instance)
            case _:
                ids = sorted(i.get("InstanceId", "?") for i in instances)
                log.error("Duplicate control-plane instances for {cluster}: {ids}", cluster=cluster_name, ids=ids)
                raise FatalDirectoryError(cluster_name, ids)

    def _endpoint(self, cluster_name: str, instance: dict[str, Any]) -> MasterEndpoint:
        instance_id = instance.get("InstanceId", "")
        address = instance.get("PrivateIpAddress")
        if not address:
            raise MasterNotFoundError(cluster_name, f"{instance_id} has no private address yet")
        log.info("Control plane for {cluster} is {id} at {addr}", cluster=cluster_name, id=instance_id, addr=address)
        return MasterEndpoint(instance_id=instance_id, address=address, port=self.api_port)
