from __future__ import annotations

from fakes import SleepRecorder
from injector import Injector

from fleetjoin.config import load_config
from fleetjoin.coordinator import BootstrapCoordinator
from fleetjoin.directory import InstanceDirectory
from fleetjoin.join import ClusterJoinExecutor
from fleetjoin.module import FleetjoinModule
from fleetjoin.packages import PackageInstallGuard
from fleetjoin.retry import RetryPolicy
from fleetjoin.secrets import SecretStore

ENV = {
    "FLEETJOIN_CLUSTER_NAME": "demo",
    "FLEETJOIN_SECRET_ID": "demo/join-token",
    "FLEETJOIN_REGION": "eu-west-1",
    "FLEETJOIN_NODE_NAME": "worker-1",
}


class TestFleetjoinModule:
    def test_wires_components_from_config(self) -> None:
        config = load_config(None, env=ENV, overrides={"retry": {"discovery": {"max_attempts": 3}}})
        injector = Injector([FleetjoinModule(config, sleep=SleepRecorder())])

        coordinator = injector.get(BootstrapCoordinator)

        assert coordinator.identity == config.identity
        assert coordinator.region == "eu-west-1"
        assert coordinator.discovery_policy == RetryPolicy.exponential(3, 1.0, 60.0)
        assert coordinator.directory is injector.get(InstanceDirectory)
        assert coordinator.secrets is injector.get(SecretStore)
        assert coordinator.guard is injector.get(PackageInstallGuard)
        assert coordinator.executor is injector.get(ClusterJoinExecutor)
        assert coordinator.directory.region == "eu-west-1"
        assert coordinator.executor.node.node_name == "worker-1"
