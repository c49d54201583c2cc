from __future__ import annotations

from typing import Any

import pytest
from fakes import (
    IDENTITY,
    LOCK,
    REGION,
    FakeEC2,
    FakeHost,
    FakeSecretsManager,
    SleepRecorder,
    always_reachable,
)

from fleetjoin.coordinator import BootstrapCoordinator
from fleetjoin.directory import InstanceDirectory
from fleetjoin.join import ClusterJoinExecutor
from fleetjoin.packages import PackageInstallGuard
from fleetjoin.secrets import SecretStore
from fleetjoin.types import WorkerNodeRecord


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def make_coordinator(sleeps: SleepRecorder):
    def factory(
        host: FakeHost,
        ec2: FakeEC2,
        secrets: FakeSecretsManager,
        *,
        probe=always_reachable,
        **kwargs: Any,
    ) -> BootstrapCoordinator:
        guard = PackageInstallGuard(host, lock_paths=(LOCK,), sleep=sleeps)
        executor = ClusterJoinExecutor(
            WorkerNodeRecord("ip-10-0-2-7"),
            host,
            probe=probe,
            uninstall_script="/nonexistent/k3s-agent-uninstall.sh",
            sleep=sleeps,
        )
        return BootstrapCoordinator(
            IDENTITY,
            REGION,
            guard=guard,
            directory=InstanceDirectory(ec2, REGION),
            secrets=SecretStore(secrets, REGION),
            executor=executor,
            packages=("curl",),
            sleep=sleeps,
            **kwargs,
        )

    return factory
