"""DI wiring for one bootstrap run.

Usage:
    >>> from injector import Injector
    >>> from fleetjoin.module import FleetjoinModule
    >>>
    >>> injector = Injector([FleetjoinModule(config)])
    >>> outcome = injector.get(BootstrapCoordinator).run()
"""

from __future__ import annotations

import time

import boto3
from injector import Binder, Injector, Module, provider, singleton

from fleetjoin.config import BootstrapConfig
from fleetjoin.coordinator import BootstrapCoordinator
from fleetjoin.directory import InstanceDirectory
from fleetjoin.join import ClusterJoinExecutor
from fleetjoin.packages import PackageInstallGuard
from fleetjoin.retry import Sleep
from fleetjoin.secrets import SecretStore
from fleetjoin.shell import CommandRunner, run_command


class FleetjoinModule(Module):
    """Binds the config, AWS clients and the five bootstrap components.

    Args:
        config: Validated bootstrap configuration.
        run: Command runner for host side effects.
        sleep: Sleep used by every retry loop.
    """

    def __init__(
        self,
        config: BootstrapConfig,
        *,
        run: CommandRunner = run_command,
        sleep: Sleep = time.sleep,
    ) -> None:
        self._config = config
        self._run = run
        self._sleep = sleep

    def configure(self, binder: Binder) -> None:
        binder.bind(BootstrapConfig, to=self._config)

    @singleton
    @provider
    def provide_session(self, config: BootstrapConfig) -> boto3.Session:
        """Provide singleton boto3 session for the configured region."""
        return boto3.Session(region_name=config.region)

    @singleton
    @provider
    def provide_directory(self, session: boto3.Session, config: BootstrapConfig) -> InstanceDirectory:
        return InstanceDirectory(
            session.client("ec2", region_name=config.region),
            config.region,
            cluster_tag_key=config.directory.cluster_tag_key,
            role_tag_key=config.directory.role_tag_key,
            control_plane_role=config.directory.control_plane_role,
            api_port=config.identity.api_port,
        )

    @singleton
    @provider
    def provide_secrets(self, session: boto3.Session, config: BootstrapConfig) -> SecretStore:
        return SecretStore(
            session.client("secretsmanager", region_name=config.region),
            config.region,
            secret_key=config.secret_key,
        )

    @singleton
    @provider
    def provide_guard(self, config: BootstrapConfig) -> PackageInstallGuard:
        return PackageInstallGuard(
            self._run,
            lock_paths=config.lock_paths,
            lock_policy=config.lock_policy,
            install_policy=config.install_policy,
            sleep=self._sleep,
        )

    @singleton
    @provider
    def provide_executor(self, config: BootstrapConfig) -> ClusterJoinExecutor:
        return ClusterJoinExecutor(config.node.record(), self._run, sleep=self._sleep)

    @singleton
    @provider
    def provide_coordinator(
        self,
        config: BootstrapConfig,
        guard: PackageInstallGuard,
        directory: InstanceDirectory,
        secrets: SecretStore,
        executor: ClusterJoinExecutor,
    ) -> BootstrapCoordinator:
        return BootstrapCoordinator(
            config.identity,
            config.region,
            guard=guard,
            directory=directory,
            secrets=secrets,
            executor=executor,
            packages=config.packages,
            discovery_policy=config.discovery_policy,
            secret_policy=config.secret_policy,
            join_cycles=config.join_cycles,
            sleep=self._sleep,
        )


def build_coordinator(config: BootstrapConfig) -> BootstrapCoordinator:
    return Injector([FleetjoinModule(config)]).get(BootstrapCoordinator)


__all__ = [
    "FleetjoinModule",
    "build_coordinator",
]
