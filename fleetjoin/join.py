"""Cluster join through the k3s agent installer.

Joining is the one non-idempotent step of the protocol, so the executor
checks existing membership first and undoes a half-finished install
before reporting failure.
"""

from __future__ import annotations

import socket
import time
from collections.abc import Callable
from pathlib import Path

from loguru import logger

from fleetjoin.constants import (
    AGENT_ACTIVE_CHECKS,
    AGENT_ACTIVE_INTERVAL,
    INSTALLER_TIMEOUT,
    K3S_AGENT_SERVICE,
    K3S_AGENT_UNINSTALL,
    K3S_INSTALL_URL,
    REACHABILITY_TIMEOUT,
)
from fleetjoin.exceptions import JoinError
from fleetjoin.retry import Sleep
from fleetjoin.shell import CommandRunner, run_command
from fleetjoin.types import JoinResult, JoinToken, MasterEndpoint, WorkerNodeRecord

log = logger.bind(component="join")

# address, port, timeout -> reachable
type Probe = Callable[[str, int, float], bool]


def tcp_probe(address: str, port: int, timeout: float) -> bool:
    try:
        with socket.create_connection((address, port), timeout=timeout):
            return True
    except OSError:
        return False


def agent_exec_args(node: WorkerNodeRecord) -> str:
    """INSTALL_K3S_EXEC value registering the node under its identity."""
    return f"agent --node-name {node.node_name} --node-label {node.label}"


class ClusterJoinExecutor:
    """Join this node to the cluster as a k3s agent.

    Args:
        node: Identity to register under.
        run: Command runner for systemctl and the installer.
        probe: Reachability check for the master API port.
        install_url: k3s install script URL.
        uninstall_script: Script that removes a partial agent install.
        sleep: Injected for tests.
    """

    def __init__(
        self,
        node: WorkerNodeRecord,
        run: CommandRunner = run_command,
        *,
        probe: Probe = tcp_probe,
        install_url: str = K3S_INSTALL_URL,
        uninstall_script: str = K3S_AGENT_UNINSTALL,
        active_checks: int = AGENT_ACTIVE_CHECKS,
        active_interval: float = AGENT_ACTIVE_INTERVAL,
        sleep: Sleep = time.sleep,
    ) -> None:
        self.node = node
        self._run = run
        self._probe = probe
        self.install_url = install_url
        self.uninstall_script = uninstall_script
        self.active_checks = active_checks
        self.active_interval = active_interval
        self._sleep = sleep

    def is_joined(self) -> bool:
        return self._run(["systemctl", "is-active", "--quiet", K3S_AGENT_SERVICE]).success

    def join(self, master: MasterEndpoint, token: JoinToken) -> JoinResult:
        """Register this node with the master.

        Returns:
            ALREADY_JOINED if the agent is already running, JOINED otherwise.

        Raises:
            JoinError: Master unreachable, token rejected, or agent never
                came up. No partial membership is left behind.
        """
        if self.is_joined():
            log.info("Node {node} is already a cluster member", node=self.node.node_name)
            return JoinResult.ALREADY_JOINED

        if not self._probe(master.address, master.port, REACHABILITY_TIMEOUT):
            raise JoinError(str(master), "API port unreachable")

        log.info("Joining {node} to {master}", node=self.node.node_name, master=master)
        result = self._run(
            ["sh", "-c", f"curl -sfL {self.install_url} | sh -s -"],
            env={
                "K3S_URL": master.url,
                "K3S_TOKEN": token.reveal(),
                "INSTALL_K3S_EXEC": agent_exec_args(self.node),
            },
            timeout=INSTALLER_TIMEOUT,
        )
        if not result.success:
            self._rollback()
            raise JoinError(str(master), f"installer failed ({result.summary()})")

        if not self._wait_active():
            self._rollback()
            raise JoinError(str(master), f"{K3S_AGENT_SERVICE} did not become active")

        log.info("Node {node} joined {master}", node=self.node.node_name, master=master)
        return JoinResult.JOINED

    def _wait_active(self) -> bool:
        for check in range(self.active_checks):
            if self.is_joined():
                return True
            if check < self.active_checks - 1:
                self._sleep(self.active_interval)
        return False

    def _rollback(self) -> None:
        if not Path(self.uninstall_script).exists():
            return
        log.warning("Removing partial agent install")
        result = self._run([self.uninstall_script])
        if not result.success:
            log.error("Agent uninstall failed: {err}", err=result.summary())
