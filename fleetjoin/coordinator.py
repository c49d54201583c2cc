"""Bootstrap state machine run once per worker boot.

    INIT -> INSTALLING_DEPS -> DISCOVERING_MASTER -> FETCHING_TOKEN -> JOINING
         -> JOINED | ABORTED

Retryable faults are absorbed here under per-operation RetryPolicies;
only an exhausted budget or a non-retryable fault ends in ABORTED. There
is no recovery after ABORTED: the fleet manager replaces the instance.
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import StrEnum

from loguru import logger

from fleetjoin.constants import (
    DEFAULT_PACKAGES,
    DISCOVERY_BASE_DELAY,
    DISCOVERY_MAX_ATTEMPTS,
    DISCOVERY_MAX_DELAY,
    JOIN_MAX_CYCLES,
)
from fleetjoin.directory import InstanceDirectory
from fleetjoin.exceptions import (
    FatalDirectoryError,
    FatalInstallError,
    JoinError,
    MasterNotFoundError,
    SecretUnavailableError,
)
from fleetjoin.join import ClusterJoinExecutor
from fleetjoin.packages import PackageInstallGuard
from fleetjoin.retry import Clock, RetryPolicy, RetryState, Sleep
from fleetjoin.secrets import SecretStore
from fleetjoin.types import ClusterIdentity, JoinResult, JoinToken, MasterEndpoint

log = logger.bind(component="coordinator")


class BootstrapState(StrEnum):
    INIT = "init"
    INSTALLING_DEPS = "installing-deps"
    DISCOVERING_MASTER = "discovering-master"
    FETCHING_TOKEN = "fetching-token"
    JOINING = "joining"
    JOINED = "joined"
    ABORTED = "aborted"

    @property
    def terminal(self) -> bool:
        return self in (BootstrapState.JOINED, BootstrapState.ABORTED)


DEFAULT_DISCOVERY_POLICY = RetryPolicy.exponential(
    DISCOVERY_MAX_ATTEMPTS, DISCOVERY_BASE_DELAY, DISCOVERY_MAX_DELAY,
)


@dataclass(frozen=True, slots=True)
class BootstrapOutcome:
    """Terminal result of one bootstrap attempt."""

    state: BootstrapState
    transitions: tuple[BootstrapState, ...]
    retries: tuple[RetryState, ...] = ()
    result: JoinResult | None = None
    master: MasterEndpoint | None = None
    error: Exception | None = None
    cycles: int = 0

    @property
    def joined(self) -> bool:
        return self.state == BootstrapState.JOINED

    def attempts(self, operation: str) -> int:
        return sum(r.attempts for r in self.retries if r.operation == operation)


@dataclass(slots=True)
class _Run:
    transitions: list[BootstrapState] = field(default_factory=list)
    retries: list[RetryState] = field(default_factory=list)
    master: MasterEndpoint | None = None
    cycles: int = 0


class BootstrapCoordinator:
    """Drive guard, directory, secret store and join executor to a terminal state.

    Args:
        identity: Cluster name, API port and join secret id.
        region: AWS region of the directory and secret store.
        guard: Package install guard.
        directory: Control-plane lookup.
        secrets: Join token source.
        executor: Join executor.
        packages: Packages required before joining.
        discovery_policy: Retry policy for master discovery.
        secret_policy: Retry policy for token fetches. Defaults to the
            discovery policy.
        join_cycles: Full discover -> join cycles allowed on JoinError.
        sleep: Injected for tests.
        clock: Injected for tests.
    """

    def __init__(
        self,
        identity: ClusterIdentity,
        region: str,
        *,
        guard: PackageInstallGuard,
        directory: InstanceDirectory,
        secrets: SecretStore,
        executor: ClusterJoinExecutor,
        packages: Sequence[str] = DEFAULT_PACKAGES,
        discovery_policy: RetryPolicy = DEFAULT_DISCOVERY_POLICY,
        secret_policy: RetryPolicy | None = None,
        join_cycles: int = JOIN_MAX_CYCLES,
        sleep: Sleep = time.sleep,
        clock: Clock = time.monotonic,
    ) -> None:
        if join_cycles < 1:
            raise ValueError(f"join_cycles must be >= 1, got {join_cycles}")
        self.identity = identity
        self.region = region
        self.guard = guard
        self.directory = directory
        self.secrets = secrets
        self.executor = executor
        self.packages = tuple(packages)
        self.discovery_policy = discovery_policy
        self.secret_policy = secret_policy or discovery_policy
        self.join_cycles = join_cycles
        self._sleep = sleep
        self._clock = clock

    def run(self) -> BootstrapOutcome:
        """Run one bootstrap attempt to JOINED or ABORTED. Never raises for protocol faults."""
        run = _Run()
        self._enter(run, BootstrapState.INIT)
        try:
            return self._drive(run)
        except Exception as e:
            log.exception("Unexpected failure during bootstrap")
            return self._abort(run, e)

    # -------------------------------------------------------------------------
    # Phases
    # -------------------------------------------------------------------------

    def _drive(self, run: _Run) -> BootstrapOutcome:
        self._enter(run, BootstrapState.INSTALLING_DEPS)
        install_error: FatalInstallError | None = None
        try:
            self.guard.ensure_installed(self.packages)
        except FatalInstallError as e:
            install_error = e
        finally:
            run.retries.extend((self.guard.lock_state, self.guard.install_state))
        if install_error is not None:
            return self._abort(run, install_error)

        last_error: JoinError | None = None
        for cycle in range(1, self.join_cycles + 1):
            run.cycles = cycle

            self._enter(run, BootstrapState.DISCOVERING_MASTER)
            try:
                master = self._discover(run)
            except (MasterNotFoundError, FatalDirectoryError) as e:
                return self._abort(run, e)
            run.master = master

            self._enter(run, BootstrapState.FETCHING_TOKEN)
            try:
                token = self._fetch_token(run)
            except SecretUnavailableError as e:
                return self._abort(run, e)

            self._enter(run, BootstrapState.JOINING)
            try:
                result = self.executor.join(master, token)
            except JoinError as e:
                last_error = e
                log.warning(
                    "Join cycle {n}/{total} failed: {err}",
                    n=cycle, total=self.join_cycles, err=e,
                )
                continue
            finally:
                del token

            self._enter(run, BootstrapState.JOINED)
            return self._outcome(run, BootstrapState.JOINED, result=result)

        return self._abort(run, last_error)

    def _discover(self, run: _Run) -> MasterEndpoint:
        state = RetryState("discover-master")
        run.retries.append(state)
        master = self.discovery_policy.call(
            lambda: self.directory.find_master(self.identity.cluster_name, self.region),
            on=MasterNotFoundError,
            state=state,
            sleep=self._sleep,
            clock=self._clock,
        )
        if master.port != self.identity.api_port:
            master = MasterEndpoint(master.instance_id, master.address, self.identity.api_port)
        return master

    def _fetch_token(self, run: _Run) -> JoinToken:
        state = RetryState("fetch-token")
        run.retries.append(state)
        return self.secret_policy.call(
            lambda: self.secrets.fetch_join_token(self.identity.secret_id, self.region),
            on=SecretUnavailableError,
            state=state,
            sleep=self._sleep,
            clock=self._clock,
        )

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def _enter(self, run: _Run, state: BootstrapState) -> None:
        previous = run.transitions[-1] if run.transitions else None
        run.transitions.append(state)
        if previous is None:
            log.debug("Bootstrap of {cluster} starting", cluster=self.identity.cluster_name)
        else:
            log.info("{prev} -> {state}", prev=previous, state=state)

    def _abort(self, run: _Run, error: Exception | None) -> BootstrapOutcome:
        if not run.transitions or run.transitions[-1] != BootstrapState.ABORTED:
            self._enter(run, BootstrapState.ABORTED)
        log.error("Bootstrap aborted: {err}", err=error)
        return self._outcome(run, BootstrapState.ABORTED, error=error)

    def _outcome(
        self,
        run: _Run,
        state: BootstrapState,
        *,
        result: JoinResult | None = None,
        error: Exception | None = None,
    ) -> BootstrapOutcome:
        return BootstrapOutcome(
            state=state,
            transitions=tuple(run.transitions),
            retries=tuple(run.retries),
            result=result,
            master=run.master,
            error=error,
            cycles=run.cycles,
        )
