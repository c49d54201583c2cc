"""APT installs that defer to the system package lock.

cloud-init and unattended-upgrades grab the dpkg lock during early boot.
The guard waits for them to let go (forever, at a fixed interval) and only
then installs, with a small fixed retry budget for the install itself.
It never removes or steals the lock.
"""

from __future__ import annotations

import time
from collections.abc import Sequence

from loguru import logger

from fleetjoin.constants import (
    DPKG_LOCKS,
    INSTALL_MAX_ATTEMPTS,
    INSTALL_RETRY_DELAY,
    LOCK_POLL_INTERVAL,
)
from fleetjoin.exceptions import FatalInstallError
from fleetjoin.retry import RetryPolicy, RetryState, Sleep
from fleetjoin.shell import CommandResult, CommandRunner, run_command

log = logger.bind(component="packages")

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


class _LockHeldError(Exception):
    """Package lock still held - poll again."""


class _InstallFailedError(Exception):
    """apt-get failed - retry."""

    def __init__(self, result: CommandResult) -> None:
        self.result = result
        super().__init__(result.summary())


class PackageInstallGuard:
    """Serialize apt operations behind the dpkg lock.

    Args:
        run: Command runner used for fuser, dpkg-query and apt-get.
        lock_paths: Lock files that must be free before installing.
        lock_policy: How to poll the lock. Default: every 5s, no limit.
        install_policy: Install retries. Default: 5 attempts, 10s apart.
        sleep: Injected for tests.
    """

    def __init__(
        self,
        run: CommandRunner = run_command,
        *,
        lock_paths: Sequence[str] = DPKG_LOCKS,
        lock_policy: RetryPolicy | None = None,
        install_policy: RetryPolicy | None = None,
        sleep: Sleep = time.sleep,
    ) -> None:
        self._run = run
        self.lock_paths = tuple(lock_paths)
        self.lock_policy = lock_policy or RetryPolicy.fixed(None, LOCK_POLL_INTERVAL)
        self.install_policy = install_policy or RetryPolicy.fixed(INSTALL_MAX_ATTEMPTS, INSTALL_RETRY_DELAY)
        self._sleep = sleep
        self.lock_state = RetryState("package-lock")
        self.install_state = RetryState("install-packages")

    # -------------------------------------------------------------------------
    # Lock
    # -------------------------------------------------------------------------

    def lock_holders(self) -> list[str]:
        """Lock files currently held by some process."""
        # fuser exits 0 when at least one process has the file open
        return [path for path in self.lock_paths if self._run(["fuser", path]).success]

    def wait_for_lock(self) -> None:
        """Block until every package lock is free."""

        def check() -> None:
            if held := self.lock_holders():
                log.info("Package lock held ({locks}), waiting", locks=", ".join(held))
                raise _LockHeldError(", ".join(held))

        self.lock_policy.call(check, on=_LockHeldError, state=self.lock_state, sleep=self._sleep)

    # -------------------------------------------------------------------------
    # Install
    # -------------------------------------------------------------------------

    def missing(self, packages: Sequence[str]) -> list[str]:
        """Packages not yet installed according to dpkg."""
        absent = []
        for package in packages:
            result = self._run(["dpkg-query", "-W", "-f=${Status}", package])
            if not (result.success and "install ok installed" in result.stdout):
                absent.append(package)
        return absent

    def ensure_installed(self, packages: Sequence[str]) -> None:
        """Install packages, waiting out the package lock first.

        Safe to call repeatedly: already-installed packages are skipped and
        an empty remainder is a no-op.

        Raises:
            FatalInstallError: Installation failed on every attempt.
        """
        self.lock_state = RetryState("package-lock")
        self.install_state = RetryState("install-packages")

        pending = self.missing(packages)
        if not pending:
            log.info("Packages already installed: {pkgs}", pkgs=", ".join(packages) or "none")
            return

        def attempt() -> None:
            self.wait_for_lock()
            for argv in (
                ["apt-get", "update", "-qq"],
                ["apt-get", "install", "-y", "-qq", *pending],
            ):
                result = self._run(argv, env=APT_ENV)
                if not result.success:
                    log.warning(
                        "{cmd} failed (attempt {n}): {err}",
                        cmd=" ".join(argv[:2]),
                        n=self.install_state.attempts,
                        err=result.summary(),
                    )
                    raise _InstallFailedError(result)

        try:
            self.install_policy.call(attempt, on=_InstallFailedError, state=self.install_state, sleep=self._sleep)
        except _InstallFailedError as e:
            raise FatalInstallError(pending, self.install_state.attempts, e.result.summary()) from e
        except _LockHeldError as e:
            # Only reachable with a bounded lock policy
            raise FatalInstallError(pending, self.install_state.attempts, f"package lock still held: {e}") from e

        log.info("Installed {pkgs}", pkgs=", ".join(pending))
