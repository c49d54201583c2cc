from __future__ import annotations

import json
from pathlib import Path

import pytest

from fleetjoin import cli
from fleetjoin.coordinator import BootstrapOutcome, BootstrapState

CONFIG = (
    '[cluster]\n'
    'name = "demo"\n'
    'region = "us-east-1"\n'
    'secret_id = "demo/join-token"\n'
    '\n[logging]\n'
    'console = false\n'
)


@pytest.fixture
def config_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    for var in ("FLEETJOIN_CLUSTER_NAME", "FLEETJOIN_REGION", "AWS_REGION", "AWS_DEFAULT_REGION"):
        monkeypatch.delenv(var, raising=False)
    path = tmp_path / "fleetjoin.toml"
    path.write_text(CONFIG)
    return path


class _StubCoordinator:
    def __init__(self, state: BootstrapState) -> None:
        self.state = state

    def run(self) -> BootstrapOutcome:
        return BootstrapOutcome(state=self.state, transitions=(BootstrapState.INIT, self.state))


class TestBootstrap:
    @pytest.mark.parametrize(
        ("state", "code"),
        [(BootstrapState.JOINED, 0), (BootstrapState.ABORTED, 1)],
    )
    def test_exit_code_and_marker(
        self, config_path: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch,
        state: BootstrapState, code: int,
    ) -> None:
        monkeypatch.setattr(cli, "build_coordinator", lambda config: _StubCoordinator(state))
        status_dir = tmp_path / "status"

        rc = cli.main(["--config", str(config_path), "bootstrap", "--status-dir", str(status_dir)])

        assert rc == code
        assert (status_dir / state.value).is_file()

    def test_unwritable_status_dir_keeps_exit_code(
        self, config_path: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setattr(cli, "build_coordinator", lambda config: _StubCoordinator(BootstrapState.JOINED))
        blocker = tmp_path / "blocker"
        blocker.write_text("")

        rc = cli.main(["--config", str(config_path), "bootstrap", "--status-dir", str(blocker / "status")])

        assert rc == cli.EXIT_JOINED

    def test_setup_failure_aborts_with_marker(
        self, config_path: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        def build(config):
            raise RuntimeError("no credentials")

        monkeypatch.setattr(cli, "build_coordinator", build)
        status_dir = tmp_path / "status"

        rc = cli.main(["--config", str(config_path), "bootstrap", "--status-dir", str(status_dir)])

        assert rc == cli.EXIT_ABORTED
        data = json.loads((status_dir / "aborted").read_text())
        assert data["error"] == "RuntimeError: no credentials"

    def test_missing_config_exits_2(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        rc = cli.main(["--config", str(tmp_path / "missing.toml"), "bootstrap"])

        assert rc == cli.EXIT_CONFIG
        assert "not found" in capsys.readouterr().err

    def test_region_flag_overrides(self, config_path: Path, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        seen = {}

        def build(config):
            seen["region"] = config.region
            return _StubCoordinator(BootstrapState.JOINED)

        monkeypatch.setattr(cli, "build_coordinator", build)
        cli.main([
            "--config", str(config_path), "bootstrap",
            "--region", "eu-west-1", "--status-dir", str(tmp_path / "s"),
        ])

        assert seen["region"] == "eu-west-1"


class TestPrinters:
    def test_tags(self, config_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert cli.main(["--config", str(config_path), "tags"]) == 0
        tags = json.loads(capsys.readouterr().out)
        assert tags["Cluster"] == "demo"
        assert tags["Role"] == "worker"

    def test_asg_tags(self, config_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert cli.main(["--config", str(config_path), "tags", "--asg", "demo-workers"]) == 0
        tags = json.loads(capsys.readouterr().out)
        assert all(t["ResourceId"] == "demo-workers" and t["PropagateAtLaunch"] for t in tags)

    def test_user_data(self, config_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert cli.main(["--config", str(config_path), "user-data"]) == 0
        out = capsys.readouterr().out
        assert out.startswith("#!/bin/bash")
        assert 'name = "demo"' in out
