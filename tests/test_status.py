from __future__ import annotations

import json
from pathlib import Path

import pytest

from fleetjoin.coordinator import BootstrapOutcome, BootstrapState
from fleetjoin.exceptions import MasterNotFoundError
from fleetjoin.retry import RetryState
from fleetjoin.status import read_status, write_status
from fleetjoin.types import JoinResult, MasterEndpoint


def _joined() -> BootstrapOutcome:
    return BootstrapOutcome(
        state=BootstrapState.JOINED,
        transitions=(BootstrapState.INIT, BootstrapState.JOINED),
        retries=(RetryState("discover-master", attempts=2, elapsed=1.0),),
        result=JoinResult.JOINED,
        master=MasterEndpoint("i-master", "10.0.1.5"),
        cycles=1,
    )


def _aborted() -> BootstrapOutcome:
    return BootstrapOutcome(
        state=BootstrapState.ABORTED,
        transitions=(BootstrapState.INIT, BootstrapState.ABORTED),
        error=MasterNotFoundError("demo"),
        cycles=1,
    )


class TestWriteStatus:
    def test_joined_marker(self, tmp_path: Path) -> None:
        path = write_status(tmp_path / "status", _joined())

        assert path == tmp_path / "status" / "joined"
        data = json.loads(path.read_text())
        assert data["state"] == "joined"
        assert data["result"] == "joined"
        assert data["master"] == "10.0.1.5:6443"
        assert data["master_instance_id"] == "i-master"
        assert data["retries"] == [
            {"operation": "discover-master", "attempts": 2, "elapsed": 1.0, "last_error": None},
        ]
        assert data["error"] is None

    def test_aborted_marker_records_error(self, tmp_path: Path) -> None:
        data = json.loads(write_status(tmp_path, _aborted()).read_text())
        assert data["state"] == "aborted"
        assert data["error"].startswith("MasterNotFoundError: Master for cluster 'demo'")

    def test_markers_are_exclusive(self, tmp_path: Path) -> None:
        write_status(tmp_path, _aborted())
        write_status(tmp_path, _joined())

        assert (tmp_path / "joined").is_file()
        assert not (tmp_path / "aborted").exists()
        assert not list(tmp_path.glob("*.tmp"))

    def test_non_terminal_rejected(self, tmp_path: Path) -> None:
        outcome = BootstrapOutcome(state=BootstrapState.JOINING, transitions=())
        with pytest.raises(ValueError, match="not terminal"):
            write_status(tmp_path, outcome)


class TestReadStatus:
    def test_none_before_bootstrap(self, tmp_path: Path) -> None:
        assert read_status(tmp_path) is None

    def test_reads_current_marker(self, tmp_path: Path) -> None:
        write_status(tmp_path, _joined())
        assert read_status(tmp_path)["state"] == "joined"
