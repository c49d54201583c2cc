"""Boot status markers.

One marker file per terminal state (``joined`` or ``aborted``) under the
status directory, holding a JSON summary for health checks and operators.
Writing one removes the other so a re-run never leaves both behind.
"""

from __future__ import annotations

import json
import os
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from fleetjoin.coordinator import BootstrapOutcome, BootstrapState

MARKERS: dict[BootstrapState, str] = {
    BootstrapState.JOINED: "joined",
    BootstrapState.ABORTED: "aborted",
}


def summarize(outcome: BootstrapOutcome) -> dict[str, Any]:
    return {
        "state": outcome.state.value,
        "result": outcome.result.value if outcome.result else None,
        "master": str(outcome.master) if outcome.master else None,
        "master_instance_id": outcome.master.instance_id if outcome.master else None,
        "cycles": outcome.cycles,
        "transitions": [s.value for s in outcome.transitions],
        "retries": [r.as_dict() for r in outcome.retries],
        "error": f"{type(outcome.error).__name__}: {outcome.error}" if outcome.error else None,
        "finished_at": datetime.now(UTC).isoformat(),
    }


def write_status(status_dir: str | Path, outcome: BootstrapOutcome) -> Path:
    """Write the marker for a terminal outcome and return its path."""
    if not outcome.state.terminal:
        raise ValueError(f"Outcome state {outcome.state} is not terminal")

    directory = Path(status_dir)
    directory.mkdir(parents=True, exist_ok=True)

    target = directory / MARKERS[outcome.state]
    tmp = target.with_suffix(".tmp")
    tmp.write_text(json.dumps(summarize(outcome), indent=2) + "\n")
    os.replace(tmp, target)

    for state, name in MARKERS.items():
        if state != outcome.state:
            (directory / name).unlink(missing_ok=True)
    return target


def read_status(status_dir: str | Path) -> dict[str, Any] | None:
    """Return the current marker's summary, or None if bootstrap never finished."""
    directory = Path(status_dir)
    for name in MARKERS.values():
        path = directory / name
        if path.is_file():
            return json.loads(path.read_text())
    return None
