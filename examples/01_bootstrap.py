"""Bootstrap a worker in-process.

Equivalent to ``fleetjoin bootstrap``, for hosts that drive the join
from their own Python entrypoint:

    init -> installing-deps -> discovering-master -> fetching-token -> joining -> joined
"""

import os

from fleetjoin import load_config
from fleetjoin.logging import LogConfig, setup_logging
from fleetjoin.module import build_coordinator
from fleetjoin.status import write_status

if __name__ == "__main__":
    config = load_config(env=os.environ, overrides={"cluster": {"name": "demo", "secret_id": "demo/k3s-token"}})
    setup_logging(LogConfig(level="DEBUG"))

    outcome = build_coordinator(config).run()
    write_status(config.status_dir, outcome)

    print(f"state: {outcome.state}")
    print(f"master: {outcome.master}")
    for retry in outcome.retries:
        print(f"  {retry.operation}: {retry.attempts} attempt(s) in {retry.elapsed:.1f}s")
