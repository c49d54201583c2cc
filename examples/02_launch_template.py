"""Print the user data and tags for a worker launch template."""

import json

from fleetjoin import load_config
from fleetjoin.launch import asg_tags, render_user_data, worker_tags

if __name__ == "__main__":
    config = load_config(
        overrides={
            "cluster": {"name": "demo", "region": "us-east-1", "secret_id": "demo/k3s-token"},
            "packages": {"install": ["curl", "ca-certificates", "nfs-common"]},
        },
    )

    print(render_user_data(config, install_spec="fleetjoin==0.1.0"))
    print(json.dumps(asg_tags("demo-workers", worker_tags(config)), indent=2))
