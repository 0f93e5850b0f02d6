# /*
# Copyright 2026 The Dev Manager Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# */

"""
cli.py - CLI for ephemeral dev cluster environments.

Subcommands:
    dev start  Create a cluster, merge its kubeconfig, run skaffold, tear down
    dev stop   Stop a detached dev run
    dev clean  Tear down clusters left behind by a killed run

Examples:
    # Run skaffold against a fresh cluster until Ctrl-C
    dev-manager dev start

    # Same, in the background with a custom skaffold config
    dev-manager dev start skaffold.dev.yaml --detach

    # Stop the background run (its cluster is deleted on the way out)
    dev-manager dev stop

Environment Variables:
    All settings can be overridden via DEV_* environment variables:
    - DEV_STATE_DIR (default: ~/.config/dev-manager)
    - DEV_KUBECONFIG_PATH (default: $KUBECONFIG or ~/.kube/config)
    - DEV_RUNNER (default: skaffold)
    - DEV_POLL_INTERVAL_SECONDS (default: 5)
    - DEV_POLL_TIMEOUT_SECONDS (default: unset, wait forever)
"""

from __future__ import annotations

import logging
import sys

import typer

from dev_manager import console
from dev_manager.commands import dev_cmd

app = typer.Typer(
    help="Ephemeral dev cluster management.",
    no_args_is_help=True,
)


@app.callback()
def _main_callback() -> None:
    """Initialize logging for all subcommands."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )


app.add_typer(dev_cmd.app, name="dev")


def main() -> None:
    try:
        app()
    except Exception as e:
        console.print(f"[red]\u274c {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
