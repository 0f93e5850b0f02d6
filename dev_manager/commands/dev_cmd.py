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

"""Dev environment subcommands (start, stop, clean)."""

from __future__ import annotations

from pathlib import Path

import typer

from dev_manager import console
from dev_manager.config import StartOptions, display_config, resolve_config
from dev_manager.constants import DEFAULT_RUNNER_CONFIG
from dev_manager.daemon import DaemonSupervisor, StopResult
from dev_manager.orchestrator import DevOrchestrator, build_context

app = typer.Typer(help="Manage the ephemeral dev environment.")


@app.command()
def start(
    config: str = typer.Argument(DEFAULT_RUNNER_CONFIG, help="Runner config file"),
    detach: bool = typer.Option(False, "--detach", "-d", help="Run in the background"),
    kubeconfig: Path | None = typer.Option(
        None, "--kubeconfig", help="Kubeconfig to merge credentials into (overrides DEV_KUBECONFIG_PATH)"),
    runner: str | None = typer.Option(None, "--runner", help="Workload runner binary"),
    poll_timeout: float | None = typer.Option(
        None, "--poll-timeout", help="Give up waiting for the cluster after N seconds"),
) -> None:
    """Create a cluster, run the workload against it, then delete it."""
    cfg = resolve_config(kubeconfig=kubeconfig, runner=runner, poll_timeout=poll_timeout)
    options = StartOptions(config_path=config, detach=detach)
    display_config(cfg, options)
    DevOrchestrator(build_context(cfg)).start(options)


@app.command()
def stop() -> None:
    """Stop the background dev environment."""
    cfg = resolve_config()
    result = DaemonSupervisor(cfg.pid_file, cfg.log_file).stop()
    if result is StopResult.STOPPED:
        console.print("[green]\u2705 Dev environment was stopped[/green]")
    else:
        console.print("[yellow]\u2139\ufe0f  Dev environment is not running[/yellow]")


@app.command()
def clean() -> None:
    """Delete clusters and credentials left behind by an interrupted run."""
    cfg = resolve_config()
    count = DevOrchestrator(build_context(cfg)).clean()
    if count:
        console.print(f"[green]\u2705 Cleaned up {count} cluster(s)[/green]")
    else:
        console.print("[yellow]\u2139\ufe0f  Nothing to clean up[/yellow]")
