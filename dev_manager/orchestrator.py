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

"""Orchestration of one dev run: create, connect, run, and always tear down."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import yaml
from rich.panel import Panel

from dev_manager import console, kubeconfig, logger
from dev_manager.api import ClusterApi
from dev_manager.cluster import ClusterClient, ClusterPhase, ClusterSnapshot, generate_name
from dev_manager.config import DevConfig, SessionConfig, StartOptions, load_session, require_session
from dev_manager.daemon import DaemonSupervisor, DetachedHandle, handle_termination
from dev_manager.errors import (
    CleanupFailed,
    ClusterFailedRemotely,
    CredentialError,
    DevError,
)
from dev_manager.kubeconfig import BundleMembers
from dev_manager.state import LifecycleRecord, StateStore
from dev_manager.workload import require_runner, run_workload


# ============================================================================
# Context
# ============================================================================

@dataclass
class DevContext:
    """Everything a dev run needs, passed explicitly instead of globals.

    Attributes:
        config: Resolved local configuration.
        session: Login session (server, project, token).
        clusters: Remote cluster lifecycle client, or None when not signed in.
        store: Lifecycle record store.
        supervisor: Detached run supervisor.
        name_generator: Produces candidate cluster names.
        require_runner: Capability probe for the workload runner.
        run_workload: Runs the workload until it exits.
    """

    config: DevConfig
    session: SessionConfig
    clusters: ClusterClient | None
    store: StateStore
    supervisor: DaemonSupervisor
    name_generator: Callable[[], str] = generate_name
    require_runner: Callable[[str], None] = require_runner
    run_workload: Callable[[str, str], None] = run_workload


def build_context(config: DevConfig) -> DevContext:
    """Wire the collaborators for *config*.

    Raises:
        SessionInvalid: If the session file is unreadable.
    """
    session = load_session(config.resolved_session_file)
    clusters = None
    if session.signed_in and session.project:
        api = ClusterApi(
            server=session.server,
            project=session.project,
            token=session.token,
            timeout=config.request_timeout_seconds,
        )
        clusters = ClusterClient(
            api,
            creation_source=config.creation_source,
            poll_interval=config.poll_interval_seconds,
            poll_timeout=config.poll_timeout_seconds,
        )
    return DevContext(
        config=config,
        session=session,
        clusters=clusters,
        store=StateStore(config.state_file),
        supervisor=DaemonSupervisor(config.pid_file, config.log_file),
    )


@dataclass
class ClusterRun:
    """What is known about the cluster of the current run."""

    cluster_id: int | str | None = None
    cluster_name: str | None = None
    detached: DetachedHandle | None = None
    cleanup_errors: list[str] = field(default_factory=list)


# ============================================================================
# Orchestrator
# ============================================================================

class DevOrchestrator:
    """Drive create -> poll -> connect -> run -> disconnect -> delete."""

    def __init__(self, ctx: DevContext) -> None:
        self.ctx = ctx

    @property
    def clusters(self) -> ClusterClient:
        if self.ctx.clusters is None:
            require_session(self.ctx.session)
        return self.ctx.clusters

    # -- Steps --

    def check_prerequisites(self, options: StartOptions) -> None:
        """Probe the runner, the session, and (detached) the daemon slot."""
        console.print(Panel.fit("Checking prerequisites", style="bold blue"))
        self.ctx.require_runner(self.ctx.config.runner)
        require_session(self.ctx.session)
        if options.detach:
            self.ctx.supervisor.ensure_not_running()
        console.print("[green]\u2705 Prerequisites satisfied[/green]")

    def create_cluster(self, run: ClusterRun) -> None:
        console.print(Panel.fit("Creating cluster", style="bold blue"))
        name = self.ctx.name_generator()
        run.cluster_id, run.cluster_name = self.clusters.create(name)
        logger.info("Cluster requested: id=%s name=%s", run.cluster_id, run.cluster_name)
        # Recorded before any later step can fail; removed only once deleted.
        self.ctx.store.put(LifecycleRecord(
            cluster_id=str(run.cluster_id),
            cluster_name=run.cluster_name,
            kubeconfig_path=str(self.ctx.config.kubeconfig_path),
        ))

    def wait_for_cluster(self, run: ClusterRun) -> ClusterSnapshot:
        console.print("[yellow]\u2139\ufe0f  Checking the cluster status...[/yellow]")
        snapshot = self.clusters.poll_to_terminal(run.cluster_name)
        if snapshot.phase is ClusterPhase.FAILED:
            raise ClusterFailedRemotely(f"Cluster with name: {run.cluster_name} failed to be created.")
        console.print(f"[green]\u2705 Cluster with name: {snapshot.name} was created.[/green]")
        return snapshot

    def connect_credentials(self, run: ClusterRun, snapshot: ClusterSnapshot) -> None:
        """Merge the cluster bundle into the kubeconfig and switch context to it."""
        if not snapshot.kubeconfig:
            raise CredentialError(f"Cluster '{snapshot.name}' was deployed without credentials")
        bundle = kubeconfig.decode_bundle(snapshot.kubeconfig)
        kubeconfig_path = self.ctx.config.kubeconfig_path

        existing = kubeconfig.load(kubeconfig_path)
        if existing is not None:
            self.ctx.store.set_previous_current_context(
                kubeconfig_path, kubeconfig.get_current_context(existing),
            )

        merged = kubeconfig.merge(existing, bundle)
        merged = kubeconfig.set_current_context(merged, kubeconfig.get_current_context(bundle))
        self.ctx.store.put(LifecycleRecord(
            cluster_id=str(run.cluster_id),
            cluster_name=run.cluster_name,
            kubeconfig_path=str(kubeconfig_path),
            members=kubeconfig.bundle_members(bundle),
        ))
        kubeconfig.save(kubeconfig_path, merged)
        console.print(f"[green]  \u2713 Merged credentials into {kubeconfig_path}[/green]")

    def launch(self, run: ClusterRun, options: StartOptions) -> None:
        runner = self.ctx.config.runner
        if options.detach:
            console.print(
                f"[yellow]\u2139\ufe0f  Running {runner} in the background, logs: {self.ctx.config.log_file}[/yellow]"
            )
            run.detached = self.ctx.supervisor.spawn_detached()
        self.ctx.run_workload(runner, options.config_path)

    # -- Teardown --

    def disconnect_credentials(self, cluster_id: int | str) -> None:
        """Exclude a recorded bundle from its kubeconfig and restore the prior context.

        The record itself is kept, with its members emptied, until the
        cluster is deleted.
        """
        record = self.ctx.store.get(cluster_id)
        if record is None or record.members == BundleMembers():
            return

        kubeconfig_path = Path(record.kubeconfig_path)
        existing = kubeconfig.load(kubeconfig_path)
        remaining = kubeconfig.exclude(existing, record.members)
        if remaining is not None:
            previous = self.ctx.store.previous_current_context(kubeconfig_path)
            restored = kubeconfig.restore_previous_context(remaining, previous)
            remaining = kubeconfig.set_current_context(remaining, restored)
        kubeconfig.save(kubeconfig_path, remaining)
        self.ctx.store.put(record.model_copy(update={"members": BundleMembers()}))
        console.print(f"[green]  \u2713 Removed cluster credentials from {kubeconfig_path}[/green]")

    def teardown(self, cluster_id: int | str, cluster_name: str) -> list[str]:
        """Disconnect credentials and delete the cluster; report each failure.

        Returns:
            Human-readable descriptions of the steps that failed.
        """
        console.print(Panel.fit(f"Cleaning up cluster {cluster_name}", style="bold blue"))
        errors: list[str] = []
        try:
            self.disconnect_credentials(cluster_id)
        except (DevError, OSError, yaml.YAMLError) as e:
            errors.append(f"Kubeconfig was not restored: {e}")
            console.print(f"[red]\u274c Kubeconfig was not restored: {e}[/red]")

        try:
            self.clusters.delete(cluster_name)
            self.ctx.store.remove(cluster_id)
            console.print(f"[green]\u2705 Cluster {cluster_name} deleted[/green]")
        except DevError as e:
            errors.append(str(e))
            console.print(f"[red]\u274c {e}[/red]")
        return errors

    # -- Entry points --

    def start(self, options: StartOptions) -> None:
        """Run the full dev lifecycle.

        Cleanup runs on every exit path once the cluster exists, including
        KeyboardInterrupt and termination signals. Cleanup failures are
        raised only when nothing else failed first.

        Raises:
            DevError: On any unrecoverable failure.
        """
        self.check_prerequisites(options)

        run = ClusterRun()
        failure: BaseException | None = None
        with handle_termination() as terminator:
            try:
                self.create_cluster(run)
                snapshot = self.wait_for_cluster(run)
                self.connect_credentials(run, snapshot)
                self.launch(run, options)
            except BaseException as e:
                failure = e
                raise
            finally:
                terminator.begin_cleanup()
                self._finish(run, failure)

    def _finish(self, run: ClusterRun, failure: BaseException | None) -> None:
        try:
            if run.cluster_id is not None and run.cluster_name is not None:
                run.cleanup_errors = self.teardown(run.cluster_id, run.cluster_name)
        finally:
            if run.detached is not None:
                self.ctx.supervisor.release(run.detached)

        if run.cleanup_errors and failure is None:
            raise CleanupFailed("; ".join(run.cleanup_errors))
        if run.cleanup_errors:
            logger.warning("Cleanup finished with errors after an earlier failure: %s", failure)

    def clean(self) -> int:
        """Tear down every cluster left recorded by an interrupted run.

        Returns:
            Number of recorded clusters processed.

        Raises:
            AlreadyRunning: If a detached run is alive and still owns its cluster.
            CleanupFailed: If any teardown step failed.
        """
        self.ctx.supervisor.ensure_not_running()
        records = self.ctx.store.records()
        errors: list[str] = []
        for record in records:
            errors.extend(self.teardown(record.cluster_id, record.cluster_name))
        if errors:
            raise CleanupFailed("; ".join(errors))
        return len(records)
