"""End-to-end lifecycle tests with fake remote API and workload."""

import os
import signal
import time
from unittest.mock import MagicMock

import pytest

from dev_manager import kubeconfig
from dev_manager.api import Err
from dev_manager.cluster import ClusterClient
from dev_manager.config import SessionConfig, StartOptions
from dev_manager.daemon import DaemonSupervisor, DetachedHandle
from dev_manager.errors import (
    AlreadyRunning,
    CleanupFailed,
    ClusterFailedRemotely,
    CreationFailed,
    CredentialError,
    Diagnostic,
    RunnerUnavailable,
    SessionInvalid,
)
from dev_manager.kubeconfig import BundleMembers
from dev_manager.orchestrator import DevContext, DevOrchestrator, build_context
from dev_manager.state import LifecycleRecord, StateStore

SESSION = SessionConfig(server="https://api.example.test", project="demo", token="t0k3n")


class Workload:
    """Records what the kubeconfig and state looked like while running."""

    def __init__(self, dev_config, store, error=None):
        self.dev_config = dev_config
        self.store = store
        self.error = error
        self.calls = []
        self.kubeconfig_during_run = None
        self.records_during_run = None

    def __call__(self, runner, config_path):
        self.calls.append((runner, config_path))
        self.kubeconfig_during_run = kubeconfig.load(self.dev_config.kubeconfig_path)
        self.records_during_run = self.store.records()
        if self.error is not None:
            raise self.error


def _context(dev_config, api, workload=None, supervisor=None, session=SESSION):
    store = StateStore(dev_config.state_file)
    return DevContext(
        config=dev_config,
        session=session,
        clusters=ClusterClient(api, creation_source="manual", poll_interval=0),
        store=store,
        supervisor=supervisor or DaemonSupervisor(dev_config.pid_file, dev_config.log_file),
        name_generator=lambda: "amy-lee",
        require_runner=lambda runner: None,
        run_workload=workload or Workload(dev_config, store),
    )


@pytest.fixture
def options():
    return StartOptions(config_path="skaffold.yaml")


class TestHappyPath:
    """Cluster deploys, workload runs, everything is undone afterwards."""

    def test_fresh_kubeconfig(self, dev_config, make_api, encoded, bundle, options):
        api = make_api(["deploying", "deploying", "deployed"], kubeconfig=encoded)
        ctx = _context(dev_config, api)
        workload = ctx.run_workload

        DevOrchestrator(ctx).start(options)

        assert workload.calls == [("skaffold", "skaffold.yaml")]
        assert workload.kubeconfig_during_run == bundle
        assert [(r.cluster_id, r.kubeconfig_path) for r in workload.records_during_run] == [
            ("42", str(dev_config.kubeconfig_path)),
        ]
        assert not dev_config.kubeconfig_path.exists()
        assert ctx.store.records() == []
        assert api.calls[0] == ("create", "amy-lee")
        assert api.calls[-1] == ("delete", "amy-lee")

    def test_existing_kubeconfig_switches_and_restores(
        self, dev_config, make_api, encoded, existing_kubeconfig, options,
    ):
        kubeconfig.save(dev_config.kubeconfig_path, existing_kubeconfig)
        api = make_api(["deployed"], kubeconfig=encoded)
        ctx = _context(dev_config, api)

        DevOrchestrator(ctx).start(options)

        during = ctx.run_workload.kubeconfig_during_run
        assert kubeconfig.get_current_context(during) == "amy-lee"
        assert kubeconfig.has_context(during, "home")
        assert kubeconfig.load(dev_config.kubeconfig_path) == existing_kubeconfig
        assert ctx.store.previous_current_context(dev_config.kubeconfig_path) == "home"

    def test_previous_context_removed_during_run(
        self, dev_config, make_api, encoded, existing_kubeconfig, options,
    ):
        kubeconfig.save(dev_config.kubeconfig_path, existing_kubeconfig)
        api = make_api(["deployed"], kubeconfig=encoded)
        ctx = _context(dev_config, api)

        def drop_home(runner, config_path):
            doc = kubeconfig.load(dev_config.kubeconfig_path)
            doc["contexts"] = [c for c in doc["contexts"] if c["name"] != "home"]
            kubeconfig.save(dev_config.kubeconfig_path, doc)

        ctx.run_workload = drop_home
        DevOrchestrator(ctx).start(options)

        remaining = kubeconfig.load(dev_config.kubeconfig_path)
        assert remaining["current-context"] == ""
        assert not kubeconfig.has_context(remaining, "amy-lee")


class TestFailures:
    """Failures before, during and after the workload."""

    def test_remote_failure_deletes_cluster(self, dev_config, make_api, options):
        api = make_api(["deploying", "failed"])
        ctx = _context(dev_config, api)

        with pytest.raises(ClusterFailedRemotely, match="amy-lee failed to be created"):
            DevOrchestrator(ctx).start(options)

        assert ctx.run_workload.calls == []
        assert not dev_config.kubeconfig_path.exists()
        assert api.calls[-1] == ("delete", "amy-lee")

    def test_remote_failure_with_failed_delete_keeps_record(self, dev_config, make_api, options):
        api = make_api(["failed"], delete_result=Err(Diagnostic(status_code=503, message="Unavailable")))
        ctx = _context(dev_config, api)

        with pytest.raises(ClusterFailedRemotely):
            DevOrchestrator(ctx).start(options)

        assert [(r.cluster_id, r.cluster_name) for r in ctx.store.records()] == [("42", "amy-lee")]

    def test_workload_crash_restores_kubeconfig(
        self, dev_config, make_api, encoded, existing_kubeconfig, options,
    ):
        kubeconfig.save(dev_config.kubeconfig_path, existing_kubeconfig)
        api = make_api(["deployed"], kubeconfig=encoded)
        store = StateStore(dev_config.state_file)
        ctx = _context(dev_config, api, workload=Workload(dev_config, store, error=RuntimeError("boom")))

        with pytest.raises(RuntimeError, match="boom"):
            DevOrchestrator(ctx).start(options)

        assert kubeconfig.load(dev_config.kubeconfig_path) == existing_kubeconfig
        assert ctx.store.records() == []
        assert api.calls[-1] == ("delete", "amy-lee")

    def test_keyboard_interrupt_still_cleans_up(self, dev_config, make_api, encoded, options):
        api = make_api(["deployed"], kubeconfig=encoded)
        store = StateStore(dev_config.state_file)
        ctx = _context(dev_config, api, workload=Workload(dev_config, store, error=KeyboardInterrupt()))

        with pytest.raises(KeyboardInterrupt):
            DevOrchestrator(ctx).start(options)

        assert not dev_config.kubeconfig_path.exists()
        assert api.calls[-1] == ("delete", "amy-lee")

    def test_creation_failure_skips_teardown(self, dev_config, make_api, options):
        api = make_api(["deployed"], create_result=Err(Diagnostic(status_code=422, message="Unprocessable")))
        ctx = _context(dev_config, api)

        with pytest.raises(CreationFailed):
            DevOrchestrator(ctx).start(options)

        assert api.calls == [("create", "amy-lee")]

    def test_missing_credentials(self, dev_config, make_api, options):
        api = make_api(["deployed"], kubeconfig=None)
        ctx = _context(dev_config, api)

        with pytest.raises(CredentialError):
            DevOrchestrator(ctx).start(options)

        assert api.calls[-1] == ("delete", "amy-lee")

    def test_failed_delete_is_reported(self, dev_config, make_api, encoded, options):
        api = make_api(
            ["deployed"], kubeconfig=encoded,
            delete_result=Err(Diagnostic(status_code=500, message="Internal Server Error")),
        )
        ctx = _context(dev_config, api)

        with pytest.raises(CleanupFailed, match="Failed to delete cluster 'amy-lee'"):
            DevOrchestrator(ctx).start(options)

        assert not dev_config.kubeconfig_path.exists()
        records = ctx.store.records()
        assert [(r.cluster_id, r.cluster_name) for r in records] == [("42", "amy-lee")]
        assert records[0].members == BundleMembers()

    def test_cleanup_failure_does_not_mask_earlier_error(self, dev_config, make_api, encoded, options):
        api = make_api(
            ["deployed"], kubeconfig=encoded,
            delete_result=Err(Diagnostic(status_code=500, message="Internal Server Error")),
        )
        store = StateStore(dev_config.state_file)
        ctx = _context(dev_config, api, workload=Workload(dev_config, store, error=RuntimeError("boom")))

        with pytest.raises(RuntimeError, match="boom"):
            DevOrchestrator(ctx).start(options)

        assert api.calls[-1] == ("delete", "amy-lee")


class TestPrerequisites:
    """Nothing remote happens when a prerequisite is missing."""

    def test_runner_missing(self, dev_config, make_api, options):
        api = make_api(["deployed"])
        ctx = _context(dev_config, api)

        def missing(runner):
            raise RunnerUnavailable(f"Required command '{runner}' not found. Please install it first.")

        ctx.require_runner = missing

        with pytest.raises(RunnerUnavailable):
            DevOrchestrator(ctx).start(options)

        assert api.calls == []

    @pytest.mark.parametrize("session,message", [
        (SessionConfig(), "not logged in"),
        (SessionConfig(server="https://api.example.test", token="t"), "project"),
    ])
    def test_session_required(self, dev_config, make_api, options, session, message):
        api = make_api(["deployed"])
        ctx = _context(dev_config, api, session=session)

        with pytest.raises(SessionInvalid, match=message):
            DevOrchestrator(ctx).start(options)

        assert api.calls == []

    def test_build_context_without_session(self, dev_config):
        ctx = build_context(dev_config)

        assert ctx.clusters is None
        with pytest.raises(SessionInvalid):
            DevOrchestrator(ctx).clusters

    def test_build_context_with_session(self, dev_config):
        dev_config.state_dir.mkdir(parents=True)
        dev_config.resolved_session_file.write_text(SESSION.model_dump_json())

        ctx = build_context(dev_config)

        assert ctx.clusters is not None
        assert ctx.clusters.api.project == "demo"
        assert ctx.clusters.poll_interval == 0


class TestDetached:
    """Detached runs go through the supervisor."""

    def test_detached_run_releases_handle(self, dev_config, make_api, encoded):
        api = make_api(["deployed"], kubeconfig=encoded)
        supervisor = MagicMock(spec=DaemonSupervisor)
        handle = DetachedHandle(pid=1234, log_path=dev_config.log_file)
        supervisor.spawn_detached.return_value = handle
        ctx = _context(dev_config, api, supervisor=supervisor)

        DevOrchestrator(ctx).start(StartOptions(config_path="skaffold.yaml", detach=True))

        supervisor.ensure_not_running.assert_called_once()
        supervisor.spawn_detached.assert_called_once()
        supervisor.release.assert_called_once_with(handle)
        assert api.calls[-1] == ("delete", "amy-lee")

    def test_already_running_refuses_before_create(self, dev_config, make_api):
        api = make_api(["deployed"])
        supervisor = MagicMock(spec=DaemonSupervisor)
        supervisor.ensure_not_running.side_effect = AlreadyRunning(999)
        ctx = _context(dev_config, api, supervisor=supervisor)

        with pytest.raises(AlreadyRunning, match="PID 999"):
            DevOrchestrator(ctx).start(StartOptions(config_path="skaffold.yaml", detach=True))

        assert api.calls == []
        supervisor.spawn_detached.assert_not_called()


class TestClean:
    """Leftovers from a killed run are torn down by clean."""

    def _leave_behind(self, ctx, dev_config, bundle, existing_kubeconfig):
        merged = kubeconfig.set_current_context(kubeconfig.merge(existing_kubeconfig, bundle), "amy-lee")
        kubeconfig.save(dev_config.kubeconfig_path, merged)
        ctx.store.set_previous_current_context(dev_config.kubeconfig_path, "home")
        ctx.store.put(LifecycleRecord(
            cluster_id="42",
            cluster_name="amy-lee",
            kubeconfig_path=str(dev_config.kubeconfig_path),
            members=kubeconfig.bundle_members(bundle),
        ))

    def test_clean_tears_down_records(self, dev_config, make_api, bundle, existing_kubeconfig):
        api = make_api(["deployed"])
        ctx = _context(dev_config, api)
        self._leave_behind(ctx, dev_config, bundle, existing_kubeconfig)

        assert DevOrchestrator(ctx).clean() == 1

        assert kubeconfig.load(dev_config.kubeconfig_path) == existing_kubeconfig
        assert ctx.store.records() == []
        assert api.calls == [("delete", "amy-lee")]

    def test_clean_with_nothing_recorded(self, dev_config, make_api):
        api = make_api(["deployed"])
        assert DevOrchestrator(_context(dev_config, api)).clean() == 0
        assert api.calls == []

    def test_clean_reports_failures(self, dev_config, make_api, bundle, existing_kubeconfig):
        api = make_api(["deployed"], delete_result=Err(Diagnostic(status_code=404, message="Not Found")))
        ctx = _context(dev_config, api)
        self._leave_behind(ctx, dev_config, bundle, existing_kubeconfig)

        with pytest.raises(CleanupFailed):
            DevOrchestrator(ctx).clean()

        assert kubeconfig.load(dev_config.kubeconfig_path) == existing_kubeconfig
        assert [r.cluster_name for r in ctx.store.records()] == ["amy-lee"]

    def test_clean_retries_failed_delete(self, dev_config, make_api, bundle, existing_kubeconfig):
        api = make_api(["deployed"], delete_result=Err(Diagnostic(status_code=500, message="boom")))
        ctx = _context(dev_config, api)
        self._leave_behind(ctx, dev_config, bundle, existing_kubeconfig)
        with pytest.raises(CleanupFailed):
            DevOrchestrator(ctx).clean()

        api.delete_result = None
        assert DevOrchestrator(ctx).clean() == 1

        assert ctx.store.records() == []
        assert kubeconfig.load(dev_config.kubeconfig_path) == existing_kubeconfig
        assert api.calls == [("delete", "amy-lee"), ("delete", "amy-lee")]

    def test_disconnect_without_record_is_noop(self, dev_config, make_api, existing_kubeconfig):
        kubeconfig.save(dev_config.kubeconfig_path, existing_kubeconfig)
        ctx = _context(dev_config, make_api(["deployed"]))

        DevOrchestrator(ctx).disconnect_credentials("7")

        assert kubeconfig.load(dev_config.kubeconfig_path) == existing_kubeconfig

    def test_members_survive_in_record(self, dev_config, make_api, bundle, existing_kubeconfig):
        ctx = _context(dev_config, make_api(["deployed"]))
        self._leave_behind(ctx, dev_config, bundle, existing_kubeconfig)

        assert ctx.store.get(42).members == BundleMembers(
            clusters=["amy-lee"], users=["amy-lee-admin"], contexts=["amy-lee"],
        )


class SignallingStore(StateStore):
    """State store that delivers SIGTERM to this process on every lookup."""

    def get(self, cluster_id):
        os.kill(os.getpid(), signal.SIGTERM)
        return super().get(cluster_id)


class TestTerminationDuringCleanup:
    """A stop signal arriving while cleanup runs must not cut it short."""

    def test_signal_during_teardown_after_clean_exit(self, dev_config, make_api, encoded, options):
        api = make_api(["deployed"], kubeconfig=encoded)
        ctx = _context(dev_config, api)
        ctx.store = SignallingStore(dev_config.state_file)

        DevOrchestrator(ctx).start(options)

        assert api.calls[-1] == ("delete", "amy-lee")
        assert not dev_config.kubeconfig_path.exists()
        assert ctx.store.records() == []

    def test_second_signal_during_teardown(self, dev_config, make_api, encoded, existing_kubeconfig, options):
        kubeconfig.save(dev_config.kubeconfig_path, existing_kubeconfig)
        api = make_api(["deployed"], kubeconfig=encoded)
        ctx = _context(dev_config, api)
        ctx.store = SignallingStore(dev_config.state_file)

        def stopped_workload(runner, config_path):
            os.kill(os.getpid(), signal.SIGTERM)
            time.sleep(1)

        ctx.run_workload = stopped_workload

        with pytest.raises(SystemExit) as exc_info:
            DevOrchestrator(ctx).start(options)

        assert exc_info.value.code == 128 + signal.SIGTERM
        assert api.calls[-1] == ("delete", "amy-lee")
        assert kubeconfig.load(dev_config.kubeconfig_path) == existing_kubeconfig
