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

"""Single background dev run: pid file, detaching, stop signalling.

The pid file is the only record of a detached run. The exit hook that
removes it cannot run under SIGKILL, so every reader treats a pid file
naming a dead process as stale and prunes it.
"""

from __future__ import annotations

import atexit
import os
import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import daemon

from dev_manager import logger
from dev_manager.constants import DAEMON_UMASK, PID_FILE_WATCH_INTERVAL_SECONDS
from dev_manager.errors import AlreadyRunning

STOP_SIGNAL = signal.SIGTERM
TERMINATION_SIGNALS = (signal.SIGTERM, signal.SIGQUIT)


class DaemonStatus(str, Enum):
    """Classification of the pid file."""

    ABSENT = "absent"
    RUNNING = "running"
    STALE = "stale"


class StopResult(str, Enum):
    STOPPED = "stopped"
    NOT_RUNNING = "not_running"


@dataclass
class DetachedHandle:
    """The running detached process, as seen from inside it."""

    pid: int
    log_path: Path
    context: Any = field(default=None, repr=False)
    watcher: threading.Event | None = field(default=None, repr=False)


def is_process_alive(pid: int) -> bool:
    """Return True when a process id is alive and signalable by this user.

    A pid owned by another user is a recycled pid, not a dev run of ours.
    """
    if pid <= 0:
        return False

    try:
        os.kill(pid, 0)
    except OSError:
        return False

    return True


# ============================================================================
# Termination signals
# ============================================================================

class _Terminator:
    """Turn the first termination signal into SystemExit; ignore the rest.

    SystemExit unwinds through the orchestrator so cluster cleanup runs. No
    signal may interrupt that cleanup, whether it is a repeat or the first
    one to arrive after cleanup has begun.
    """

    def __init__(self) -> None:
        self.fired = False

    def begin_cleanup(self) -> None:
        """Ignore every signal from now on."""
        self.fired = True

    def __call__(self, signum: int, frame: object) -> None:
        if self.fired:
            logger.warning("Received signal %s during cleanup; ignoring it", signum)
            return
        self.fired = True
        logger.info("Received signal %s, shutting down", signum)
        raise SystemExit(128 + signum)


@contextmanager
def handle_termination() -> Iterator[_Terminator]:
    """Route SIGTERM/SIGQUIT through cleanup for the duration of the block.

    Yields:
        The installed handler; call ``begin_cleanup()`` on it before cleanup.
    """
    terminator = _Terminator()
    previous = {signum: signal.signal(signum, terminator) for signum in TERMINATION_SIGNALS}
    try:
        yield terminator
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)


# ============================================================================
# Supervisor
# ============================================================================

class DaemonSupervisor:
    """Manage the pid and log files of the single detached dev run."""

    def __init__(self, pid_path: Path, log_path: Path) -> None:
        self.pid_path = pid_path
        self.log_path = log_path

    # -- Pid file --

    def read_pid(self) -> int | None:
        """Return the recorded pid, or None if the file is missing or garbled."""
        try:
            return int(self.pid_path.read_text(encoding="utf-8").strip())
        except (OSError, ValueError):
            return None

    def write_pid_file(self, pid: int) -> None:
        self.pid_path.parent.mkdir(parents=True, exist_ok=True)
        self.pid_path.write_text(str(pid), encoding="utf-8")

    def remove_pid_file(self) -> None:
        self.pid_path.unlink(missing_ok=True)

    def _remove_pid_file_if_owned(self, pid: int) -> None:
        if self.read_pid() == pid:
            self.remove_pid_file()

    def probe(self) -> tuple[DaemonStatus, int | None]:
        """Classify the pid file as absent, running, or stale."""
        if not self.pid_path.exists():
            return DaemonStatus.ABSENT, None
        pid = self.read_pid()
        if pid is None or not is_process_alive(pid):
            return DaemonStatus.STALE, pid
        return DaemonStatus.RUNNING, pid

    def ensure_not_running(self) -> None:
        """Fail if a detached run is alive; prune a stale pid file.

        Raises:
            AlreadyRunning: If the pid file names a live process.
        """
        status, pid = self.probe()
        if status is DaemonStatus.RUNNING:
            raise AlreadyRunning(pid)
        if status is DaemonStatus.STALE:
            logger.info("Removing stale pid file %s (pid=%s)", self.pid_path, pid)
            self.remove_pid_file()

    # -- Lifecycle --

    def register_cleanup_on_exit(self, pid: int) -> None:
        """Best-effort pid file removal at interpreter exit."""
        atexit.register(self._remove_pid_file_if_owned, pid)

    def watch_pid_file(self, interval: float = PID_FILE_WATCH_INTERVAL_SECONDS) -> threading.Event:
        """Terminate this process once its pid file disappears.

        Returns:
            Event that stops the watcher when set.
        """
        stopped = threading.Event()

        def _watch() -> None:
            while not stopped.wait(interval):
                if not self.pid_path.exists():
                    logger.info("Pid file %s removed, shutting down", self.pid_path)
                    os.kill(os.getpid(), STOP_SIGNAL)
                    return

        threading.Thread(target=_watch, name="pid-file-watcher", daemon=True).start()
        return stopped

    def spawn_detached(self) -> DetachedHandle:
        """Detach from the terminal and continue as the background run.

        The invoking process exits inside this call; only the detached
        process returns. Its stdout/stderr go to a freshly truncated log file.

        Returns:
            Handle describing the detached process.

        Raises:
            AlreadyRunning: If another detached run is alive.
        """
        self.ensure_not_running()
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        log_file = open(self.log_path, "w", encoding="utf-8")

        try:
            context = daemon.DaemonContext(
                working_directory=Path.cwd(),
                umask=DAEMON_UMASK,
                stdout=log_file,
                stderr=log_file,
                signal_map={},
            )
            context.open()
        except BaseException:
            log_file.close()
            raise

        pid = os.getpid()
        self.write_pid_file(pid)
        self.register_cleanup_on_exit(pid)
        watcher = self.watch_pid_file()
        logger.info("Detached dev run started (pid=%s)", pid)
        return DetachedHandle(pid=pid, log_path=self.log_path, context=context, watcher=watcher)

    def release(self, handle: DetachedHandle) -> None:
        """Stop watching and drop the pid file once the detached run is done."""
        if handle.watcher is not None:
            handle.watcher.set()
        self._remove_pid_file_if_owned(handle.pid)
        if handle.context is not None:
            handle.context.close()

    def stop(self) -> StopResult:
        """Signal the detached run to shut down.

        The pid file is removed before signalling so a concurrent ``stop``
        sees nothing to stop.

        Returns:
            STOPPED if a signal was delivered, else NOT_RUNNING.
        """
        if not self.pid_path.exists():
            return StopResult.NOT_RUNNING

        pid = self.read_pid()
        self.remove_pid_file()
        if pid is None:
            return StopResult.NOT_RUNNING

        try:
            os.kill(pid, STOP_SIGNAL)
        except ProcessLookupError:
            return StopResult.NOT_RUNNING
        except PermissionError:
            logger.warning("Pid %s belongs to another user; treating pid file as stale", pid)
            return StopResult.NOT_RUNNING
        return StopResult.STOPPED
