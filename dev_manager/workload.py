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

"""Workload runner probe and execution."""

from __future__ import annotations

import sh

from dev_manager import console
from dev_manager.errors import RunnerUnavailable, WorkloadFailed


def require_runner(runner: str) -> None:
    """Check the runner binary exists and answers ``version`` cleanly.

    Args:
        runner: Name or path of the runner binary.

    Raises:
        RunnerUnavailable: If the command is missing, fails, or writes to stderr.
    """
    try:
        result = sh.Command(runner)("version", _return_cmd=True)
    except sh.CommandNotFound as err:
        raise RunnerUnavailable(f"Required command '{runner}' not found. Please install it first.") from err
    except sh.ErrorReturnCode as err:
        stderr = err.stderr.decode(errors="replace").strip()
        raise RunnerUnavailable(stderr or f"'{runner} version' failed with exit code {err.exit_code}") from err

    stdout = result.stdout.decode(errors="replace").strip()
    stderr = result.stderr.decode(errors="replace").strip()
    if not stdout or stderr:
        raise RunnerUnavailable(stderr or f"'{runner} version' printed nothing")


def run_workload(runner: str, config_path: str) -> None:
    """Run ``<runner> dev --filename=<config>`` and stream its combined output.

    Blocks until the runner exits. If the caller is interrupted the runner
    process is terminated before the interruption propagates.

    Args:
        runner: Name or path of the runner binary.
        config_path: Runner config file.

    Raises:
        WorkloadFailed: If the runner exits non-zero.
    """
    console.print(f"[yellow]\u2139\ufe0f  Starting {runner}[/yellow]")
    process = sh.Command(runner)("dev", f"--filename={config_path}", _iter=True, _err_to_out=True)
    try:
        for line in process:
            console.print(line, end="", markup=False, highlight=False)
    except sh.ErrorReturnCode as err:
        raise WorkloadFailed(f"'{runner} dev' exited with code {err.exit_code}") from err
    except BaseException:
        if process.is_alive():
            process.terminate()
        raise
