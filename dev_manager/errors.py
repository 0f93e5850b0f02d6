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

"""Error taxonomy for the dev cluster lifecycle."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Diagnostic:
    """Failure details reported by the remote cluster API.

    Attributes:
        status_code: HTTP status code, or None when the request never completed.
        message: Human-readable summary.
        errors: Field errors from the response body, if any.
    """

    status_code: int | None
    message: str
    errors: dict[str, list[str]] = field(default_factory=dict)

    def __str__(self) -> str:
        details = "; ".join(
            f"{key}: {', '.join(values)}" for key, values in self.errors.items()
        )
        prefix = f"[{self.status_code}] " if self.status_code is not None else ""
        return f"{prefix}{self.message}" + (f" ({details})" if details else "")


class DevError(RuntimeError):
    """Base class for failures surfaced to the operator."""


class SessionInvalid(DevError):
    """Not logged in, or no project configured."""


class RunnerUnavailable(DevError):
    """The workload runner binary is missing or unusable."""


class AlreadyRunning(DevError):
    """A detached dev run is already alive."""

    def __init__(self, pid: int) -> None:
        super().__init__(f"Dev environment is already running (PID {pid}). Run 'stop' first.")
        self.pid = pid


class ApiError(DevError):
    """A remote cluster API call did not succeed."""

    action = "call the cluster API"

    def __init__(self, cluster_name: str, diagnostic: Diagnostic) -> None:
        super().__init__(f"Failed to {self.action} '{cluster_name}': {diagnostic}")
        self.cluster_name = cluster_name
        self.diagnostic = diagnostic


class CreationFailed(ApiError):
    action = "create cluster"


class LookupFailed(ApiError):
    action = "fetch status of cluster"


class DeletionFailed(ApiError):
    action = "delete cluster"


class PollTimedOut(DevError):
    """The cluster did not reach a terminal state in time."""


class ClusterFailedRemotely(DevError):
    """The cluster reached the Failed terminal state."""


class WorkloadFailed(DevError):
    """The workload runner exited with a non-zero status."""


class CredentialError(DevError):
    """A credential bundle or kubeconfig file could not be read."""


class CleanupFailed(DevError):
    """One or more teardown steps failed."""
