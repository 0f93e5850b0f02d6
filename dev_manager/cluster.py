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

"""Remote cluster lifecycle: naming, creation, status polling, deletion."""

from __future__ import annotations

import re
from enum import Enum

from faker import Faker
from pydantic import BaseModel, ConfigDict, ValidationError
from tenacity import RetryError, retry, retry_if_result, stop_after_delay, stop_never, wait_fixed

from dev_manager import console, logger
from dev_manager.api import ClusterApi, Err
from dev_manager.constants import (
    CLUSTER_NAME_PATTERN,
    CLUSTER_STATE_DEPLOYED,
    CLUSTER_STATE_DEPLOYING,
    CLUSTER_STATE_DEPLOYING_NAMESPACE,
    CLUSTER_STATE_FAILED,
    CLUSTER_STATE_FAILED_DEPLOY_NAMESPACE,
    DEFAULT_POLL_INTERVAL_SECONDS,
    NAME_GENERATION_MAX_ATTEMPTS,
)
from dev_manager.errors import (
    CreationFailed,
    DeletionFailed,
    Diagnostic,
    LookupFailed,
    PollTimedOut,
)


# ============================================================================
# States
# ============================================================================

class ClusterPhase(str, Enum):
    """Local classification of the remote cluster state."""

    DEPLOYING = "deploying"
    DEPLOYED = "deployed"
    FAILED = "failed"


_PHASE_BY_STATE = {
    CLUSTER_STATE_DEPLOYING_NAMESPACE: ClusterPhase.DEPLOYING,
    CLUSTER_STATE_DEPLOYING: ClusterPhase.DEPLOYING,
    CLUSTER_STATE_DEPLOYED: ClusterPhase.DEPLOYED,
    CLUSTER_STATE_FAILED_DEPLOY_NAMESPACE: ClusterPhase.FAILED,
    CLUSTER_STATE_FAILED: ClusterPhase.FAILED,
}


def classify_state(state: str | None) -> ClusterPhase:
    """Map a remote state to its phase; unknown states are still deploying."""
    return _PHASE_BY_STATE.get(state or "", ClusterPhase.DEPLOYING)


class ClusterSnapshot(BaseModel):
    """One observation of a remote cluster.

    Attributes:
        id: Identifier assigned by the remote system.
        name: Cluster name.
        state: Raw remote state string.
        kubeconfig: Base64 kubeconfig bundle, present once deployed.
    """

    model_config = ConfigDict(extra="ignore")

    id: int | str
    name: str
    state: str | None = None
    kubeconfig: str | None = None

    @property
    def phase(self) -> ClusterPhase:
        return classify_state(self.state)

    @property
    def is_terminal(self) -> bool:
        return self.phase is not ClusterPhase.DEPLOYING


# ============================================================================
# Name generation
# ============================================================================

def is_valid_name(name: str | None) -> bool:
    return bool(name) and re.fullmatch(CLUSTER_NAME_PATTERN, name) is not None


def generate_name(fake: Faker | None = None) -> str:
    """Generate a ``first-last`` cluster name from Faker person names.

    Candidates that are not DNS-safe (apostrophes, spaces, accents) are
    resampled rather than sanitized.

    Args:
        fake: Faker instance to draw names from, or None for a fresh one.

    Returns:
        A lowercase name matching ``[A-Za-z0-9-]+``.

    Raises:
        ValueError: If no valid name turns up within the attempt limit.
    """
    if fake is None:
        fake = Faker()
    for _ in range(NAME_GENERATION_MAX_ATTEMPTS):
        name = f"{fake.first_name()}-{fake.last_name()}".lower()
        if is_valid_name(name):
            return name
    raise ValueError("Faker produced no valid cluster name")


# ============================================================================
# Lifecycle client
# ============================================================================

def _cluster_body(body: dict, cluster_name: str, error_cls: type) -> ClusterSnapshot:
    try:
        return ClusterSnapshot.model_validate(body.get("cluster") or {})
    except ValidationError as err:
        raise error_cls(cluster_name, Diagnostic(status_code=None, message=f"Malformed cluster payload: {err}")) from err


class ClusterClient:
    """Create, poll, and delete remote clusters through the cluster API."""

    def __init__(
        self,
        api: ClusterApi,
        creation_source: str,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        poll_timeout: float | None = None,
    ) -> None:
        self.api = api
        self.creation_source = creation_source
        self.poll_interval = poll_interval
        self.poll_timeout = poll_timeout

    def create(self, name: str) -> tuple[int | str, str]:
        """Request a new cluster.

        Args:
            name: Generated cluster name.

        Returns:
            Tuple of (cluster_id, cluster_name) as assigned by the API.

        Raises:
            CreationFailed: If the API does not report 201 Created.
        """
        result = self.api.create_cluster(name, self.creation_source)
        if isinstance(result, Err):
            raise CreationFailed(name, result.diagnostic)
        if result.status_code != 201:
            raise CreationFailed(
                name, Diagnostic(status_code=result.status_code, message="Cluster was not created"),
            )
        snapshot = _cluster_body(result.body, name, CreationFailed)
        return snapshot.id, snapshot.name

    def fetch(self, name: str) -> ClusterSnapshot:
        """Fetch the current snapshot of a cluster.

        Raises:
            LookupFailed: If the status request fails.
        """
        result = self.api.get_cluster(name)
        if isinstance(result, Err):
            raise LookupFailed(name, result.diagnostic)
        snapshot = _cluster_body(result.body, name, LookupFailed)
        logger.debug("Cluster %s state: %s", name, snapshot.state)
        return snapshot

    def poll_to_terminal(self, name: str) -> ClusterSnapshot:
        """Poll until the cluster is Deployed or Failed.

        Args:
            name: Cluster name.

        Returns:
            The first terminal snapshot.

        Raises:
            LookupFailed: If any status request fails.
            PollTimedOut: If ``poll_timeout`` elapses first.
        """
        stop = stop_after_delay(self.poll_timeout) if self.poll_timeout else stop_never

        @retry(
            retry=retry_if_result(lambda snapshot: not snapshot.is_terminal),
            wait=wait_fixed(self.poll_interval),
            stop=stop,
        )
        def _attempt() -> ClusterSnapshot:
            return self.fetch(name)

        with console.status(f"Creating cluster {name}...", spinner="dots"):
            try:
                return _attempt()
            except RetryError as err:
                raise PollTimedOut(
                    f"Cluster '{name}' did not finish deploying within {self.poll_timeout:g}s"
                ) from err

    def delete(self, name: str) -> None:
        """Delete a cluster.

        Raises:
            DeletionFailed: Unless the API answers 204 No Content.
        """
        result = self.api.delete_cluster(name)
        if isinstance(result, Err):
            raise DeletionFailed(name, result.diagnostic)
        if result.status_code != 204:
            raise DeletionFailed(
                name, Diagnostic(status_code=result.status_code, message="Unexpected response to delete"),
            )
