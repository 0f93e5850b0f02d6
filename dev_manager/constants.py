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

"""Constants and default paths."""

from __future__ import annotations

import os
from pathlib import Path

CLUSTER_NAME_PATTERN = r"^[A-Za-z0-9-]+$"
NAME_GENERATION_MAX_ATTEMPTS = 1000

# -- Remote cluster states --
CLUSTER_STATE_DEPLOYING_NAMESPACE = "deploying_namespace"
CLUSTER_STATE_DEPLOYING = "deploying"
CLUSTER_STATE_DEPLOYED = "deployed"
CLUSTER_STATE_FAILED_DEPLOY_NAMESPACE = "failed_deploy_namespace"
CLUSTER_STATE_FAILED = "failed"

CLUSTER_CREATION_SOURCE_MANUAL = "manual"

# -- API routes --
API_CLUSTERS_ROUTE = "/api/cli/v1/projects/{project}/clusters"
API_CLUSTER_ROUTE = "/api/cli/v1/projects/{project}/clusters/{name}"

# -- Workload runner --
DEFAULT_RUNNER = "skaffold"
DEFAULT_RUNNER_CONFIG = "skaffold.yaml"

# -- Local files --
DEFAULT_STATE_DIR = Path.home() / ".config" / "dev-manager"
STATE_FILE_NAME = "clusters.json"
SESSION_FILE_NAME = "session.json"
PID_FILE_NAME = "dev.pid"
LOG_FILE_NAME = "dev.log"
KUBECONFIG_FILE_MODE = 0o600
DAEMON_UMASK = 0o022


def default_kubeconfig_path() -> Path:
    """Resolve the kubeconfig path the way kubectl does.

    Returns:
        The first entry of ``$KUBECONFIG`` when set, else ``~/.kube/config``.
    """
    env_value = os.environ.get("KUBECONFIG", "")
    for entry in env_value.split(os.pathsep):
        if entry:
            return Path(entry).expanduser()
    return Path.home() / ".kube" / "config"


# -- Timing --
DEFAULT_POLL_INTERVAL_SECONDS = 5
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30
PID_FILE_WATCH_INTERVAL_SECONDS = 1
