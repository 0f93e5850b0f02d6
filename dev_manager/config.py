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

"""Configuration classes, session loading, and config resolution/display."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict
from rich.panel import Panel

from dev_manager import console
from dev_manager.constants import (
    CLUSTER_CREATION_SOURCE_MANUAL,
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_RUNNER,
    DEFAULT_STATE_DIR,
    LOG_FILE_NAME,
    PID_FILE_NAME,
    SESSION_FILE_NAME,
    STATE_FILE_NAME,
    default_kubeconfig_path,
)
from dev_manager.errors import SessionInvalid


# ============================================================================
# Configuration classes
# ============================================================================

class DevConfig(BaseSettings):
    """Local dev lifecycle configuration, auto-loaded from DEV_* env vars.

    Attributes:
        state_dir: Directory holding the state, session, pid, and log files.
        kubeconfig_path: Kubeconfig file the cluster credentials are merged into.
        session_file: Session file override, or None for ``state_dir/session.json``.
        runner: Workload runner binary.
        poll_interval_seconds: Sleep between cluster status fetches.
        poll_timeout_seconds: Give up polling after this long, or None to wait forever.
        request_timeout_seconds: Timeout for each cluster API request.
        creation_source: Creation source reported to the cluster API.
    """

    model_config = SettingsConfigDict(env_prefix="DEV_", extra="ignore")

    state_dir: Path = DEFAULT_STATE_DIR
    kubeconfig_path: Path = Field(default_factory=default_kubeconfig_path)
    session_file: Path | None = None
    runner: str = DEFAULT_RUNNER
    poll_interval_seconds: float = Field(default=DEFAULT_POLL_INTERVAL_SECONDS, ge=0)
    poll_timeout_seconds: float | None = Field(default=None, gt=0)
    request_timeout_seconds: float = Field(default=DEFAULT_REQUEST_TIMEOUT_SECONDS, gt=0)
    creation_source: str = CLUSTER_CREATION_SOURCE_MANUAL

    @property
    def state_file(self) -> Path:
        return self.state_dir / STATE_FILE_NAME

    @property
    def pid_file(self) -> Path:
        return self.state_dir / PID_FILE_NAME

    @property
    def log_file(self) -> Path:
        return self.state_dir / LOG_FILE_NAME

    @property
    def resolved_session_file(self) -> Path:
        return self.session_file or self.state_dir / SESSION_FILE_NAME


class SessionConfig(BaseModel):
    """Login session written by the login flow; read-only here.

    Attributes:
        server: Base URL of the cluster API.
        project: Project slug clusters are created in.
        token: Auth token sent with cluster requests.
    """

    server: str | None = None
    project: str | None = None
    token: str | None = None

    @property
    def signed_in(self) -> bool:
        return bool(self.server and self.token)


def load_session(path: Path) -> SessionConfig:
    """Read the session file; a missing file is an empty session.

    Args:
        path: Session JSON file.

    Returns:
        Parsed session.

    Raises:
        SessionInvalid: If the file exists but cannot be parsed.
    """
    if not path.exists():
        return SessionConfig()
    try:
        return SessionConfig.model_validate(json.loads(path.read_text(encoding="utf-8")))
    except (OSError, json.JSONDecodeError, ValidationError) as err:
        raise SessionInvalid(f"Session file {path} is unreadable: {err}") from err


def require_session(session: SessionConfig) -> None:
    """Check the session allows cluster work.

    Raises:
        SessionInvalid: If not logged in or no project is set.
    """
    if not session.signed_in:
        raise SessionInvalid("You are not logged in.")
    if not session.project:
        raise SessionInvalid("This command needs project to be set in config file")


# ============================================================================
# Start options
# ============================================================================

@dataclass(frozen=True)
class StartOptions:
    """What a ``start`` invocation should do.

    Attributes:
        config_path: Runner config file passed as ``--filename``.
        detach: Whether to run the workload as a background daemon.
    """

    config_path: str
    detach: bool = False


# ============================================================================
# Config resolution
# ============================================================================

def resolve_config(
    kubeconfig: Path | None = None,
    runner: str | None = None,
    poll_timeout: float | None = None,
) -> DevConfig:
    """Merge CLI overrides, environment variables, and defaults.

    Resolution priority: CLI arguments > DEV_* environment variables > defaults.

    Args:
        kubeconfig: CLI override for the kubeconfig path, or None.
        runner: CLI override for the runner binary, or None.
        poll_timeout: CLI override for the poll timeout in seconds, or None.

    Returns:
        Resolved DevConfig.
    """
    cfg = DevConfig()

    overrides: dict = {}
    if kubeconfig is not None:
        overrides["kubeconfig_path"] = kubeconfig
    if runner is not None:
        overrides["runner"] = runner
    if poll_timeout is not None:
        overrides["poll_timeout_seconds"] = poll_timeout
    if overrides:
        cfg = cfg.model_copy(update=overrides)
    return cfg


# ============================================================================
# Display
# ============================================================================

def display_config(cfg: DevConfig, options: StartOptions) -> None:
    """Print the config relevant to a start run."""
    console.print(Panel.fit("Configuration", style="bold blue"))
    console.print(f"  runner          : {cfg.runner}")
    console.print(f"  runner config   : {options.config_path}")
    console.print(f"  kubeconfig      : {cfg.kubeconfig_path}")
    console.print(f"  detach          : {options.detach}")
    timeout = f"{cfg.poll_timeout_seconds:g}s" if cfg.poll_timeout_seconds else "(none)"
    console.print(f"  poll timeout    : {timeout}")
    if options.detach:
        console.print(f"  log file        : {cfg.log_file}")
