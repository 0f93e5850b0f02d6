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

"""Persisted lifecycle records so credential merges can be undone later."""

from __future__ import annotations

import json
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from dev_manager import logger
from dev_manager.kubeconfig import BundleMembers


class LifecycleRecord(BaseModel):
    """What was merged into which kubeconfig for one cluster.

    Attributes:
        cluster_id: Identifier assigned by the remote system.
        cluster_name: Cluster name, needed to delete it on a later cleanup.
        kubeconfig_path: Kubeconfig file the bundle was merged into.
        members: Entry names the bundle contributed.
    """

    cluster_id: str
    cluster_name: str
    kubeconfig_path: str
    members: BundleMembers = Field(default_factory=BundleMembers)


class PreviousContext(BaseModel):
    kubeconfig_path: str
    current_context: str | None = None


class StateDocument(BaseModel):
    clusters: list[LifecycleRecord] = Field(default_factory=list)
    previous_current_contexts: list[PreviousContext] = Field(default_factory=list)


class StateStore:
    """JSON-file backed store; every call is a full read-modify-write.

    Only one orchestrator runs at a time, so there is no locking and the
    last writer wins.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def _read(self) -> StateDocument:
        if not self.path.exists():
            return StateDocument()
        try:
            return StateDocument.model_validate(json.loads(self.path.read_text(encoding="utf-8")))
        except (OSError, json.JSONDecodeError, ValidationError) as exc:
            logger.warning("Ignoring unreadable state file %s: %s", self.path, exc)
            return StateDocument()

    def _write(self, document: StateDocument) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(document.model_dump_json(indent=2), encoding="utf-8")

    # -- Lifecycle records --

    def put(self, record: LifecycleRecord) -> None:
        document = self._read()
        document.clusters = [r for r in document.clusters if r.cluster_id != record.cluster_id]
        document.clusters.append(record)
        self._write(document)

    def get(self, cluster_id: int | str) -> LifecycleRecord | None:
        key = str(cluster_id)
        return next((r for r in self._read().clusters if r.cluster_id == key), None)

    def remove(self, cluster_id: int | str) -> None:
        key = str(cluster_id)
        document = self._read()
        document.clusters = [r for r in document.clusters if r.cluster_id != key]
        self._write(document)

    def records(self) -> list[LifecycleRecord]:
        return list(self._read().clusters)

    # -- Previous current contexts --

    def set_previous_current_context(self, kubeconfig_path: Path, current_context: str | None) -> None:
        key = str(kubeconfig_path)
        document = self._read()
        document.previous_current_contexts = [
            p for p in document.previous_current_contexts if p.kubeconfig_path != key
        ]
        document.previous_current_contexts.append(
            PreviousContext(kubeconfig_path=key, current_context=current_context)
        )
        self._write(document)

    def previous_current_context(self, kubeconfig_path: Path) -> str | None:
        key = str(kubeconfig_path)
        entry = next(
            (p for p in self._read().previous_current_contexts if p.kubeconfig_path == key), None
        )
        return entry.current_context if entry else None
