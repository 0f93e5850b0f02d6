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

"""Kubeconfig merge/exclude reconciliation and file I/O.

All reconciliation functions are pure: they never mutate their inputs and
return a fresh document. A document of ``None`` means "no file".
"""

from __future__ import annotations

import base64
import binascii
import copy
from pathlib import Path

import yaml
from pydantic import BaseModel, Field

from dev_manager.constants import KUBECONFIG_FILE_MODE
from dev_manager.errors import CredentialError

SECTIONS = ("clusters", "users", "contexts")
CURRENT_CONTEXT_KEY = "current-context"


class BundleMembers(BaseModel):
    """Names of the kubeconfig entries contributed by one cluster's bundle."""

    clusters: list[str] = Field(default_factory=list)
    users: list[str] = Field(default_factory=list)
    contexts: list[str] = Field(default_factory=list)

    def names(self, section: str) -> set[str]:
        return set(getattr(self, section))


# ============================================================================
# Queries
# ============================================================================

def _entries(doc: dict, section: str) -> list[dict]:
    return doc.get(section) or []


def bundle_members(bundle: dict) -> BundleMembers:
    """List every named entry of a decoded bundle."""
    return BundleMembers(**{
        section: [entry["name"] for entry in _entries(bundle, section)]
        for section in SECTIONS
    })


def get_current_context(doc: dict | None) -> str | None:
    if not doc:
        return None
    return doc.get(CURRENT_CONTEXT_KEY) or None


def has_context(doc: dict | None, name: str | None) -> bool:
    if not doc or not name:
        return False
    return any(entry.get("name") == name for entry in _entries(doc, "contexts"))


def is_empty(doc: dict) -> bool:
    return not any(_entries(doc, section) for section in SECTIONS)


# ============================================================================
# Reconciliation
# ============================================================================

def merge(existing: dict | None, incoming: dict) -> dict:
    """Union *incoming* into *existing* by entry name.

    Incoming entries replace same-named existing ones in place; new entries
    are appended. ``current-context`` is left as it was in *existing*.

    Args:
        existing: Current kubeconfig document, or None when there is no file.
        incoming: Decoded bundle of the new cluster.

    Returns:
        The merged document.
    """
    if existing is None:
        return copy.deepcopy(incoming)

    merged = copy.deepcopy(existing)
    for section in SECTIONS:
        incoming_by_name = {entry["name"]: entry for entry in _entries(incoming, section)}
        result: list[dict] = []
        for entry in _entries(merged, section):
            replacement = incoming_by_name.pop(entry.get("name"), None)
            result.append(copy.deepcopy(replacement) if replacement is not None else entry)
        result.extend(copy.deepcopy(entry) for entry in incoming_by_name.values())
        merged[section] = result
    return merged


def set_current_context(doc: dict, context_name: str | None) -> dict:
    """Point ``current-context`` at *context_name*; no-op when it is empty."""
    if not context_name:
        return doc
    updated = copy.deepcopy(doc)
    updated[CURRENT_CONTEXT_KEY] = context_name
    return updated


def exclude(existing: dict | None, members: BundleMembers) -> dict | None:
    """Remove every entry listed in *members* from *existing*.

    A ``current-context`` naming a removed context is cleared.

    Args:
        existing: Current kubeconfig document, or None when there is no file.
        members: Entry names belonging to the bundle being removed.

    Returns:
        The remaining document, or None when nothing is left and the file
        should be deleted.
    """
    if existing is None:
        return None

    remaining = copy.deepcopy(existing)
    for section in SECTIONS:
        if section not in remaining:
            continue
        names = members.names(section)
        remaining[section] = [
            entry for entry in _entries(remaining, section) if entry.get("name") not in names
        ]

    if is_empty(remaining):
        return None
    current = get_current_context(remaining)
    if current and not has_context(remaining, current):
        remaining[CURRENT_CONTEXT_KEY] = ""
    return remaining


def restore_previous_context(doc: dict | None, candidate: str | None) -> str | None:
    """Return *candidate* only if *doc* still has a context by that name."""
    return candidate if has_context(doc, candidate) else None


# ============================================================================
# Encoding and file I/O
# ============================================================================

def decode_bundle(encoded: str) -> dict:
    """Decode a base64 kubeconfig bundle returned by the cluster API.

    Raises:
        CredentialError: If the bundle is not base64-encoded YAML mapping.
    """
    # Line-wrapped base64 is common; only whitespace is tolerated.
    compact = "".join(encoded.split())
    try:
        doc = yaml.safe_load(base64.b64decode(compact, validate=True))
    except (binascii.Error, ValueError, yaml.YAMLError) as err:
        raise CredentialError(f"Cluster credentials could not be decoded: {err}") from err
    if not isinstance(doc, dict):
        raise CredentialError("Cluster credentials are not a kubeconfig document")
    return doc


def load(path: Path) -> dict | None:
    """Read a kubeconfig file; missing or empty files read as None.

    Raises:
        CredentialError: If the file is not valid YAML.
    """
    if not path.exists():
        return None
    try:
        doc = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as err:
        raise CredentialError(f"Kubeconfig {path} is not valid YAML: {err}") from err
    return doc or None


def save(path: Path, doc: dict | None) -> None:
    """Write *doc* to *path*, or delete the file when *doc* is None."""
    if doc is None:
        path.unlink(missing_ok=True)
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(doc, default_flow_style=False, sort_keys=False), encoding="utf-8")
    path.chmod(KUBECONFIG_FILE_MODE)
