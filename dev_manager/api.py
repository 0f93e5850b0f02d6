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

"""HTTP client for the remote cluster API with tagged results."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import httpx

from dev_manager import logger
from dev_manager.constants import API_CLUSTER_ROUTE, API_CLUSTERS_ROUTE
from dev_manager.errors import Diagnostic


@dataclass(frozen=True)
class Ok:
    """Successful response: status code and decoded JSON body."""

    status_code: int
    body: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Err:
    """Failed request or non-success response."""

    diagnostic: Diagnostic


ApiResult = Ok | Err


def _decode_body(response: httpx.Response) -> dict[str, Any]:
    if not response.content:
        return {}
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _diagnostic(response: httpx.Response) -> Diagnostic:
    """Build a diagnostic from an error response body."""
    body = _decode_body(response)
    raw_errors = body.get("errors") or {}
    errors: dict[str, list[str]] = {}
    if isinstance(raw_errors, dict):
        for key, value in raw_errors.items():
            errors[str(key)] = [str(v) for v in value] if isinstance(value, list) else [str(value)]
    message = body.get("message") or response.reason_phrase or "Request failed"
    return Diagnostic(status_code=response.status_code, message=str(message), errors=errors)


class ClusterApi:
    """Thin wrapper over the cluster endpoints of one project.

    A fresh ``httpx.Client`` is opened per request so no socket outlives a
    daemonizing fork.
    """

    def __init__(
        self,
        server: str,
        project: str,
        token: str,
        timeout: float = 30,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.server = server.rstrip("/")
        self.project = project
        self.token = token
        self.timeout = timeout
        self.transport = transport

    def _request(self, method: str, path: str, **kwargs: Any) -> ApiResult:
        url = f"{self.server}{path}"
        logger.debug("%s %s", method, url)
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.request(method, url, **kwargs)
        except httpx.HTTPError as err:
            return Err(Diagnostic(status_code=None, message=f"{type(err).__name__}: {err}"))
        if response.is_success:
            return Ok(status_code=response.status_code, body=_decode_body(response))
        return Err(_diagnostic(response))

    def create_cluster(self, name: str, creation_source: str) -> ApiResult:
        payload = {
            "cluster": {
                "name": name,
                "manifest": None,
                "creation_source": creation_source,
            },
            "token": self.token,
        }
        return self._request("POST", API_CLUSTERS_ROUTE.format(project=self.project), json=payload)

    def get_cluster(self, name: str) -> ApiResult:
        return self._request("GET", API_CLUSTER_ROUTE.format(project=self.project, name=name))

    def delete_cluster(self, name: str) -> ApiResult:
        return self._request(
            "DELETE",
            API_CLUSTER_ROUTE.format(project=self.project, name=name),
            params={"token": self.token},
        )
