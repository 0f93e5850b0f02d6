"""Shared fixtures for dev_manager tests."""

import base64

import pytest
import yaml

from dev_manager.api import Ok
from dev_manager.config import DevConfig


class FakeClusterApi:
    """In-memory stand-in for ClusterApi that replays a state sequence."""

    def __init__(self, states, kubeconfig=None, cluster_id=42, create_result=None, delete_result=None):
        self.states = list(states)
        self.kubeconfig = kubeconfig
        self.cluster_id = cluster_id
        self.create_result = create_result
        self.delete_result = delete_result
        self.calls = []

    def create_cluster(self, name, creation_source):
        self.calls.append(("create", name))
        if self.create_result is not None:
            return self.create_result
        return Ok(status_code=201, body={"cluster": {"id": self.cluster_id, "name": name, "state": "deploying"}})

    def get_cluster(self, name):
        self.calls.append(("get", name))
        state = self.states.pop(0) if len(self.states) > 1 else self.states[0]
        if isinstance(state, Exception):
            raise state
        if not isinstance(state, str):
            return state
        cluster = {"id": self.cluster_id, "name": name, "state": state}
        if state == "deployed":
            cluster["kubeconfig"] = self.kubeconfig
        return Ok(status_code=200, body={"cluster": cluster})

    def delete_cluster(self, name):
        self.calls.append(("delete", name))
        if self.delete_result is not None:
            return self.delete_result
        return Ok(status_code=204)


def encode_bundle(doc):
    return base64.b64encode(yaml.safe_dump(doc).encode()).decode()


@pytest.fixture
def dev_config(tmp_path):
    """Config rooted in a temp dir with no poll sleeping."""
    return DevConfig(
        state_dir=tmp_path / "state",
        kubeconfig_path=tmp_path / "kube" / "config",
        poll_interval_seconds=0,
    )


@pytest.fixture
def bundle():
    """Kubeconfig bundle for the cluster 'amy-lee'."""
    return {
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": [{"name": "amy-lee", "cluster": {"server": "https://amy-lee.example.test"}}],
        "users": [{"name": "amy-lee-admin", "user": {"token": "secret"}}],
        "contexts": [{
            "name": "amy-lee",
            "context": {"cluster": "amy-lee", "user": "amy-lee-admin", "namespace": "default"},
        }],
        "current-context": "amy-lee",
    }


@pytest.fixture
def existing_kubeconfig():
    """A pre-existing kubeconfig with one unrelated cluster."""
    return {
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": [{"name": "home", "cluster": {"server": "https://home.example.test"}}],
        "users": [{"name": "home-user", "user": {"token": "home-token"}}],
        "contexts": [{
            "name": "home",
            "context": {"cluster": "home", "user": "home-user", "namespace": "dev"},
        }],
        "current-context": "home",
    }


@pytest.fixture
def make_api():
    return FakeClusterApi


@pytest.fixture
def encoded(bundle):
    return encode_bundle(bundle)
