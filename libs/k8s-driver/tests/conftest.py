"""Pytest configuration and fixtures for K8s driver tests."""

import json

import pytest
from unittest.mock import MagicMock
from kubernetes import client

from headscale_k8s import ResourceKind


@pytest.fixture
def mock_cluster_connection():
    """Mock cluster connection for testing."""
    mock_conn = MagicMock()
    mock_conn.core_v1 = MagicMock(spec=client.CoreV1Api)
    mock_conn.apps_v1 = MagicMock(spec=client.AppsV1Api)
    mock_conn.rbac_v1 = MagicMock(spec=client.RbacAuthorizationV1Api)
    mock_conn.custom_objects = MagicMock(spec=client.CustomObjectsApi)
    return mock_conn


@pytest.fixture
def widget_resource():
    """Sample custom resource type."""
    return ResourceKind(group="example.dev", version="v1", plural="widgets", kind="Widget")


@pytest.fixture
def widget_object():
    """Sample custom object as returned by the custom objects API."""
    return {
        "apiVersion": "example.dev/v1",
        "kind": "Widget",
        "metadata": {
            "name": "gizmo",
            "namespace": "tools",
            "resourceVersion": "100",
            "finalizers": [],
        },
        "spec": {"size": 3},
    }


class FakeExecClient:
    """Stand-in for the websocket client returned by kubernetes.stream.stream."""

    def __init__(self, stdout="", stderr="", status=None, fail_on_run=None):
        self._stdout = stdout
        self._stderr = stderr
        self._status = status
        self._fail_on_run = fail_on_run
        self.closed = False

    def run_forever(self, timeout=None):
        if self._fail_on_run:
            raise self._fail_on_run

    def read_stdout(self, timeout=None):
        return self._stdout

    def read_stderr(self, timeout=None):
        return self._stderr

    def read_channel(self, channel, timeout=0):
        if self._status is None:
            return ""
        return json.dumps(self._status)

    def close(self):
        self.closed = True


@pytest.fixture
def fake_exec_client():
    """Factory for fake exec websocket clients."""
    return FakeExecClient
