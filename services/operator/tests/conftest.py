"""Pytest configuration and fixtures for operator tests."""

import pytest
from unittest.mock import MagicMock
from kubernetes import client
from kubernetes.client import V1ObjectMeta, V1Pod, V1PodCondition, V1PodList, V1PodStatus

from headscale_operator.admin import AdminClient
from headscale_operator.config import Settings
from headscale_operator.crds import Headscale, PreauthKeyData, UserData


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
def settings():
    """Operator settings with fixed images."""
    return Settings(
        config_manager_image="registry.example.com/config-manager:test",
        headscale_image="registry.example.com/headscale:test",
        tailscale_image="registry.example.com/tailscale:test",
    )


@pytest.fixture
def headscale_object():
    """Headscale object as returned by the custom objects API."""
    return {
        "apiVersion": "headscale.juliamertz.dev/v1alpha1",
        "kind": "Headscale",
        "metadata": {
            "name": "demo",
            "namespace": "vpn",
            "uid": "6f1c3f0e-0000-4000-8000-000000000001",
            "resourceVersion": "10",
            "finalizers": ["headscale.juliamertz.dev/headscale-finalizer"],
        },
        "spec": {
            "config": {
                "server_url": "https://vpn.example.com",
                "listen_addr": "0.0.0.0:8443",
                "dns": {"magic_dns": True, "base_domain": "tailnet.example.com"},
            },
            "deployment": {"env": [{"name": "TZ", "value": "UTC"}]},
            "configManager": {"image": ""},
            "tls": {"existingSecret": "vpn-tls"},
        },
    }


@pytest.fixture
def headscale(headscale_object):
    """Parsed Headscale instance."""
    return Headscale.model_validate(headscale_object)


@pytest.fixture
def user_object():
    """User object without status."""
    return {
        "apiVersion": "headscale.juliamertz.dev/v1alpha1",
        "kind": "User",
        "metadata": {
            "name": "alice",
            "namespace": "vpn",
            "uid": "6f1c3f0e-0000-4000-8000-000000000002",
            "resourceVersion": "20",
            "finalizers": ["headscale.juliamertz.dev/user-finalizer"],
        },
        "spec": {
            "displayName": "Alice",
            "email": "alice@example.com",
            "headscaleRef": {"name": "demo"},
        },
    }


@pytest.fixture
def created_user_object(user_object):
    """User object after creation in Headscale."""
    return {
        **user_object,
        "status": {
            "id": 7,
            "name": "alice",
            "createdAt": {"seconds": 1700000000, "nanos": 0},
            "email": "alice@example.com",
            "displayName": "Alice",
        },
    }


@pytest.fixture
def preauth_key_object():
    """PreauthKey object referencing the sample user."""
    return {
        "apiVersion": "headscale.juliamertz.dev/v1alpha1",
        "kind": "PreauthKey",
        "metadata": {
            "name": "laptop",
            "namespace": "vpn",
            "uid": "6f1c3f0e-0000-4000-8000-000000000003",
            "resourceVersion": "30",
            "finalizers": ["headscale.juliamertz.dev/preauth-key-finalizer"],
        },
        "spec": {
            "reusable": True,
            "expiration": "24h",
            "user": {"name": "alice"},
        },
    }


@pytest.fixture
def policy_object():
    """Policy object for the sample instance."""
    return {
        "apiVersion": "headscale.juliamertz.dev/v1alpha1",
        "kind": "Policy",
        "metadata": {
            "name": "default",
            "namespace": "vpn",
            "uid": "6f1c3f0e-0000-4000-8000-000000000004",
            "finalizers": ["headscale.juliamertz.dev/acl-policy-finalizer"],
        },
        "spec": {
            "headscaleRef": {"name": "demo"},
            "groups": {"group:admins": ["alice@"]},
            "tagOwners": {"tag:server": ["group:admins"]},
            "acls": [
                {"action": "accept", "src": ["group:admins"], "dst": ["*:*"]},
                {"action": "deny", "src": ["*"], "dst": ["tag:server:22"]},
            ],
        },
    }


def make_pod(name, ready=True):
    """Build a pod with the given readiness."""
    return V1Pod(
        metadata=V1ObjectMeta(name=name, namespace="vpn"),
        status=V1PodStatus(
            phase="Running",
            conditions=[V1PodCondition(type="Ready", status="True" if ready else "False")],
        ),
    )


@pytest.fixture
def pod_factory():
    """Factory for pods with a Ready condition."""
    return make_pod


@pytest.fixture
def ready_pods(mock_cluster_connection):
    """Make the sample instance have one ready pod."""
    mock_cluster_connection.core_v1.list_namespaced_pod.return_value = V1PodList(
        items=[make_pod("headscale-demo-0")]
    )
    return mock_cluster_connection


@pytest.fixture
def mock_admin():
    """Mock admin client with canned responses."""
    admin = MagicMock(spec=AdminClient)
    admin.create_user.return_value = UserData(
        id=7,
        name="alice",
        created_at={"seconds": 1700000000, "nanos": 0},
        email="alice@example.com",
        display_name="Alice",
    )
    admin.create_key.return_value = PreauthKeyData(
        id=3,
        key="hskey-auth-0123456789abcdef",
        reusable=True,
        ephemeral=False,
        expiration={"seconds": 1700086400, "nanos": 0},
        created_at={"seconds": 1700000000, "nanos": 0},
    )
    return admin


@pytest.fixture
def admin_factory(mock_admin):
    """Admin factory returning the mock admin client."""
    factory = MagicMock(return_value=mock_admin)
    return factory
