"""Pytest configuration and fixtures for config manager tests."""

import json

import pytest
from kubernetes.client import V1ConfigMap, V1ObjectMeta

from config_manager.document import PolicyFile
from config_manager.process import ProcessLocator

HEADSCALE_CMDLINE = "headscale\0serve\0--config\0/etc/headscale/config.yaml\0"


def write_proc_table(root, processes):
    """Create a fake proc filesystem with {pid: cmdline} entries."""
    for pid, cmdline in processes.items():
        entry = root / str(pid)
        entry.mkdir()
        (entry / "cmdline").write_bytes(cmdline.encode())
    (root / "self").mkdir()
    (root / "meminfo").write_text("MemTotal: 1 kB\n")
    return root


@pytest.fixture
def proc_table(tmp_path):
    """Factory for process locators over a fake proc filesystem."""

    def build(processes):
        root = tmp_path / "table"
        root.mkdir()
        return ProcessLocator(write_proc_table(root, processes))

    return build


@pytest.fixture
def proc_root(tmp_path):
    """Fake proc filesystem running init and headscale."""
    root = tmp_path / "proc"
    root.mkdir()
    return write_proc_table(root, {1: "/sbin/init\0", 42: HEADSCALE_CMDLINE})


@pytest.fixture
def locator(proc_root):
    """Process locator over the fake proc filesystem."""
    return ProcessLocator(proc_root)


@pytest.fixture
def policy_file(tmp_path):
    """Policy file in a temporary mount path."""
    mount_path = tmp_path / "acls"
    mount_path.mkdir()
    return PolicyFile(mount_path)


def make_config_map(document=None, raw=None):
    """ACL ConfigMap holding a document (or raw content)."""
    data = None
    if raw is not None:
        data = {"acl.json": raw}
    elif document is not None:
        data = {"acl.json": json.dumps(document)}
    return V1ConfigMap(metadata=V1ObjectMeta(name="headscale-demo-acl", namespace="vpn"), data=data)


@pytest.fixture
def config_map_factory():
    """Factory for ACL ConfigMaps."""
    return make_config_map
