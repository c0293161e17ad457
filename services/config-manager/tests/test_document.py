"""Tests for the ACL policy document and file."""

import json
import stat

import pytest

from config_manager.document import PolicyFile, extract_policy
from config_manager.exceptions import PolicyDocumentError


class TestExtractPolicy:
    """Test cases for extract_policy."""

    def test_decodes_document(self, config_map_factory):
        """Test that the acl.json key is decoded."""
        config_map = config_map_factory({"acls": [{"action": "accept"}]})

        assert extract_policy(config_map) == {"acls": [{"action": "accept"}]}

    def test_missing_key_is_empty_policy(self, config_map_factory):
        """Test that a ConfigMap without data yields an empty policy."""
        assert extract_policy(config_map_factory()) == {}

    def test_invalid_json(self, config_map_factory):
        """Test that malformed JSON is rejected."""
        with pytest.raises(PolicyDocumentError):
            extract_policy(config_map_factory(raw="{not json"))


class TestPolicyFile:
    """Test cases for PolicyFile."""

    def test_path(self, tmp_path):
        assert PolicyFile(tmp_path).path == tmp_path / "acl.json"

    def test_missing_file_is_changed(self, policy_file):
        """Test that even an empty document differs from a missing file."""
        assert policy_file.changed({}) is True

    def test_structural_comparison(self, policy_file):
        """Test that formatting and key order are not a change."""
        policy_file.path.write_text('{\n  "b": [1, 2],\n  "a": {"x": true}\n}')

        assert policy_file.changed({"a": {"x": True}, "b": [1, 2]}) is False
        assert policy_file.changed({"a": {"x": False}, "b": [1, 2]}) is True

    def test_unparseable_file_is_changed(self, policy_file):
        """Test that a corrupt file is rewritten."""
        policy_file.path.write_text("garbage")

        assert policy_file.changed({}) is True

    def test_write(self, policy_file):
        """Test that the document is written with world-readable permissions."""
        policy_file.write({"acls": []})

        assert json.loads(policy_file.path.read_text()) == {"acls": []}
        assert stat.S_IMODE(policy_file.path.stat().st_mode) == 0o644
        assert policy_file.changed({"acls": []}) is False

    def test_write_replaces_and_leaves_no_temporaries(self, policy_file):
        """Test that rewriting replaces the file without leftovers."""
        policy_file.write({"version": 1})
        policy_file.write({"version": 2})

        assert policy_file.read() == {"version": 2}
        assert [p.name for p in policy_file.path.parent.iterdir()] == ["acl.json"]

    def test_write_creates_mount_path(self, tmp_path):
        """Test that a missing mount directory is created."""
        policy_file = PolicyFile(tmp_path / "missing" / "dir")

        policy_file.write({})

        assert policy_file.read() == {}
