"""Tests for manifest rendering."""

import json

import pytest
import yaml
from kubernetes.client import ApiClient

from headscale_operator.crds import Headscale, Policy, PreauthKey
from headscale_operator.exceptions import RenderError
from headscale_operator.manifests import (
    HeadscaleManifests,
    HeadscalePorts,
    common_labels,
    parse_port,
    policy_config_map,
    preauth_key_secret,
)

CM_IMAGE = "registry.example.com/config-manager:test"


@pytest.fixture
def manifests(headscale):
    """Renderer for the sample instance."""
    return HeadscaleManifests(headscale, CM_IMAGE, "registry.example.com/headscale:test")


class TestPorts:
    """Test cases for port derivation."""

    def test_defaults(self):
        """Test ports of an empty config."""
        ports = HeadscalePorts.from_config({})
        assert (ports.http, ports.metrics, ports.grpc, ports.derp) == (8080, 9090, 50443, 3478)

    def test_configured_listen_addr(self, manifests):
        """Test that listen addresses from the config are honored."""
        assert manifests.ports.http == 8443

    @pytest.mark.parametrize("address", ["8080", "0.0.0.0:", "0.0.0.0:http", "0.0.0.0:70000"])
    def test_invalid_address(self, address):
        """Test that malformed listen addresses are rejected."""
        with pytest.raises(RenderError):
            parse_port(address, "listen_addr")

    def test_ipv6_address(self):
        """Test a bracketed IPv6 listen address."""
        assert parse_port("[::]:8080", "listen_addr") == 8080


class TestHeadscaleManifests:
    """Test cases for HeadscaleManifests."""

    def test_labels_and_owner(self, manifests):
        """Test that children carry common labels and an owner reference."""
        config_map = manifests.config_map()

        assert config_map.metadata.name == "headscale-demo-config"
        assert config_map.metadata.namespace == "vpn"
        assert config_map.metadata.labels == common_labels("headscale-demo-config")
        owner = config_map.metadata.owner_references[0]
        assert owner.kind == "Headscale"
        assert owner.name == "demo"
        assert owner.uid == "6f1c3f0e-0000-4000-8000-000000000001"
        assert owner.controller is True

    def test_config_defaults_policy_file(self, manifests):
        """Test that a missing policy points Headscale at the synced ACL file."""
        config = yaml.safe_load(manifests.config_map().data["config.yaml"])

        assert config["policy"] == {"mode": "file", "path": "/etc/headscale/acls/acl.json"}
        assert config["server_url"] == "https://vpn.example.com"

    def test_config_keeps_explicit_policy(self, headscale_object):
        """Test that a configured policy is left alone."""
        headscale_object["spec"]["config"]["policy"] = {"mode": "database"}
        manifests = HeadscaleManifests(Headscale.model_validate(headscale_object), CM_IMAGE)

        config = yaml.safe_load(manifests.config_map().data["config.yaml"])

        assert config["policy"] == {"mode": "database"}

    def test_rendering_does_not_mutate_spec(self, manifests, headscale):
        """Test that defaulting works on a copy of the config."""
        manifests.config_map()
        assert "policy" not in headscale.spec.config

    def test_keys_secret(self, manifests):
        """Test generated private keys."""
        secret = manifests.keys_secret()

        assert secret.metadata.name == "headscale-demo-keys"
        for key in ("derp_server_private.key", "noise_private.key"):
            value = secret.string_data[key]
            assert value.startswith("privkey:")
            assert len(value) == len("privkey:") + 64
        assert secret.string_data["derp_server_private.key"] != secret.string_data["noise_private.key"]

    def test_acl_placeholder(self, manifests):
        """Test the empty ACL document."""
        config_map = manifests.acl_config_map()

        assert config_map.metadata.name == "headscale-demo-acl"
        assert json.loads(config_map.data["acl.json"]) == {}

    def test_rbac(self, manifests):
        """Test that the config manager may only read its ACL ConfigMap."""
        service_account, role, role_binding = manifests.rbac()

        assert service_account.metadata.name == "headscale-demo-config-manager"
        rule = role.rules[0]
        assert rule.resources == ["configmaps"]
        assert rule.resource_names == ["headscale-demo-acl"]
        assert rule.verbs == ["get", "list", "watch"]
        assert role_binding.role_ref.name == "headscale-demo-config-manager"
        assert role_binding.subjects[0].name == "headscale-demo-config-manager"
        assert role_binding.subjects[0].namespace == "vpn"

    def test_stateful_set(self, manifests):
        """Test the workload layout."""
        stateful_set = manifests.stateful_set()
        pod = stateful_set.spec.template.spec

        assert stateful_set.metadata.name == "headscale-demo"
        assert stateful_set.spec.replicas == 1
        assert stateful_set.spec.selector.match_labels == {"app.kubernetes.io/name": "headscale-demo"}
        assert pod.share_process_namespace is True
        assert pod.service_account_name == "headscale-demo-config-manager"

        headscale, config_manager = pod.containers
        assert headscale.name == "headscale"
        assert headscale.image == "registry.example.com/headscale:test"
        assert headscale.command == ["headscale", "serve"]
        assert ApiClient().sanitize_for_serialization(headscale)["env"] == [{"name": "TZ", "value": "UTC"}]
        assert {p.name: p.container_port for p in headscale.ports} == {
            "http": 8443,
            "metrics": 9090,
            "derp": 3478,
            "grpc": 50443,
        }
        mounts = {m.mount_path: m for m in headscale.volume_mounts}
        assert mounts["/etc/headscale/config.yaml"].sub_path == "config.yaml"
        assert mounts["/etc/headscale/acls"].read_only is True
        assert "/etc/headscale/tls" in mounts

        assert config_manager.image == CM_IMAGE
        assert config_manager.command == ["/bin/config-manager"]
        env = {e.name: e for e in config_manager.env}
        assert env["CONFIGMAP_NAME"].value == "headscale-demo-acl"
        assert env["MOUNT_PATH"].value == "/etc/headscale/acls"
        assert env["NAMESPACE"].value_from.field_ref.field_path == "metadata.namespace"
        assert config_manager.resources.limits == {"cpu": "100m", "memory": "48Mi"}

        (init,) = pod.init_containers
        assert init.command == ["/bin/config-manager", "init"]

        volumes = {v.name: v for v in pod.volumes}
        assert volumes["keys"].secret.secret_name == "headscale-demo-keys"
        assert volumes["tls"].secret.secret_name == "vpn-tls"
        assert volumes["acls"].empty_dir is not None

    def test_stateful_set_without_tls(self, headscale_object):
        """Test that the TLS volume is optional."""
        del headscale_object["spec"]["tls"]
        manifests = HeadscaleManifests(Headscale.model_validate(headscale_object), CM_IMAGE)

        pod = manifests.stateful_set().spec.template.spec

        assert "tls" not in {v.name for v in pod.volumes}
        assert "tls" not in {m.name for m in pod.containers[0].volume_mounts}

    def test_instance_image_overrides(self, headscale_object):
        """Test that images set on the instance win over the defaults."""
        headscale_object["spec"]["deployment"]["image"] = "headscale:custom"
        headscale_object["spec"]["configManager"]["image"] = "config-manager:custom"
        manifests = HeadscaleManifests(Headscale.model_validate(headscale_object), CM_IMAGE)

        headscale, config_manager = manifests.stateful_set().spec.template.spec.containers

        assert headscale.image == "headscale:custom"
        assert config_manager.image == "config-manager:custom"

    def test_service(self, manifests):
        """Test the ClusterIP service."""
        service = manifests.service()

        assert service.metadata.name == "headscale-demo-service"
        assert service.spec.type == "ClusterIP"
        assert service.spec.selector == {"app.kubernetes.io/name": "headscale-demo"}
        assert {p.name: (p.port, p.protocol) for p in service.spec.ports} == {
            "https": (8443, "TCP"),
            "metrics": (9090, "TCP"),
            "derp": (3478, "UDP"),
            "grpc": (50443, "TCP"),
        }


class TestPolicyConfigMap:
    """Test cases for policy rendering."""

    def test_document_shape(self, policy_object, headscale):
        """Test that the policy renders into the instance's ACL ConfigMap."""
        config_map = policy_config_map(Policy.model_validate(policy_object), headscale)

        assert config_map.metadata.name == "headscale-demo-acl"
        assert config_map.metadata.namespace == "vpn"
        document = json.loads(config_map.data["acl.json"])
        assert document == {
            "groups": {"group:admins": ["alice@"]},
            "tagOwners": {"tag:server": ["group:admins"]},
            "acls": [
                {"action": "accept", "src": ["group:admins"], "dst": ["*:*"]},
                {"action": "deny", "src": ["*"], "dst": ["tag:server:22"]},
            ],
        }


class TestPreauthKeySecret:
    """Test cases for the key secret."""

    def test_default_name(self, preauth_key_object):
        """Test the derived secret name and key."""
        secret = preauth_key_secret(PreauthKey.model_validate(preauth_key_object), "hskey-auth-x")

        assert secret.metadata.name == "headscale-preauth-laptop"
        assert secret.string_data == {"authkey": "hskey-auth-x"}

    def test_target_secret(self, preauth_key_object):
        """Test an explicitly named secret."""
        preauth_key_object["spec"]["targetSecret"] = "laptop-auth"
        secret = preauth_key_secret(PreauthKey.model_validate(preauth_key_object), "hskey-auth-x")

        assert secret.metadata.name == "laptop-auth"
