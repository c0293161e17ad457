"""Tests for CustomResourceDefinition generation and the resource models."""

import yaml

from headscale_operator.crds import Headscale, PolicyDocument, PolicySpec, User
from headscale_operator.definitions import custom_resource_definition, render_definitions


def walk(node):
    """Yield every dict in a nested structure."""
    if isinstance(node, dict):
        yield node
        for value in node.values():
            yield from walk(value)
    elif isinstance(node, list):
        for item in node:
            yield from walk(item)


class TestDefinitions:
    """Test cases for CRD manifests."""

    def test_render_all(self):
        """Test that all four definitions are rendered."""
        documents = list(yaml.safe_load_all(render_definitions()))

        assert [d["metadata"]["name"] for d in documents] == [
            "headscales.headscale.juliamertz.dev",
            "users.headscale.juliamertz.dev",
            "preauthkeys.headscale.juliamertz.dev",
            "policies.headscale.juliamertz.dev",
        ]
        assert all(d["spec"]["scope"] == "Namespaced" for d in documents)

    def test_schema_is_structural(self):
        """Test that references, titles and unions are gone."""
        for resource in (Headscale, User):
            crd = custom_resource_definition(resource)
            for node in walk(crd["spec"]["versions"][0]["schema"]):
                assert "$ref" not in node
                assert "$defs" not in node
                assert "anyOf" not in node
                assert "title" not in node

    def test_headscale_definition(self):
        """Test status subresource, printer columns and free-form config."""
        version = custom_resource_definition(Headscale)["spec"]["versions"][0]
        spec = version["schema"]["openAPIV3Schema"]["properties"]["spec"]

        assert version["name"] == "v1alpha1"
        assert version["subresources"] == {"status": {}}
        assert [c["name"] for c in version["additionalPrinterColumns"]] == ["Ready", "Message"]
        assert spec["properties"]["config"]["x-kubernetes-preserve-unknown-fields"] is True
        assert "configManager" in spec["properties"]
        assert spec["properties"]["tls"]["properties"]["existingSecret"]["nullable"] is True

    def test_user_definition(self):
        """Test camelCase fields and required references."""
        schema = custom_resource_definition(User)["spec"]["versions"][0]["schema"]["openAPIV3Schema"]
        spec = schema["properties"]["spec"]

        assert spec["required"] == ["headscaleRef"]
        assert spec["properties"]["headscaleRef"]["properties"]["name"]["type"] == "string"
        assert set(schema["properties"]["status"]["properties"]) >= {"id", "name", "createdAt"}


class TestPolicyDocument:
    """Test cases for the ACL document shape."""

    def test_unset_sections_are_omitted(self):
        """Test that optional sections do not appear as null."""
        spec = PolicySpec.model_validate(
            {"headscaleRef": {"name": "demo"}, "acls": [{"action": "accept", "src": ["*"], "dst": ["*:*"]}]}
        )

        assert PolicyDocument.from_spec(spec).to_wire() == {
            "acls": [{"action": "accept", "src": ["*"], "dst": ["*:*"]}]
        }
