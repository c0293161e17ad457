"""CustomResourceDefinition manifests generated from the resource models."""

from typing import Any, Optional

import yaml
from pydantic import BaseModel

from .crds import (
    CustomResource,
    Headscale,
    HeadscaleSpec,
    HeadscaleStatus,
    Policy,
    PolicySpec,
    PreauthKey,
    PreauthKeySpec,
    PreauthKeyStatus,
    User,
    UserSpec,
    UserStatus,
)

# kind -> (spec model, status model, printer columns)
DEFINITIONS: dict[type[CustomResource], tuple[type[BaseModel], Optional[type[BaseModel]], list[dict[str, Any]]]] = {
    Headscale: (
        HeadscaleSpec,
        HeadscaleStatus,
        [
            {"name": "Ready", "type": "boolean", "jsonPath": ".status.ready"},
            {"name": "Message", "type": "string", "jsonPath": ".status.message"},
        ],
    ),
    User: (UserSpec, UserStatus, []),
    PreauthKey: (PreauthKeySpec, PreauthKeyStatus, []),
    Policy: (PolicySpec, None, []),
}


def _structural(node: Any, defs: dict[str, Any]) -> Any:
    """
    Rewrite a pydantic JSON schema node into a Kubernetes structural schema.

    References are inlined, titles dropped, ``Optional`` unions become
    ``nullable`` and free-form objects preserve unknown fields.
    """
    if isinstance(node, list):
        return [_structural(item, defs) for item in node]
    if not isinstance(node, dict):
        return node

    if "$ref" in node:
        target = defs[node["$ref"].rsplit("/", 1)[-1]]
        merged = {**target, **{k: v for k, v in node.items() if k != "$ref"}}
        return _structural(merged, defs)

    if "allOf" in node and len(node["allOf"]) == 1:
        rest = {k: v for k, v in node.items() if k != "allOf"}
        return _structural({**node["allOf"][0], **rest}, defs)

    if "anyOf" in node:
        variants = [v for v in node["anyOf"] if v.get("type") != "null"]
        rest = {k: v for k, v in node.items() if k != "anyOf"}
        if len(variants) == 1:
            result = _structural({**variants[0], **rest}, defs)
            if len(variants) < len(node["anyOf"]):
                result["nullable"] = True
            return result

    result = {}
    for key, value in node.items():
        if key in ("title", "$defs") or (key == "default" and value is None):
            continue
        if key == "properties":
            result[key] = {name: _structural(prop, defs) for name, prop in value.items()}
        elif key == "additionalProperties" and value is True:
            result["x-kubernetes-preserve-unknown-fields"] = True
        else:
            result[key] = _structural(value, defs)

    if result.get("type") == "object" and "properties" not in result and "additionalProperties" not in result:
        result["x-kubernetes-preserve-unknown-fields"] = True
    return result


def openapi_schema(model: type[BaseModel]) -> dict[str, Any]:
    """Structural OpenAPI v3 schema of a model, using its wire field names."""
    schema = model.model_json_schema(by_alias=True)
    return _structural(schema, schema.get("$defs", {}))


def custom_resource_definition(resource: type[CustomResource]) -> dict[str, Any]:
    """
    Build the CustomResourceDefinition of a resource model.

    Args:
        resource: Custom resource model

    Returns:
        CustomResourceDefinition manifest as a dict
    """
    spec_model, status_model, columns = DEFINITIONS[resource]
    kind = resource.RESOURCE

    properties = {"spec": openapi_schema(spec_model)}
    if status_model is not None:
        properties["status"] = {**openapi_schema(status_model), "nullable": True}

    version: dict[str, Any] = {
        "name": kind.version,
        "served": True,
        "storage": True,
        "schema": {
            "openAPIV3Schema": {
                "type": "object",
                "required": ["spec"],
                "properties": properties,
            }
        },
    }
    if status_model is not None:
        version["subresources"] = {"status": {}}
    if columns:
        version["additionalPrinterColumns"] = columns

    return {
        "apiVersion": "apiextensions.k8s.io/v1",
        "kind": "CustomResourceDefinition",
        "metadata": {"name": f"{kind.plural}.{kind.group}"},
        "spec": {
            "group": kind.group,
            "names": {
                "kind": kind.kind,
                "listKind": f"{kind.kind}List",
                "plural": kind.plural,
                "singular": kind.kind.lower(),
            },
            "scope": "Namespaced",
            "versions": [version],
        },
    }


def render_definitions() -> str:
    """All CustomResourceDefinitions as a multi-document YAML stream."""
    return yaml.safe_dump_all(
        [custom_resource_definition(resource) for resource in DEFINITIONS],
        sort_keys=False,
    )
