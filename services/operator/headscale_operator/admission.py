"""
Mutating admission logic.

Covers defaulting of Headscale objects and Tailscale sidecar injection
into annotated pods. Functions take the ``request`` part of an
AdmissionReview and return the matching ``response``; serving them over
HTTPS is left to the webhook server.
"""

import base64
import json
import logging
from typing import Any, Optional

from pydantic import BaseModel, Field

from .crds import GROUP, Headscale

logger = logging.getLogger(__name__)

ANNOTATION_INJECT_SIDECAR = f"{GROUP}/tailscale-inject-sidecar"
ANNOTATION_EXTRA_ARGS = f"{GROUP}/tailscale-extra-args"
ANNOTATION_IMAGE = f"{GROUP}/tailscale-image"
ANNOTATION_AUTH_SECRET = f"{GROUP}/tailscale-auth-secret"
ANNOTATION_RESOURCES = f"{GROUP}/tailscale-resources"

SIDECAR_NAME = "tailscale-sidecar"
DEFAULT_SIDECAR_RESOURCES = {"requests": {"cpu": "100m", "memory": "64Mi"}}


class GroupVersionKind(BaseModel):
    group: str = ""
    version: str = ""
    kind: str


class AdmissionRequest(BaseModel):
    """The fields of an AdmissionReview request the mutations rely on."""

    uid: str
    kind: GroupVersionKind
    operation: str = "CREATE"
    namespace: Optional[str] = None
    object: Optional[dict[str, Any]] = None

    @property
    def annotations(self) -> dict[str, str]:
        return ((self.object or {}).get("metadata") or {}).get("annotations") or {}


class AdmissionResponse(BaseModel):
    """An AdmissionReview response, optionally carrying a JSON patch."""

    uid: str
    allowed: bool = True
    patch: Optional[list[dict[str, Any]]] = Field(default=None, exclude=True)
    reason: Optional[str] = Field(default=None, exclude=True)

    def to_review(self) -> dict[str, Any]:
        """Serialize into the ``response`` field of an AdmissionReview."""
        response: dict[str, Any] = {"uid": self.uid, "allowed": self.allowed}
        if self.patch:
            response["patchType"] = "JSONPatch"
            response["patch"] = base64.b64encode(json.dumps(self.patch).encode()).decode()
        if self.reason:
            response["status"] = {"code": 403, "message": self.reason}
        return response


def deny(request: AdmissionRequest, reason: str) -> AdmissionResponse:
    logger.info(f"Denying admission of {request.kind.kind} {request.uid}: {reason}")
    return AdmissionResponse(uid=request.uid, allowed=False, reason=reason)


def mutate_headscale(request: AdmissionRequest, default_config_manager_image: str) -> AdmissionResponse:
    """
    Default the config-manager image of a Headscale object.

    Args:
        request: Admission request
        default_config_manager_image: Image to set when none is given

    Returns:
        Admission response, with a patch if the image was missing
    """
    response = AdmissionResponse(uid=request.uid)
    if request.kind.kind != Headscale.RESOURCE.kind or request.object is None:
        return response

    spec = request.object.get("spec") or {}
    config_manager = spec.get("configManager")
    if config_manager is None:
        response.patch = [
            {
                "op": "add",
                "path": "/spec/configManager",
                "value": {"image": default_config_manager_image},
            }
        ]
    elif not config_manager.get("image"):
        response.patch = [
            {
                "op": "add",
                "path": "/spec/configManager/image",
                "value": default_config_manager_image,
            }
        ]
    return response


def build_sidecar_container(
    auth_secret: str,
    image: str,
    extra_args: Optional[str] = None,
    resources: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """
    Build the Tailscale sidecar container.

    Args:
        auth_secret: Secret holding the pre-auth key under ``authkey``
        image: Tailscale image
        extra_args: Extra arguments for ``tailscale up``
        resources: Resource requirements (defaults to a small request)

    Returns:
        Container spec as a dict
    """
    return {
        "name": SIDECAR_NAME,
        "image": image,
        "securityContext": {"capabilities": {"add": ["NET_ADMIN"]}},
        "env": [
            {"name": "TS_EXTRA_ARGS", "value": extra_args or ""},
            {"name": "TS_USERSPACE", "value": "false"},
            {"name": "TS_ACCEPT_DNS", "value": "true"},
            {"name": "TS_KUBE_SECRET", "value": ""},
            {"name": "TS_DEBUG_FIREWALL_MODE", "value": "nftables"},
            {
                "name": "TS_AUTHKEY",
                "valueFrom": {"secretKeyRef": {"name": auth_secret, "key": "authkey"}},
            },
            {"name": "POD_NAME", "valueFrom": {"fieldRef": {"fieldPath": "metadata.name"}}},
            {"name": "POD_UID", "valueFrom": {"fieldRef": {"fieldPath": "metadata.uid"}}},
        ],
        "resources": resources or DEFAULT_SIDECAR_RESOURCES,
    }


def _parse_resources(raw: str) -> dict[str, Any]:
    resources = json.loads(raw)
    if not isinstance(resources, dict) or not set(resources) <= {"limits", "requests", "claims"}:
        raise ValueError("expected an object with limits and/or requests")
    return resources


def mutate_pod(request: AdmissionRequest, default_tailscale_image: str) -> AdmissionResponse:
    """
    Inject a Tailscale sidecar into pods that ask for one.

    Pods opt in with the inject-sidecar annotation set to "true" and must
    name the secret holding their pre-auth key.

    Args:
        request: Admission request
        default_tailscale_image: Image used when the pod does not set one

    Returns:
        Admission response, denied if the auth-secret annotation is missing
    """
    response = AdmissionResponse(uid=request.uid)
    annotations = request.annotations
    if request.kind.kind != "Pod" or annotations.get(ANNOTATION_INJECT_SIDECAR) != "true":
        return response

    auth_secret = annotations.get(ANNOTATION_AUTH_SECRET)
    if not auth_secret:
        return deny(request, f"missing required '{ANNOTATION_AUTH_SECRET}' annotation")

    resources = None
    if ANNOTATION_RESOURCES in annotations:
        try:
            resources = _parse_resources(annotations[ANNOTATION_RESOURCES])
        except ValueError as e:
            return deny(request, f"invalid '{ANNOTATION_RESOURCES}' annotation: {e}")

    container = build_sidecar_container(
        auth_secret,
        annotations.get(ANNOTATION_IMAGE) or default_tailscale_image,
        extra_args=annotations.get(ANNOTATION_EXTRA_ARGS),
        resources=resources,
    )
    response.patch = [{"op": "add", "path": "/spec/containers/-", "value": container}]
    return response


def review(admission_review: dict[str, Any], config_manager_image: str, tailscale_image: str) -> dict[str, Any]:
    """
    Answer an AdmissionReview.

    Args:
        admission_review: AdmissionReview as received by the webhook
        config_manager_image: Default config-manager image for Headscale objects
        tailscale_image: Default image of injected sidecars

    Returns:
        AdmissionReview carrying the response
    """
    request = AdmissionRequest.model_validate(admission_review["request"])
    if request.kind.kind == "Pod":
        response = mutate_pod(request, tailscale_image)
    else:
        response = mutate_headscale(request, config_manager_image)

    return {
        "apiVersion": admission_review.get("apiVersion", "admission.k8s.io/v1"),
        "kind": "AdmissionReview",
        "response": response.to_review(),
    }
