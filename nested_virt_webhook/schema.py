"""
Decoding of AdmissionReview envelopes and VirtualMachine objects.

The set of accepted API versions is built once, on first use, and never
changes afterwards, so request threads can read it without locking.
"""

import json
from dataclasses import dataclass
from functools import lru_cache
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

ADMISSION_REVIEW_KIND = "AdmissionReview"
DEFAULT_ADMISSION_API_VERSION = "admission.k8s.io/v1"
VIRTUAL_MACHINE_KIND = "VirtualMachine"


class TransportDecodeError(ValueError):
    """The request body is not a usable AdmissionReview."""


class ObjectDecodeError(ValueError):
    """The embedded object is not a VirtualMachine."""


@dataclass(frozen=True)
class AdmissionRequest:
    uid: str
    namespace: str
    object_raw: bytes
    kind: Optional[str] = None
    operation: Optional[str] = None


@lru_cache(maxsize=None)
def registry() -> Mapping[str, frozenset]:
    """Return kind -> accepted apiVersions."""
    return MappingProxyType(
        {
            ADMISSION_REVIEW_KIND: frozenset({"admission.k8s.io/v1", "admission.k8s.io/v1beta1"}),
            VIRTUAL_MACHINE_KIND: frozenset({"kubevirt.io/v1", "kubevirt.io/v1alpha3"}),
        }
    )


def _check_type_meta(doc: Dict[str, Any], kind: str, error: type) -> None:
    declared_kind = doc.get("kind")
    if declared_kind is not None and not isinstance(declared_kind, str):
        raise error(f"kind must be a string, got {declared_kind!r}")
    if declared_kind is not None and declared_kind != kind:
        raise error(f"expected kind {kind}, got {declared_kind!r}")
    api_version = doc.get("apiVersion")
    if api_version is not None and not isinstance(api_version, str):
        raise error(f"apiVersion must be a string, got {api_version!r}")
    if api_version is not None and api_version not in registry()[kind]:
        raise error(f"unsupported apiVersion {api_version!r} for {kind}")


def decode_admission_review(body: bytes) -> Tuple[str, AdmissionRequest]:
    """Parse an AdmissionReview body into its apiVersion and request."""
    try:
        review = json.loads(body)
    except (TypeError, ValueError) as exc:
        raise TransportDecodeError(f"failed to decode admission review: {exc}") from exc
    if not isinstance(review, dict):
        raise TransportDecodeError("failed to decode admission review: body is not an object")
    _check_type_meta(review, ADMISSION_REVIEW_KIND, TransportDecodeError)

    req = review.get("request")
    if req is None:
        raise TransportDecodeError("admission review request is missing")
    if not isinstance(req, dict):
        raise TransportDecodeError("admission review request is not an object")

    obj = req.get("object")
    if isinstance(obj, str):
        try:
            object_raw = obj.encode("utf-8")
        except UnicodeEncodeError as exc:
            raise TransportDecodeError(f"admission review object is not valid UTF-8: {exc}") from exc
    else:
        object_raw = json.dumps(obj).encode("utf-8")

    kind_info = req.get("kind")
    request = AdmissionRequest(
        uid=str(req.get("uid") or ""),
        namespace=str(req.get("namespace") or ""),
        object_raw=object_raw,
        kind=kind_info.get("kind") if isinstance(kind_info, dict) else None,
        operation=req.get("operation"),
    )
    return review.get("apiVersion") or DEFAULT_ADMISSION_API_VERSION, request


def _expect(value: Any, expected: type, path: str) -> None:
    if value is not None and not isinstance(value, expected):
        raise ObjectDecodeError(f"{path}: expected {expected.__name__}, got {type(value).__name__}")


def decode_virtual_machine(raw: bytes) -> Dict[str, Any]:
    """Parse raw object bytes and check the fields the webhook relies on."""
    try:
        vm = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise ObjectDecodeError(str(exc)) from exc
    if not isinstance(vm, dict):
        raise ObjectDecodeError("object is not a JSON object")
    _check_type_meta(vm, VIRTUAL_MACHINE_KIND, ObjectDecodeError)

    metadata = vm.get("metadata")
    _expect(metadata, dict, "metadata")
    _expect((metadata or {}).get("name"), str, "metadata.name")

    node: Any = vm
    path = []
    for key in ("spec", "template", "spec", "domain", "cpu"):
        node = node.get(key)
        path.append(key)
        _expect(node, dict, ".".join(path))
        if node is None:
            return vm

    features = node.get("features")
    _expect(features, list, "spec.template.spec.domain.cpu.features")
    for index, entry in enumerate(features or []):
        if not isinstance(entry, dict):
            raise ObjectDecodeError(f"spec.template.spec.domain.cpu.features[{index}] is not an object")
    return vm


def vm_name(vm: Dict[str, Any]) -> str:
    return (vm.get("metadata") or {}).get("name") or ""


def encode_admission_review(api_version: str, response: Dict[str, Any]) -> Dict[str, Any]:
    return {"apiVersion": api_version, "kind": ADMISSION_REVIEW_KIND, "response": response}
