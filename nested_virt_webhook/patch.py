"""
JSON Patch synthesis for the CPU features field.

This is not a general RFC 6902 diff. Only `spec.template.spec.domain.cpu`
is inspected; any other difference between the two documents is ignored and
at most one operation is produced:

- original has no cpu object           -> add     /spec/template/spec/domain/cpu
- original cpu has no features         -> add     /spec/template/spec/domain/cpu/features
- original cpu already has features    -> replace /spec/template/spec/domain/cpu/features
"""

import json
from typing import Any, Dict, List, Optional

CPU_PATH = "/spec/template/spec/domain/cpu"
FEATURES_PATH = CPU_PATH + "/features"

_CPU_KEYS = ("spec", "template", "spec", "domain", "cpu")


class PatchBuildError(ValueError):
    """Raised when a serialized document cannot be parsed."""


def _load(label: str, data: bytes) -> Any:
    try:
        return json.loads(data)
    except (TypeError, ValueError) as exc:
        raise PatchBuildError(f"failed to parse {label} document: {exc}") from exc


def _canonical(doc: Any) -> str:
    return json.dumps(doc, sort_keys=True, separators=(",", ":"))


def _find_cpu(doc: Any) -> Optional[Dict[str, Any]]:
    """Walk the fixed cpu path, returning None on any missing or non-object segment."""
    node = doc
    for key in _CPU_KEYS:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node if isinstance(node, dict) else None


def create_json_patch(original: bytes, mutated: bytes) -> Optional[bytes]:
    """Return JSON Patch bytes turning `original` into `mutated`, or None.

    None means no change at the cpu features path: the documents are equal,
    or the mutated document lacks the path.
    """
    original_doc = _load("original", original)
    mutated_doc = _load("mutated", mutated)

    if _canonical(original_doc) == _canonical(mutated_doc):
        return None

    cpu = _find_cpu(mutated_doc)
    if cpu is None or "features" not in cpu:
        return None
    features = cpu["features"]

    original_cpu = _find_cpu(original_doc)
    if original_cpu is None:
        op: Dict[str, Any] = {"op": "add", "path": CPU_PATH, "value": cpu}
    elif original_cpu.get("features") is None:
        op = {"op": "add", "path": FEATURES_PATH, "value": features}
    else:
        op = {"op": "replace", "path": FEATURES_PATH, "value": features}

    patches: List[Dict[str, Any]] = [op]
    return json.dumps(patches).encode("utf-8")
