"""
VirtualMachine mutation: request the host's nested-virtualization CPU feature.

The feature is added to `spec.template.spec.domain.cpu.features` as
`{"name": <vmx|svm>, "policy": "require"}`. Missing containers on that path
are created. Mutation is idempotent: a feature already listed by name is left
as it is.
"""

from typing import Any, Dict, List, Optional

from .detector import CPUInfoDetector, FeatureDetector

FEATURE_POLICY = "require"

# Path from the VirtualMachine root to the cpu object
_CPU_PATH = ("spec", "template", "spec", "domain", "cpu")


class MutationError(Exception):
    """Raised when a VirtualMachine cannot be mutated."""


def _ensure_object(parent: Dict[str, Any], key: str, path: str) -> Dict[str, Any]:
    child = parent.get(key)
    if child is None:
        child = parent[key] = {}
    elif not isinstance(child, dict):
        raise MutationError(f"{path} is not an object")
    return child


class VMFeatureMutator:
    def __init__(self, detector: Optional[FeatureDetector] = None) -> None:
        self.detector = detector if detector is not None else CPUInfoDetector()

    def mutate_vm(self, vm: Optional[Dict[str, Any]]) -> None:
        """Add the detected CPU feature to `vm` in place.

        Raises:
          MutationError: `vm` is missing, detection failed, or a value on the
                         cpu path is not an object. On detection failure `vm`
                         is not modified.
        """
        if vm is None:
            raise MutationError("vm is None")

        try:
            feature = self.detector.detect()
        except Exception as exc:  # noqa: BLE001
            raise MutationError(f"failed to detect CPU feature: {exc}") from exc

        node = vm
        for depth, key in enumerate(_CPU_PATH):
            node = _ensure_object(node, key, ".".join(_CPU_PATH[: depth + 1]))

        features: Optional[List[Any]] = node.get("features")
        if features is None:
            features = node["features"] = []
        elif not isinstance(features, list):
            raise MutationError("spec.template.spec.domain.cpu.features is not a list")

        for entry in features:
            if isinstance(entry, dict) and entry.get("name") == feature.value:
                return

        features.append({"name": feature.value, "policy": FEATURE_POLICY})
