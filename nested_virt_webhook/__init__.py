"""Mutating admission webhook enabling nested virtualization on KubeVirt VMs."""

from .detector import CPUFeature, CPUInfoDetector, DetectionError, FeatureDetector, StaticDetector
from .handler import WebhookHandler
from .mutation import MutationError, VMFeatureMutator
from .patch import PatchBuildError, create_json_patch
from .rules import NamespaceRule, RuleCompileError, RuleSet, matches

__version__ = "0.1.0"

__all__ = [
    "CPUFeature",
    "CPUInfoDetector",
    "DetectionError",
    "FeatureDetector",
    "MutationError",
    "NamespaceRule",
    "PatchBuildError",
    "RuleCompileError",
    "RuleSet",
    "StaticDetector",
    "VMFeatureMutator",
    "WebhookHandler",
    "create_json_patch",
    "matches",
]
