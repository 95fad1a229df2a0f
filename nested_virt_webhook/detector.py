"""
Host CPU virtualization feature detection.

The mutator asks a `FeatureDetector` which nested-virtualization flag to
request. `CPUInfoDetector` reads `/proc/cpuinfo`; `StaticDetector` returns a
fixed answer and is used by tests and by deployments that pin the feature.
"""

import abc
import logging
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_CPUINFO_PATH = "/proc/cpuinfo"

# cpuinfo keys listing CPU flags on x86 ("flags") and arm ("Features")
_FLAG_KEYS = ("flags", "Features")


class CPUFeature(str, Enum):
    NONE = ""
    VMX = "vmx"  # Intel VT-x
    SVM = "svm"  # AMD-V


class DetectionError(Exception):
    """Raised when no virtualization feature can be determined."""


class CPUInfoReadError(DetectionError):
    """Raised when the CPU capability source cannot be read."""


class FeatureDetector(abc.ABC):
    @abc.abstractmethod
    def detect(self) -> CPUFeature:
        """Return the virtualization feature of this host or raise DetectionError."""


class CPUInfoDetector(FeatureDetector):
    """Detect VT-x/AMD-V from the flags line of a cpuinfo-style file."""

    def __init__(self, cpuinfo_path: str = DEFAULT_CPUINFO_PATH) -> None:
        self.cpuinfo_path = cpuinfo_path

    def detect(self) -> CPUFeature:
        try:
            with open(self.cpuinfo_path, encoding="utf-8", errors="replace") as handle:
                cpuinfo = handle.read()
        except OSError as exc:
            raise CPUInfoReadError(f"failed to read {self.cpuinfo_path}: {exc}") from exc

        for line in cpuinfo.splitlines():
            key, sep, value = line.partition(":")
            if not sep or key.strip() not in _FLAG_KEYS:
                continue
            tokens = value.split()
            if CPUFeature.VMX.value in tokens:
                return CPUFeature.VMX
            if CPUFeature.SVM.value in tokens:
                return CPUFeature.SVM

        raise DetectionError("no virtualization feature (vmx or svm) found in CPU info")

    def __repr__(self) -> str:
        return f"CPUInfoDetector({self.cpuinfo_path!r})"


class StaticDetector(FeatureDetector):
    """Return a fixed feature, or raise a fixed error."""

    def __init__(
        self,
        feature: CPUFeature = CPUFeature.NONE,
        error: Optional[Exception] = None,
    ) -> None:
        self.feature = feature
        self.error = error

    def detect(self) -> CPUFeature:
        if self.error is not None:
            raise self.error
        if self.feature == CPUFeature.NONE:
            raise DetectionError("no virtualization feature configured")
        return self.feature

    def __repr__(self) -> str:
        return f"StaticDetector({self.feature.value!r})"


def detector_from_settings(
    cpu_feature: Optional[str] = None,
    cpuinfo_path: str = DEFAULT_CPUINFO_PATH,
) -> FeatureDetector:
    """Pick a detector: a pinned feature wins over reading the host."""
    if cpu_feature:
        try:
            feature = CPUFeature(cpu_feature.strip().lower())
        except ValueError:
            raise ValueError(f"unsupported CPU feature {cpu_feature!r}, expected vmx or svm") from None
        if feature == CPUFeature.NONE:
            raise ValueError("CPU feature must not be empty")
        logger.info("Using pinned CPU feature %s", feature.value)
        return StaticDetector(feature)
    return CPUInfoDetector(cpuinfo_path)
