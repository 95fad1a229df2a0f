import tempfile
import unittest
from pathlib import Path

from nested_virt_webhook.detector import (
    CPUFeature,
    CPUInfoDetector,
    CPUInfoReadError,
    DetectionError,
    FeatureDetector,
    StaticDetector,
    detector_from_settings,
)

INTEL_CPUINFO = """
processor   : 0
vendor_id   : GenuineIntel
model name  : Intel(R) Xeon(R) CPU E5-2609 v4 @ 1.70GHz
flags       : fpu vme de pse tsc msr pae mce cx8 apic sep mtrr monitor ds_cpl vmx smx est tm2 ssse3 ept vpid
vmx flags   : vnmi preemption_timer posted_intr invvpid ept_x_only
bugs        : cpu_meltdown spectre_v1 spectre_v2
power management:
"""

AMD_CPUINFO = """
processor\t: 0
vendor_id\t: AuthenticAMD
model name\t: AMD EPYC 4545P 16-Core Processor
flags\t\t: fpu vme de pse tsc msr cmp_legacy svm extapic cr8_legacy npt lbrv svm_lock nrip_save
bugs\t\t: sysret_ss_attrs spectre_v1 spectre_v2
"""

ARM_CPUINFO = """
processor\t: 3
BogoMIPS\t: 108.00
Features\t: fp asimd evtstrm crc32 cpuid
CPU implementer\t: 0x41
"""


class CPUInfoDetectorTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)
        self.cpuinfo = Path(self.tmpdir.name) / "cpuinfo"

    def _detect(self, content: str) -> CPUFeature:
        self.cpuinfo.write_text(content)
        return CPUInfoDetector(str(self.cpuinfo)).detect()

    def test_default_path(self) -> None:
        self.assertEqual(CPUInfoDetector().cpuinfo_path, "/proc/cpuinfo")

    def test_unreadable_source(self) -> None:
        detector = CPUInfoDetector("/nonexistent/path")
        with self.assertRaises(CPUInfoReadError) as ctx:
            detector.detect()
        self.assertIn("/nonexistent/path", str(ctx.exception))

    def test_detects_vmx_on_intel(self) -> None:
        self.assertEqual(self._detect(INTEL_CPUINFO), CPUFeature.VMX)

    def test_detects_svm_on_amd(self) -> None:
        self.assertEqual(self._detect(AMD_CPUINFO), CPUFeature.SVM)

    def test_flag_at_end_of_line(self) -> None:
        self.assertEqual(self._detect("flags : fpu sse vmx\n"), CPUFeature.VMX)

    def test_tab_separated_flags(self) -> None:
        self.assertEqual(self._detect("flags\t:\tfpu\tsvm\tsse\n"), CPUFeature.SVM)

    def test_no_feature_on_arm(self) -> None:
        with self.assertRaises(DetectionError) as ctx:
            self._detect(ARM_CPUINFO)
        self.assertNotIsInstance(ctx.exception, CPUInfoReadError)
        self.assertIn("no virtualization feature", str(ctx.exception))

    def test_substrings_of_other_flags_do_not_match(self) -> None:
        with self.assertRaises(DetectionError):
            self._detect("flags : fpu vmxe svm_lock nosvm\n")

    def test_tokens_outside_flags_line_are_ignored(self) -> None:
        with self.assertRaises(DetectionError):
            self._detect("vmx flags : vmx svm\nmodel name : vmx\nflags : fpu sse\n")

    def test_empty_source(self) -> None:
        with self.assertRaises(DetectionError):
            self._detect("")


class StaticDetectorTests(unittest.TestCase):
    def test_returns_feature(self) -> None:
        detector = StaticDetector(CPUFeature.SVM)
        self.assertIsInstance(detector, FeatureDetector)
        self.assertEqual(detector.detect(), CPUFeature.SVM)

    def test_raises_configured_error(self) -> None:
        with self.assertRaisesRegex(DetectionError, "CPU detection failed"):
            StaticDetector(error=DetectionError("CPU detection failed")).detect()

    def test_no_feature_is_an_error(self) -> None:
        with self.assertRaises(DetectionError):
            StaticDetector().detect()


class DetectorFromSettingsTests(unittest.TestCase):
    def test_pinned_feature(self) -> None:
        detector = detector_from_settings(" VMX ")
        self.assertIsInstance(detector, StaticDetector)
        self.assertEqual(detector.detect(), CPUFeature.VMX)

    def test_host_detector_by_default(self) -> None:
        detector = detector_from_settings(None, "/tmp/cpuinfo")
        self.assertIsInstance(detector, CPUInfoDetector)
        self.assertEqual(detector.cpuinfo_path, "/tmp/cpuinfo")

    def test_unknown_feature(self) -> None:
        with self.assertRaises(ValueError):
            detector_from_settings("avx")
        with self.assertRaises(ValueError):
            detector_from_settings("  ")


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
