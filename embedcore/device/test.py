"""Tests for device capability detection."""

from unittest.mock import MagicMock, patch

import pytest

from embedcore.catalog import Tier
from embedcore.device import (
    CpuInfo,
    DeviceCapabilities,
    DeviceCapabilityDetector,
    GPUCapabilities,
    GpuLevel,
    MemoryInfo,
    Platform,
    compute_tier,
    detect_cpu,
    detect_gpu_capabilities,
    detect_memory,
    detect_platform,
    estimate_memory_gb,
)


@pytest.fixture(autouse=True)
def _clear_device_overrides(monkeypatch):
    """Detection tests must not see overrides from the host environment."""
    for name in ("DEVICE_MEMORY_GB", "DEVICE_CPU_CORES", "DEVICE_PLATFORM"):
        monkeypatch.delenv(name, raising=False)


def _torch_mock(cuda: bool = False, mps: bool = False) -> MagicMock:
    mock_torch = MagicMock()
    mock_torch.cuda.is_available.return_value = cuda
    mock_torch.cuda.device_count.return_value = 1 if cuda else 0
    mock_torch.backends.mps.is_available.return_value = mps
    return mock_torch


def _onnx_mock(*providers: str) -> MagicMock:
    mock_ort = MagicMock()
    mock_ort.get_available_providers.return_value = list(providers) or [
        "CPUExecutionProvider"
    ]
    return mock_ort


class TestComputeTier:
    """Tests for the tier formula."""

    @pytest.mark.unit
    def test_strong_desktop_is_high(self):
        assert compute_tier(16, 8, GpuLevel.ADVANCED, Platform.DESKTOP) == Tier.HIGH

    @pytest.mark.unit
    def test_desktop_without_gpu_is_medium(self):
        # 3 + 3 + 0 points
        assert compute_tier(16, 8, GpuLevel.NONE, Platform.DESKTOP) == Tier.MEDIUM

    @pytest.mark.unit
    def test_weak_desktop_is_low(self):
        # 1 + 1 + 2 points
        assert compute_tier(2, 2, GpuLevel.BASIC, Platform.DESKTOP) == Tier.LOW

    @pytest.mark.unit
    def test_mid_desktop_with_basic_gpu_is_high(self):
        # 3 + 3 + 2 points
        assert compute_tier(8, 8, GpuLevel.BASIC, Platform.DESKTOP) == Tier.HIGH

    @pytest.mark.unit
    def test_unknown_platform_uses_desktop_scoring(self):
        assert compute_tier(4, 4, GpuLevel.NONE, Platform.UNKNOWN) == Tier.LOW
        assert compute_tier(4, 4, GpuLevel.BASIC, Platform.UNKNOWN) == Tier.MEDIUM

    @pytest.mark.unit
    @pytest.mark.parametrize("platform", [Platform.MOBILE, Platform.TABLET])
    def test_mobile_capped_at_medium(self, platform):
        assert compute_tier(12, 8, GpuLevel.ADVANCED, platform) == Tier.MEDIUM

    @pytest.mark.unit
    def test_mobile_needs_all_signals_for_medium(self):
        assert compute_tier(12, 8, GpuLevel.BASIC, Platform.MOBILE) == Tier.LOW
        assert compute_tier(4, 8, GpuLevel.ADVANCED, Platform.MOBILE) == Tier.LOW
        assert compute_tier(12, 4, GpuLevel.ADVANCED, Platform.MOBILE) == Tier.LOW


class TestMemoryDetection:
    """Tests for memory detection and estimation."""

    @pytest.mark.unit
    def test_estimate_from_cores(self):
        assert estimate_memory_gb(16) == 8.0
        assert estimate_memory_gb(4) == 4.0
        assert estimate_memory_gb(1) == 2.0

    @pytest.mark.unit
    def test_psutil_measurement(self):
        mock_psutil = MagicMock()
        mock_psutil.virtual_memory.return_value.total = 16 * 1024**3

        with patch.dict("sys.modules", {"psutil": mock_psutil}):
            memory = detect_memory(cpu_cores=4)

        assert memory == MemoryInfo(total_gb=16.0, measured=True)

    @pytest.mark.unit
    def test_missing_psutil_falls_back_to_estimate(self):
        with patch.dict("sys.modules", {"psutil": None}):
            memory = detect_memory(cpu_cores=8)

        assert memory.total_gb == 8.0
        assert memory.measured is False

    @pytest.mark.unit
    def test_psutil_failure_falls_back_to_estimate(self):
        mock_psutil = MagicMock()
        mock_psutil.virtual_memory.side_effect = OSError("no /proc")

        with patch.dict("sys.modules", {"psutil": mock_psutil}):
            memory = detect_memory(cpu_cores=2)

        assert memory.total_gb == 2.0
        assert memory.measured is False

    @pytest.mark.unit
    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("DEVICE_MEMORY_GB", "3.5")
        assert detect_memory(cpu_cores=2) == MemoryInfo(total_gb=3.5, measured=True)


class TestCpuDetection:
    """Tests for CPU core detection."""

    @pytest.mark.unit
    def test_cpu_count(self):
        with patch("embedcore.device.lib.os.cpu_count", return_value=12):
            assert detect_cpu() == CpuInfo(cores=12, measured=True)

    @pytest.mark.unit
    def test_unknown_cpu_count_defaults(self):
        with patch("embedcore.device.lib.os.cpu_count", return_value=None):
            assert detect_cpu() == CpuInfo(cores=2, measured=False)

    @pytest.mark.unit
    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("DEVICE_CPU_CORES", "6")
        assert detect_cpu().cores == 6


class TestGPUDetection:
    """Tests for accelerator detection."""

    @pytest.mark.unit
    def test_nothing_installed(self):
        with patch.dict("sys.modules", {"torch": None, "onnxruntime": None}):
            caps = detect_gpu_capabilities()

        assert caps.level == GpuLevel.NONE
        assert caps.available is False
        assert caps.measured is True
        assert caps.summary == "None"

    @pytest.mark.unit
    def test_torch_cuda_is_advanced(self):
        modules = {"torch": _torch_mock(cuda=True), "onnxruntime": None}
        with patch.dict("sys.modules", modules):
            caps = detect_gpu_capabilities()

        assert caps.level == GpuLevel.ADVANCED
        assert caps.backends == ("cuda x1",)

    @pytest.mark.unit
    def test_torch_mps_is_basic(self):
        modules = {"torch": _torch_mock(mps=True), "onnxruntime": None}
        with patch.dict("sys.modules", modules):
            caps = detect_gpu_capabilities()

        assert caps.level == GpuLevel.BASIC
        assert caps.available is True

    @pytest.mark.unit
    def test_onnx_cpu_provider_only(self):
        modules = {"torch": None, "onnxruntime": _onnx_mock()}
        with patch.dict("sys.modules", modules):
            caps = detect_gpu_capabilities()

        assert caps.level == GpuLevel.NONE

    @pytest.mark.unit
    def test_highest_level_wins(self):
        modules = {
            "torch": _torch_mock(mps=True),
            "onnxruntime": _onnx_mock("CUDAExecutionProvider", "CPUExecutionProvider"),
        }
        with patch.dict("sys.modules", modules):
            caps = detect_gpu_capabilities()

        assert caps.level == GpuLevel.ADVANCED
        assert caps.backends == ("mps", "CUDAExecutionProvider")

    @pytest.mark.unit
    def test_torch_error_marks_result_estimated(self):
        mock_torch = _torch_mock()
        mock_torch.cuda.is_available.side_effect = RuntimeError("driver mismatch")

        with patch.dict("sys.modules", {"torch": mock_torch, "onnxruntime": None}):
            caps = detect_gpu_capabilities()

        assert caps.level == GpuLevel.NONE
        assert caps.measured is False
        assert caps.summary == "None (estimated)"

    @pytest.mark.unit
    def test_onnx_error_keeps_torch_result(self):
        mock_onnx = _onnx_mock()
        mock_onnx.get_available_providers.side_effect = RuntimeError("bad install")
        modules = {"torch": _torch_mock(cuda=True), "onnxruntime": mock_onnx}

        with patch.dict("sys.modules", modules):
            caps = detect_gpu_capabilities()

        assert caps.level == GpuLevel.ADVANCED
        assert caps.measured is False
        assert caps.summary == "advanced (cuda x1) (estimated)"

    @pytest.mark.unit
    def test_detected_accelerator_is_measured(self):
        modules = {"torch": None, "onnxruntime": _onnx_mock("CUDAExecutionProvider")}
        with patch.dict("sys.modules", modules):
            caps = detect_gpu_capabilities()

        assert caps.measured is True


class TestPlatformDetection:
    """Tests for platform classification."""

    @pytest.mark.unit
    @pytest.mark.parametrize("plat", ["win32", "linux", "darwin"])
    def test_desktop_platforms(self, plat):
        with patch("embedcore.device.lib.sys.platform", plat):
            assert detect_platform() == Platform.DESKTOP

    @pytest.mark.unit
    def test_android_is_mobile(self):
        with patch("embedcore.device.lib.sys.platform", "android"):
            assert detect_platform() == Platform.MOBILE

    @pytest.mark.unit
    def test_unrecognized_platform(self):
        with patch("embedcore.device.lib.sys.platform", "plan9"):
            assert detect_platform() == Platform.UNKNOWN

    @pytest.mark.unit
    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("DEVICE_PLATFORM", "Tablet")
        assert detect_platform() == Platform.TABLET

    @pytest.mark.unit
    def test_invalid_override_is_ignored(self, monkeypatch):
        monkeypatch.setenv("DEVICE_PLATFORM", "toaster")
        with patch("embedcore.device.lib.sys.platform", "linux"):
            assert detect_platform() == Platform.DESKTOP


class TestDeviceCapabilityDetector:
    """Tests for the caching detector."""

    @pytest.mark.unit
    def test_detect_is_cached(self):
        detector = DeviceCapabilityDetector()
        with patch("embedcore.device.lib.detect_cpu", wraps=detect_cpu) as spy:
            first = detector.detect()
            second = detector.detect()

        assert first is second
        assert spy.call_count == 1

    @pytest.mark.unit
    def test_reset_redetects(self):
        detector = DeviceCapabilityDetector()
        first = detector.detect()
        detector.reset()
        assert detector.detect() is not first

    @pytest.mark.unit
    def test_detect_combines_signals(self, monkeypatch):
        monkeypatch.setenv("DEVICE_MEMORY_GB", "16")
        monkeypatch.setenv("DEVICE_CPU_CORES", "8")
        monkeypatch.setenv("DEVICE_PLATFORM", "desktop")

        with patch(
            "embedcore.device.lib.detect_gpu_capabilities",
            return_value=GPUCapabilities(GpuLevel.ADVANCED, ("cuda x1",)),
        ):
            caps = DeviceCapabilityDetector().detect()

        assert caps.memory_gb == 16.0
        assert caps.cpu_cores == 8
        assert caps.gpu.available is True
        assert caps.platform == Platform.DESKTOP
        assert caps.tier == Tier.HIGH
        assert caps.is_mobile is False

    @pytest.mark.unit
    def test_summary_marks_estimates(self):
        caps = DeviceCapabilities(
            memory=MemoryInfo(4.0, measured=False),
            cpu=CpuInfo(4),
            tier=Tier.LOW,
        )
        assert "Memory: 4GB (estimated)" in caps.summary
        assert "GPU: None" in caps.summary
