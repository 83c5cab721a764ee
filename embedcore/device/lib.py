"""Device capability detection.

Detects memory, CPU cores, accelerator support, platform class and the
available inference runtimes, then derives a coarse performance tier used to
pick a model. Every signal degrades gracefully: if it cannot be read, a
conservative estimate is used and marked as not measured.
"""

from __future__ import annotations

import importlib.util
import logging
import os
import platform as platform_module
import sys
from dataclasses import dataclass, field
from enum import Enum

from embedcore.catalog import Tier
from embedcore.config import EnvVar, get_environment

logger = logging.getLogger(__name__)

BYTES_PER_GB = 1024**3

# Fallbacks when a signal cannot be read
DEFAULT_CPU_CORES = 2

# ONNX Runtime execution providers grouped by capability
ADVANCED_ONNX_PROVIDERS = frozenset(
    {"CUDAExecutionProvider", "TensorrtExecutionProvider", "ROCMExecutionProvider"}
)
BASIC_ONNX_PROVIDERS = frozenset(
    {"DmlExecutionProvider", "CoreMLExecutionProvider", "OpenVINOExecutionProvider"}
)


class Platform(str, Enum):
    """Coarse platform class of the host."""

    DESKTOP = "desktop"
    MOBILE = "mobile"
    TABLET = "tablet"
    UNKNOWN = "unknown"


class GpuLevel(str, Enum):
    """Accelerator capability level.

    BASIC covers accelerators limited to inference graphs (Metal, DirectML,
    CoreML). ADVANCED covers general compute accelerators (CUDA, ROCm).
    """

    NONE = "none"
    BASIC = "basic"
    ADVANCED = "advanced"

    @property
    def rank(self) -> int:
        return list(GpuLevel).index(self)


@dataclass(frozen=True)
class MemoryInfo:
    """Total memory in GB and whether it was measured or estimated."""

    total_gb: float
    measured: bool = True


@dataclass(frozen=True)
class CpuInfo:
    """CPU core count and whether it was measured or estimated."""

    cores: int
    measured: bool = True


@dataclass(frozen=True)
class GPUCapabilities:
    """Accelerator detection results.

    Attributes:
        level: Highest accelerator level found.
        backends: Names of the accelerated backends found.
        measured: False if an installed runtime failed while being queried,
            so the level may understate the device.
    """

    level: GpuLevel = GpuLevel.NONE
    backends: tuple[str, ...] = ()
    measured: bool = True

    @property
    def available(self) -> bool:
        """True if any accelerator is usable."""
        return self.level != GpuLevel.NONE

    @property
    def summary(self) -> str:
        """Human-readable summary of accelerator support."""
        estimated = "" if self.measured else " (estimated)"
        if not self.available:
            return f"None{estimated}"
        return f"{self.level.value} ({', '.join(self.backends)}){estimated}"


@dataclass(frozen=True)
class DeviceCapabilities:
    """Snapshot of the host's resources.

    Attributes:
        memory: Detected or estimated memory.
        cpu: Detected or estimated CPU core count.
        gpu: Accelerator support.
        platform: Platform class.
        portable_runtime: Whether sentence-transformers can be imported.
        native_runtime: Whether ONNX Runtime can be imported.
        tier: Derived performance tier.
    """

    memory: MemoryInfo
    cpu: CpuInfo
    gpu: GPUCapabilities = field(default_factory=GPUCapabilities)
    platform: Platform = Platform.DESKTOP
    portable_runtime: bool = True
    native_runtime: bool = False
    tier: Tier = Tier.LOW

    @property
    def memory_gb(self) -> float:
        return self.memory.total_gb

    @property
    def cpu_cores(self) -> int:
        return self.cpu.cores

    @property
    def is_mobile(self) -> bool:
        """True for phones and tablets."""
        return self.platform in (Platform.MOBILE, Platform.TABLET)

    @property
    def summary(self) -> str:
        """Human-readable summary of the capabilities."""
        estimated = "" if self.memory.measured else " (estimated)"
        parts = [
            f"Platform: {self.platform.value}",
            f"Tier: {self.tier.value}",
            f"Memory: {self.memory.total_gb:g}GB{estimated}",
            f"CPU Cores: {self.cpu.cores}",
            f"GPU: {self.gpu.summary}",
            f"Portable runtime: {'Yes' if self.portable_runtime else 'No'}",
            f"Native runtime: {'Yes' if self.native_runtime else 'No'}",
        ]
        return ", ".join(parts)


# =============================================================================
# Tier Calculation
# =============================================================================


def compute_tier(
    memory_gb: float,
    cpu_cores: int,
    gpu_level: GpuLevel,
    platform: Platform,
) -> Tier:
    """Derive a performance tier from raw signals.

    Phones and tablets are capped at MEDIUM and only reach it with plenty of
    memory, cores and a compute accelerator. Other platforms score 1-3
    points each for memory and cores and 0-3 for the accelerator; 8+ points
    is HIGH, 5+ is MEDIUM.
    """
    if platform in (Platform.MOBILE, Platform.TABLET):
        if memory_gb >= 6 and cpu_cores >= 6 and gpu_level == GpuLevel.ADVANCED:
            return Tier.MEDIUM
        return Tier.LOW

    memory_points = 3 if memory_gb >= 8 else 2 if memory_gb >= 4 else 1
    cpu_points = 3 if cpu_cores >= 8 else 2 if cpu_cores >= 4 else 1
    gpu_points = {GpuLevel.ADVANCED: 3, GpuLevel.BASIC: 2, GpuLevel.NONE: 0}[gpu_level]

    score = memory_points + cpu_points + gpu_points
    if score >= 8:
        return Tier.HIGH
    if score >= 5:
        return Tier.MEDIUM
    return Tier.LOW


def estimate_memory_gb(cpu_cores: int) -> float:
    """Conservative memory estimate from the core count."""
    if cpu_cores >= 8:
        return 8.0
    if cpu_cores >= 4:
        return 4.0
    return 2.0


# =============================================================================
# Signal Detection
# =============================================================================


def detect_cpu() -> CpuInfo:
    """Detect the number of logical CPU cores."""
    override = get_environment(EnvVar.DEVICE_CPU_CORES)
    if override:
        return CpuInfo(cores=override)

    cores = os.cpu_count()
    if not cores:
        logger.warning("Failed to detect CPU cores, assuming %d", DEFAULT_CPU_CORES)
        return CpuInfo(cores=DEFAULT_CPU_CORES, measured=False)
    return CpuInfo(cores=cores)


def detect_memory(cpu_cores: int) -> MemoryInfo:
    """Detect total memory, estimating from the core count on failure.

    Args:
        cpu_cores: Core count used for the estimate.
    """
    override = get_environment(EnvVar.DEVICE_MEMORY_GB)
    if override:
        return MemoryInfo(total_gb=override)

    try:
        import psutil

        total = psutil.virtual_memory().total
        return MemoryInfo(total_gb=round(total / BYTES_PER_GB, 1))
    except ImportError:
        logger.debug("psutil not installed, estimating memory")
    except Exception as e:
        logger.warning(f"Failed to detect device memory: {e}")

    return MemoryInfo(total_gb=estimate_memory_gb(cpu_cores), measured=False)


def detect_gpu_capabilities() -> GPUCapabilities:
    """Detect accelerator support.

    Checks PyTorch (CUDA, Metal) and ONNX Runtime execution providers. Safe
    to call even if neither library is installed. A runtime that is installed
    but raises while being queried marks the result as not measured.
    """
    level = GpuLevel.NONE
    backends: list[str] = []
    measured = True

    def _found(name: str, found_level: GpuLevel) -> None:
        nonlocal level
        backends.append(name)
        if found_level.rank > level.rank:
            level = found_level

    # Check PyTorch
    try:
        import torch

        if torch.cuda.is_available():
            _found(f"cuda x{torch.cuda.device_count()}", GpuLevel.ADVANCED)
        mps = getattr(torch.backends, "mps", None)
        if mps is not None and mps.is_available():
            _found("mps", GpuLevel.BASIC)
    except ImportError:
        pass
    except Exception as e:
        logger.debug(f"PyTorch detection error: {e}")
        measured = False

    # Check ONNX Runtime providers
    try:
        import onnxruntime

        for provider in onnxruntime.get_available_providers():
            if provider in ADVANCED_ONNX_PROVIDERS:
                _found(provider, GpuLevel.ADVANCED)
            elif provider in BASIC_ONNX_PROVIDERS:
                _found(provider, GpuLevel.BASIC)
    except ImportError:
        pass
    except Exception as e:
        logger.debug(f"ONNX Runtime detection error: {e}")
        measured = False

    return GPUCapabilities(level=level, backends=tuple(backends), measured=measured)


def detect_platform() -> Platform:
    """Classify the host as desktop, mobile, tablet or unknown."""
    override = get_environment(EnvVar.DEVICE_PLATFORM)
    if override:
        try:
            return Platform(override.strip().lower())
        except ValueError:
            logger.warning(f"Ignoring unknown DEVICE_PLATFORM '{override}'")

    plat = sys.platform
    if plat == "android" or hasattr(sys, "getandroidapilevel"):
        return Platform.MOBILE
    if plat == "ios":
        ios_ver = getattr(platform_module, "ios_ver", None)
        model = ios_ver().model if ios_ver is not None else ""
        return Platform.TABLET if "ipad" in model.lower() else Platform.MOBILE
    if plat in ("win32", "cygwin", "darwin") or plat.startswith(("linux", "freebsd")):
        return Platform.DESKTOP
    return Platform.UNKNOWN


def _has_module(name: str) -> bool:
    """Check importability without importing."""
    try:
        return importlib.util.find_spec(name) is not None
    except (ImportError, ValueError):
        return False


def detect_runtimes() -> tuple[bool, bool]:
    """Check which inference runtimes are installed.

    Returns:
        Tuple of (portable_runtime, native_runtime).
    """
    return _has_module("sentence_transformers"), _has_module("onnxruntime")


# =============================================================================
# Detector
# =============================================================================


class DeviceCapabilityDetector:
    """Detects capabilities once and returns the same snapshot afterwards.

    Example:
        >>> detector = DeviceCapabilityDetector()
        >>> caps = detector.detect()
        >>> caps is detector.detect()
        True
    """

    def __init__(self) -> None:
        self._capabilities: DeviceCapabilities | None = None

    def detect(self) -> DeviceCapabilities:
        """Return the cached snapshot, detecting it on first call."""
        if self._capabilities is None:
            self._capabilities = self._detect()
        return self._capabilities

    def reset(self) -> None:
        """Forget the cached snapshot."""
        self._capabilities = None

    def _detect(self) -> DeviceCapabilities:
        logger.info("Detecting device capabilities...")

        cpu = detect_cpu()
        memory = detect_memory(cpu.cores)
        gpu = detect_gpu_capabilities()
        platform = detect_platform()
        portable_runtime, native_runtime = detect_runtimes()
        tier = compute_tier(memory.total_gb, cpu.cores, gpu.level, platform)

        capabilities = DeviceCapabilities(
            memory=memory,
            cpu=cpu,
            gpu=gpu,
            platform=platform,
            portable_runtime=portable_runtime,
            native_runtime=native_runtime,
            tier=tier,
        )
        logger.info(f"Device capabilities detected: {capabilities.summary}")
        return capabilities


# Module-level singleton for convenience
_default_detector: DeviceCapabilityDetector | None = None


def get_device_detector() -> DeviceCapabilityDetector:
    """Get or create the process-wide detector."""
    global _default_detector
    if _default_detector is None:
        _default_detector = DeviceCapabilityDetector()
    return _default_detector


def detect_device_capabilities() -> DeviceCapabilities:
    """Detect capabilities of this device (cached for the process)."""
    return get_device_detector().detect()


def reset_device_capabilities() -> None:
    """Drop the cached snapshot so the next call re-detects."""
    get_device_detector().reset()


__all__ = [
    "Platform",
    "GpuLevel",
    "MemoryInfo",
    "CpuInfo",
    "GPUCapabilities",
    "DeviceCapabilities",
    "DeviceCapabilityDetector",
    "compute_tier",
    "estimate_memory_gb",
    "detect_cpu",
    "detect_memory",
    "detect_gpu_capabilities",
    "detect_platform",
    "detect_runtimes",
    "get_device_detector",
    "detect_device_capabilities",
    "reset_device_capabilities",
]
