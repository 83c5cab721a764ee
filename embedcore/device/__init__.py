"""Device capability detection for embedcore.

Reads memory, CPU cores, accelerator support, platform class and installed
runtimes, then derives a performance tier. The snapshot is cached per process.

Example:
    >>> from embedcore.device import detect_device_capabilities
    >>> caps = detect_device_capabilities()
    >>> print(caps.summary)
"""

from .lib import (
    CpuInfo,
    DeviceCapabilities,
    DeviceCapabilityDetector,
    GPUCapabilities,
    GpuLevel,
    MemoryInfo,
    Platform,
    compute_tier,
    detect_cpu,
    detect_device_capabilities,
    detect_gpu_capabilities,
    detect_memory,
    detect_platform,
    detect_runtimes,
    estimate_memory_gb,
    get_device_detector,
    reset_device_capabilities,
)

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
