"""Compute backends implementing the command-queue interface."""

from cudevo.backends.base import (
    KERNEL_NAMES,
    ComputeBackend,
    DeviceBuffer,
    Event,
    Kernel,
    LocalMemory,
    Program,
)
from cudevo.backends.host import HostBackend

__all__ = [
    "KERNEL_NAMES",
    "ComputeBackend",
    "CUDABackend",
    "DeviceBuffer",
    "Event",
    "HostBackend",
    "Kernel",
    "LocalMemory",
    "Program",
    "default_backend",
]


def __getattr__(name):
    # numba.cuda device setup is deferred until the CUDA backend is used
    if name == "CUDABackend":
        from cudevo.backends.cuda import CUDABackend
        return CUDABackend
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def default_backend() -> ComputeBackend:
    """The CUDA backend when a device is reachable, else the host backend."""
    from cudevo.cuda_simsafe import cuda_available, is_cudasim_enabled

    if cuda_available() and not is_cudasim_enabled():
        from cudevo.backends.cuda import CUDABackend
        return CUDABackend()
    return HostBackend()
