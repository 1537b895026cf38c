"""Simulation-safe CUDA helpers.

This module centralises compatibility utilities for environments running with
``NUMBA_ENABLE_CUDASIM=1``. It exposes a consistent surface so the CUDA
backend can query device limits without branching on simulator state.
"""
from __future__ import annotations

import os
from typing import Any

from numba import cuda
from numba.cuda.cudadrv.driver import CudaAPIError
from numba.cuda.cudadrv.error import CudaSupportError


CUDA_SIMULATION: bool = os.environ.get("NUMBA_ENABLE_CUDASIM") == "1"

# The simulator replaces numba.cuda.cudadrv with a stub package whose error
# module only defines CudaSupportError.
if CUDA_SIMULATION:  # pragma: no cover - simulated
    CUDA_ERRORS: tuple[type[Exception], ...] = (
        CudaAPIError,
        CudaSupportError,
    )
else:  # pragma: no cover - exercised in GPU environments
    from numba.cuda.cudadrv.error import CudaDriverError

    CUDA_ERRORS = (CudaAPIError, CudaDriverError, CudaSupportError)

# Conservative limits reported when running under the simulator, or when a
# device does not expose an attribute.
FALLBACK_MAX_THREADS_PER_BLOCK = 1024
FALLBACK_MAX_SHARED_MEMORY_PER_BLOCK = 48 * 1024

# Kernels use float64 and dynamic shared memory.
MIN_COMPUTE_CAPABILITY = (3, 5)


def is_cudasim_enabled() -> bool:
    """Return ``True`` when running under the CUDA simulator."""

    return CUDA_SIMULATION


def cuda_available() -> bool:
    """Return ``True`` when numba can reach a CUDA device or the simulator."""

    if CUDA_SIMULATION:  # pragma: no cover - simulated
        return True
    try:
        return bool(cuda.is_available())
    except Exception:  # pragma: no cover - broken driver installs
        return False


def compute_capability(device: Any) -> tuple[int, int]:
    """Return ``device``'s compute capability, or the minimum under sim."""

    if CUDA_SIMULATION:  # pragma: no cover - simulated
        return MIN_COMPUTE_CAPABILITY
    return tuple(device.compute_capability)


def max_threads_per_block(device: Any) -> int:
    """Return the largest block the device accepts."""

    if CUDA_SIMULATION:  # pragma: no cover - simulated
        return FALLBACK_MAX_THREADS_PER_BLOCK
    return int(getattr(device, "MAX_THREADS_PER_BLOCK",
                       FALLBACK_MAX_THREADS_PER_BLOCK))


def max_shared_memory_per_block(device: Any) -> int:
    """Return the bytes of shared memory one block may request."""

    if CUDA_SIMULATION:  # pragma: no cover - simulated
        return FALLBACK_MAX_SHARED_MEMORY_PER_BLOCK
    return int(getattr(device, "MAX_SHARED_MEMORY_PER_BLOCK",
                       FALLBACK_MAX_SHARED_MEMORY_PER_BLOCK))


__all__ = [
    "CUDA_ERRORS",
    "CUDA_SIMULATION",
    "FALLBACK_MAX_SHARED_MEMORY_PER_BLOCK",
    "FALLBACK_MAX_THREADS_PER_BLOCK",
    "MIN_COMPUTE_CAPABILITY",
    "compute_capability",
    "cuda_available",
    "is_cudasim_enabled",
    "max_shared_memory_per_block",
    "max_threads_per_block",
]
