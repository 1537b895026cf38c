"""CUDA backend built on ``numba.cuda``.

The command queue is one CUDA stream. Each launch first makes the stream wait
on the events it depends on and records a fresh event after itself, so the
dependency graph the pipeline declares is carried into the stream as
``cuda.event`` record/wait pairs rather than stream-wide synchronisation.

User programs define ``eval`` as a ``numba.cuda`` kernel taking
``(pop, costs, pop_size, attr_count, const_data)``. Per-candidate scratch is
dynamic shared memory: ``cuda.shared.array(0, dtype)``.
"""

import logging
from importlib import import_module
from types import ModuleType
from typing import Any, Optional, Sequence

import attrs
import numpy as np
from numba import cuda
from numba.core.errors import NumbaError

from cudevo.backends.base import (
    ComputeBackend,
    DeviceBuffer,
    Event,
    Kernel,
    LocalMemory,
)
from cudevo.cuda_simsafe import (
    CUDA_ERRORS,
    CUDA_SIMULATION,
    MIN_COMPUTE_CAPABILITY,
    compute_capability,
    cuda_available,
    max_shared_memory_per_block,
    max_threads_per_block,
)
from cudevo.errors import (
    CompileError,
    ConfigurationError,
    DispatchError,
    ReadbackError,
    ResourceError,
)

logger = logging.getLogger(__name__)

CUDA_HEADER = "from numba import cuda, float64, int32, int64\n"


@attrs.define(eq=False)
class CUDAContext:
    device: Any = attrs.field(repr=False)


@attrs.define(eq=False)
class CUDAQueue:
    """A stream plus a placeholder passed where const data is absent."""

    stream: Any = attrs.field(repr=False)
    empty_const: Any = attrs.field(default=None, repr=False)


class CUDABackend(ComputeBackend):
    """Runs the pipeline on the first capable CUDA device.

    Parameters
    ----------
    blocksize
        Threads per block for kernels launched one thread per candidate.
    """

    name = "cuda"

    def __init__(self, blocksize: int = 128):
        super().__init__()
        if blocksize < 1:
            raise ValueError(f"blocksize must be >= 1, got {blocksize}")
        self.blocksize = blocksize

    @property
    def algorithm_module(self) -> ModuleType:
        return import_module("cudevo.kernels.cuda_kernels")

    @property
    def program_header(self) -> str:
        return super().program_header + CUDA_HEADER

    # ------------------------------------------------------------------ #
    #                          Device and queue                          #
    # ------------------------------------------------------------------ #
    def select_device(self) -> Any:
        """Select the first device meeting the minimum compute capability.

        Raises
        ------
        ResourceError
            When no device is available or none is capable.
        """
        if not cuda_available():
            raise ResourceError("No CUDA devices available")
        try:
            if CUDA_SIMULATION:  # pragma: no cover - simulated
                return cuda.select_device(0)
            for index, device in enumerate(cuda.list_devices()):
                if compute_capability(device) >= MIN_COMPUTE_CAPABILITY:
                    return cuda.select_device(index)
        except CUDA_ERRORS as exc:
            raise ResourceError(f"Selecting a CUDA device failed: {exc}") \
                from exc
        raise ResourceError(
            "No CUDA device with compute capability "
            f">= {MIN_COMPUTE_CAPABILITY[0]}.{MIN_COMPUTE_CAPABILITY[1]}"
        )

    def create_context(self, device: Any) -> CUDAContext:
        try:
            if not CUDA_SIMULATION:
                cuda.current_context()
        except CUDA_ERRORS as exc:
            raise ResourceError(f"Creating a CUDA context failed: {exc}") \
                from exc
        return CUDAContext(device=device)

    def create_queue(self, context: CUDAContext, device: Any) -> CUDAQueue:
        try:
            return CUDAQueue(stream=cuda.stream(),
                             empty_const=cuda.device_array(1, np.uint8))
        except CUDA_ERRORS as exc:
            raise ResourceError(f"Creating a CUDA stream failed: {exc}") \
                from exc

    def check_launch_limits(self, device: Any, local_work_size: int,
                            local_data_size: int) -> None:
        """Reject per-candidate work the device cannot launch.

        Raises
        ------
        ConfigurationError
            When ``local_work_size`` exceeds the device's threads per block,
            or ``local_data_size`` its shared memory per block.
        """
        threads = max_threads_per_block(device)
        if local_work_size > threads:
            raise ConfigurationError(
                f"local_work_size {local_work_size} exceeds the device "
                f"limit of {threads} threads per block"
            )
        shared = max_shared_memory_per_block(device)
        if local_data_size > shared:
            raise ConfigurationError(
                f"local_data_size {local_data_size} exceeds the device "
                f"limit of {shared} bytes of shared memory per block"
            )

    def is_kernel(self, function: Any) -> bool:
        # Dispatchers (and simulator kernels) are launched with kernel[...]
        return hasattr(function, "__getitem__") and callable(function)

    # ------------------------------------------------------------------ #
    #                          Buffers and work                          #
    # ------------------------------------------------------------------ #
    def create_buffer(self, context: CUDAContext, label: str,
                      shape: tuple[int, ...], dtype: Any,
                      host_data: Optional[np.ndarray] = None,
                      read_only: bool = False) -> DeviceBuffer:
        try:
            if host_data is None:
                handle = cuda.device_array(shape, dtype=dtype)
            else:
                staged = np.ascontiguousarray(host_data, dtype=dtype)
                handle = cuda.to_device(staged.reshape(shape))
        except CUDA_ERRORS as exc:
            raise ResourceError(
                f"Allocating device buffer '{label}' failed: {exc}"
            ) from exc
        return DeviceBuffer(label=label, shape=tuple(shape), dtype=dtype,
                            read_only=read_only, handle=handle)

    def _launch_config(self, global_size: int, local_size: Optional[int]):
        if local_size:
            return global_size // local_size, local_size
        threads = max(1, min(self.blocksize, global_size))
        blocks = (global_size + threads - 1) // threads
        return blocks, threads

    def enqueue_kernel(self, queue: CUDAQueue, kernel: Kernel,
                       args: Sequence[Any], global_size: int,
                       local_size: Optional[int] = None,
                       wait_for: Sequence[Event] = ()) -> Event:
        if kernel.function is None:
            raise DispatchError(f"Kernel '{kernel.name}' was released")
        shared_bytes = 0
        device_args = []
        for arg in args:
            if isinstance(arg, LocalMemory):
                shared_bytes = arg.nbytes
                continue
            if isinstance(arg, DeviceBuffer):
                if arg.handle is None:
                    raise DispatchError(f"Buffer '{arg.label}' was released")
                arg = arg.handle
            elif arg is None:
                arg = queue.empty_const
            device_args.append(arg)
        self.bind_arguments(kernel, device_args)

        blocks, threads = self._launch_config(global_size, local_size)
        try:
            for event in wait_for:
                event.handle.wait(queue.stream)
            kernel.function[blocks, threads, queue.stream, shared_bytes](
                *device_args
            )
            handle = cuda.event(timing=False)
            handle.record(queue.stream)
        except NumbaError as exc:
            raise CompileError(
                f"Compiling kernel '{kernel.name}' failed", build_log=str(exc)
            ) from exc
        except (*CUDA_ERRORS, TypeError, ValueError) as exc:
            raise DispatchError(
                f"Launching kernel '{kernel.name}' failed: {exc}"
            ) from exc
        event = self.new_event(kernel.name, handle=handle)
        logger.debug("Launched %s[%d, %d, shared=%d] as event %d after %s",
                     kernel.name, blocks, threads, shared_bytes, event.id,
                     [dep.id for dep in wait_for])
        return event

    def finish(self, queue: CUDAQueue) -> None:
        try:
            queue.stream.synchronize()
        except CUDA_ERRORS as exc:
            raise DispatchError(f"Kernel execution failed: {exc}") from exc

    def read_buffer(self, queue: CUDAQueue, buffer: DeviceBuffer,
                    offset: int = 0, count: Optional[int] = None) -> np.ndarray:
        if buffer.handle is None:
            raise ReadbackError(f"Buffer '{buffer.label}' was released")
        if count is None:
            count = buffer.size - offset
        if offset < 0 or count < 0 or offset + count > buffer.size:
            raise ReadbackError(
                f"Read of {count} elements at {offset} is outside "
                f"'{buffer.label}' ({buffer.size} elements)"
            )
        try:
            flat = buffer.handle.reshape(buffer.size)
            window = flat[offset:offset + count]
            host = window.copy_to_host(stream=queue.stream)
            queue.stream.synchronize()
        except CUDA_ERRORS as exc:
            raise ReadbackError(
                f"Reading '{buffer.label}' failed: {exc}"
            ) from exc
        return host

    # ------------------------------------------------------------------ #
    #                               Release                              #
    # ------------------------------------------------------------------ #
    def release_queue(self, queue: CUDAQueue) -> None:
        queue.empty_const = None
        try:
            queue.stream.synchronize()
        except CUDA_ERRORS as exc:
            raise ResourceError(f"Releasing the stream failed: {exc}") \
                from exc

    def release_context(self, context: CUDAContext) -> None:
        try:
            cuda.close()
        except CUDA_ERRORS as exc:
            raise ResourceError(f"Closing the CUDA context failed: {exc}") \
                from exc
