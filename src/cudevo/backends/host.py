"""Host backend: numpy kernels scheduled as a task graph on a thread pool.

Every enqueued kernel becomes a task on a
:class:`concurrent.futures.ThreadPoolExecutor`. A task first waits on the
futures of the events it depends on and only then runs, so the order of
execution is exactly the declared dependency graph. Tasks only ever wait on
tasks submitted before them, which keeps a FIFO pool deadlock-free for any
number of workers.
"""

import inspect
import logging
import os
from concurrent.futures import ThreadPoolExecutor, wait
from types import ModuleType
from typing import Any, Optional, Sequence

import attrs
import numpy as np

from cudevo.backends.base import (
    ComputeBackend,
    DeviceBuffer,
    Event,
    Kernel,
    LocalMemory,
)
from cudevo.errors import (
    ConfigurationError,
    DispatchError,
    ReadbackError,
    ResourceError,
)
from cudevo.kernels import host_kernels

logger = logging.getLogger(__name__)

# Each eval launch allocates one scratch array per call.
MAX_HOST_SCRATCH_BYTES = 16 * 1024 * 1024


@attrs.define(frozen=True)
class HostDevice:
    """The host CPU, seen as a compute device."""

    name: str = "host"
    workers: int = 1


@attrs.define(eq=False)
class HostContext:
    device: HostDevice


@attrs.define(eq=False)
class HostQueue:
    """A thread pool plus the futures of everything enqueued on it."""

    executor: ThreadPoolExecutor = attrs.field(repr=False)
    futures: list = attrs.field(factory=list, repr=False)


class HostBackend(ComputeBackend):
    """Runs the pipeline on the CPU with numpy kernels.

    Parameters
    ----------
    workers
        Size of the thread pool executing kernels. Defaults to the number of
        CPUs, capped at four.
    """

    name = "host"

    def __init__(self, workers: Optional[int] = None):
        super().__init__()
        if workers is None:
            workers = min(4, os.cpu_count() or 1)
        if workers < 1:
            raise ValueError(f"workers must be >= 1, got {workers}")
        self.workers = workers

    @property
    def algorithm_module(self) -> ModuleType:
        return host_kernels

    def select_device(self) -> HostDevice:
        return HostDevice(workers=self.workers)

    def create_context(self, device: HostDevice) -> HostContext:
        return HostContext(device=device)

    def create_queue(self, context: HostContext,
                     device: HostDevice) -> HostQueue:
        executor = ThreadPoolExecutor(max_workers=device.workers,
                                      thread_name_prefix="cudevo-host")
        return HostQueue(executor=executor)

    def check_launch_limits(self, device: HostDevice, local_work_size: int,
                            local_data_size: int) -> None:
        """Reject scratch requests larger than ``MAX_HOST_SCRATCH_BYTES``."""
        if local_data_size > MAX_HOST_SCRATCH_BYTES:
            raise ConfigurationError(
                f"local_data_size {local_data_size} exceeds the host "
                f"scratch limit of {MAX_HOST_SCRATCH_BYTES} bytes"
            )

    def is_kernel(self, function: Any) -> bool:
        return inspect.isfunction(function)

    def create_buffer(self, context: HostContext, label: str,
                      shape: tuple[int, ...], dtype: Any,
                      host_data: Optional[np.ndarray] = None,
                      read_only: bool = False) -> DeviceBuffer:
        try:
            if host_data is None:
                handle = np.zeros(shape, dtype=dtype)
            else:
                handle = np.array(host_data, dtype=dtype, copy=True)
                handle = handle.reshape(shape)
        except (MemoryError, ValueError) as exc:
            raise ResourceError(
                f"Allocating host buffer '{label}' failed: {exc}"
            ) from exc
        if read_only:
            handle.flags.writeable = False
        return DeviceBuffer(label=label, shape=tuple(shape), dtype=dtype,
                            read_only=read_only, handle=handle)

    def _resolve(self, arg: Any) -> Any:
        if isinstance(arg, DeviceBuffer):
            if arg.handle is None:
                raise DispatchError(f"Buffer '{arg.label}' was released")
            return arg.handle
        if isinstance(arg, LocalMemory):
            if arg.nbytes == 0:
                return None
            try:
                return np.zeros(arg.nbytes, dtype=np.uint8)
            except (MemoryError, ValueError) as exc:
                raise ResourceError(
                    f"Allocating {arg.nbytes} bytes of scratch failed: {exc}"
                ) from exc
        return arg

    def enqueue_kernel(self, queue: HostQueue, kernel: Kernel,
                       args: Sequence[Any], global_size: int,
                       local_size: Optional[int] = None,
                       wait_for: Sequence[Event] = ()) -> Event:
        if kernel.function is None:
            raise DispatchError(f"Kernel '{kernel.name}' was released")
        self.bind_arguments(kernel, args)
        resolved = [self._resolve(arg) for arg in args]
        dependencies = [event.handle for event in wait_for]

        def task():
            wait(dependencies)
            for dependency in dependencies:
                if dependency.exception() is not None:
                    raise DispatchError(
                        f"{kernel.name} skipped: a dependency failed"
                    )
            kernel.function(*resolved)

        try:
            future = queue.executor.submit(task)
        except RuntimeError as exc:
            raise DispatchError(
                f"Enqueueing {kernel.name} failed: {exc}"
            ) from exc
        queue.futures.append(future)
        event = self.new_event(kernel.name, handle=future)
        logger.debug("Enqueued %s as event %d after %s", kernel.name,
                     event.id, [dep.id for dep in wait_for])
        return event

    def finish(self, queue: HostQueue) -> None:
        """Wait for all tasks; re-raise the first kernel failure."""
        wait(queue.futures)
        for future in queue.futures:
            exc = future.exception()
            if exc is None:
                continue
            if isinstance(exc, DispatchError):
                raise exc
            raise DispatchError(f"Kernel execution failed: {exc!r}") from exc

    def read_buffer(self, queue: HostQueue, buffer: DeviceBuffer,
                    offset: int = 0,
                    count: Optional[int] = None) -> np.ndarray:
        if buffer.handle is None:
            raise ReadbackError(f"Buffer '{buffer.label}' was released")
        if count is None:
            count = buffer.size - offset
        if offset < 0 or count < 0 or offset + count > buffer.size:
            raise ReadbackError(
                f"Read of {count} elements at {offset} is outside "
                f"'{buffer.label}' ({buffer.size} elements)"
            )
        wait(queue.futures)
        flat = buffer.handle.reshape(-1)
        return flat[offset:offset + count].copy()

    def release_queue(self, queue: HostQueue) -> None:
        queue.executor.shutdown(wait=True)
        queue.futures.clear()

    def release_context(self, context: HostContext) -> None:
        pass
