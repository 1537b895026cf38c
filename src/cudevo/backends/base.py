"""Command-queue interface shared by every compute backend.

A backend exposes the handful of device operations the engine needs: select a
device, create a context and an in-order command queue, build a program from
source, create buffers and kernels, enqueue kernels that wait on events,
drain the queue, read buffers back and release every handle again.

Programs are Python modules. The user's cost-function source is concatenated
with a generated header and the backend's built-in algorithm source, written
to a private directory and executed as one module. Kernels are looked up in
that module by name.
"""

import inspect
import itertools
import logging
import shutil
import tempfile
import traceback
from abc import ABC, abstractmethod
from importlib import util
from pathlib import Path
from types import ModuleType
from typing import Any, Callable, Optional, Sequence

import attrs
import numpy as np
from numba.cuda.random import xoroshiro128p_dtype

from cudevo.errors import CompileError, ConfigurationError, DispatchError

logger = logging.getLogger(__name__)

KERNEL_NAMES = ("init", "eval", "mutate", "select")

HEADER = ("# Program generated by cudevo from the user cost function and "
          "the built-in\n# differential evolution kernels.\n"
          "import math\n"
          "import numpy as np\n")


@attrs.define(frozen=True)
class LocalMemory:
    """Kernel argument standing for per-group scratch of ``nbytes`` bytes."""

    nbytes: int = attrs.field(default=0)


@attrs.define(eq=False)
class DeviceBuffer:
    """A device allocation and the layout it was created with."""

    label: str
    shape: tuple[int, ...]
    dtype: np.dtype = attrs.field(converter=np.dtype)
    read_only: bool = False
    handle: Any = attrs.field(default=None, repr=False)

    @property
    def size(self) -> int:
        """Number of elements."""
        return int(np.prod(self.shape, dtype=np.int64))

    @property
    def nbytes(self) -> int:
        return self.size * self.dtype.itemsize


@attrs.define(eq=False)
class Program:
    """A built program: its source, module and the directory holding it."""

    source: str = attrs.field(repr=False)
    module: Optional[ModuleType] = attrs.field(default=None, repr=False)
    directory: Optional[Path] = None
    build_log: str = ""


@attrs.define(eq=False)
class Kernel:
    """A named entry point of a built program."""

    name: str
    function: Optional[Callable] = attrs.field(default=None, repr=False)
    parameters: Optional[tuple[str, ...]] = None


@attrs.define(eq=False)
class Event:
    """Completion marker of one enqueued command."""

    id: int
    label: str
    handle: Any = attrs.field(default=None, repr=False)


def kernel_parameters(function: Callable) -> Optional[tuple[str, ...]]:
    """Positional parameter names of ``function``'s Python source, if known."""
    py_func = getattr(function, "py_func", None)
    if py_func is None:
        py_func = getattr(function, "fn", function)
    try:
        signature = inspect.signature(py_func)
    except (TypeError, ValueError):
        return None
    return tuple(signature.parameters)


class ComputeBackend(ABC):
    """Abstract command-queue backend.

    Subclasses provide the device-facing operations. Program building and
    kernel lookup are shared.

    Attributes
    ----------
    name
        Short backend identifier used in log messages.
    rng_state_dtype
        Per-member RNG state record (16 bytes, xoroshiro128+).
    """

    name = "abstract"
    rng_state_dtype = np.dtype(xoroshiro128p_dtype)

    def __init__(self):
        self._event_ids = itertools.count()
        self._program_ids = itertools.count()

    # ------------------------------------------------------------------ #
    #                          Device and queue                          #
    # ------------------------------------------------------------------ #
    @abstractmethod
    def select_device(self) -> Any:
        """Return the first device that passes the capability check."""

    @abstractmethod
    def create_context(self, device: Any) -> Any:
        """Create a compute context on ``device``."""

    @abstractmethod
    def create_queue(self, context: Any, device: Any) -> Any:
        """Create the command queue all work is enqueued on."""

    def check_launch_limits(self, device: Any, local_work_size: int,
                            local_data_size: int) -> None:
        """Raise ConfigurationError if ``device`` cannot run the eval layout.

        The default accepts anything :class:`~cudevo.params.EvalParams`
        accepts.
        """

    # ------------------------------------------------------------------ #
    #                               Program                              #
    # ------------------------------------------------------------------ #
    @property
    @abstractmethod
    def algorithm_module(self) -> ModuleType:
        """Module holding the built-in ``init``, ``mutate`` and ``select``."""

    @property
    def program_header(self) -> str:
        return HEADER

    def algorithm_source(self) -> str:
        """Source text of the built-in algorithm kernels."""
        return inspect.getsource(self.algorithm_module)

    def build_program(self, context: Any, device: Any, user_source: str,
                      source_name: str = "<user>") -> Program:
        """Build the user source and the algorithm source as one program.

        Raises
        ------
        CompileError
            When executing the combined module fails. ``build_log`` holds
            the formatted traceback.
        """
        source = "\n".join([
            self.program_header,
            f"# ---- user source: {source_name} ----",
            user_source,
            f"# ---- {self.name} algorithm kernels ----",
            self.algorithm_source(),
        ])
        directory = Path(tempfile.mkdtemp(prefix="cudevo_program_"))
        path = directory / "program.py"
        path.write_text(source, encoding="utf-8")
        program = Program(source=source, directory=directory)

        module_name = f"cudevo_program_{next(self._program_ids)}"
        spec = util.spec_from_file_location(module_name, path)
        module = util.module_from_spec(spec)
        try:
            spec.loader.exec_module(module)
        except Exception as exc:
            log = "".join(traceback.format_exception(exc))
            shutil.rmtree(directory, ignore_errors=True)
            raise CompileError(
                f"Building the program from {source_name} failed",
                build_log=log,
            ) from exc
        program.module = module
        program.build_log = f"Built {module_name} from {source_name}"
        return program

    def create_kernel(self, program: Program, name: str) -> Kernel:
        """Look up kernel ``name`` in ``program``.

        Raises
        ------
        ConfigurationError
            When the program does not define ``name``, or defines something
            this backend cannot launch.
        """
        function = getattr(program.module, name, None)
        if function is None:
            raise ConfigurationError(
                f"Program does not define the kernel '{name}'"
            )
        if not self.is_kernel(function):
            raise ConfigurationError(
                f"'{name}' is not a {self.name} kernel"
            )
        return Kernel(name=name, function=function,
                      parameters=kernel_parameters(function))

    @abstractmethod
    def is_kernel(self, function: Any) -> bool:
        """Whether ``function`` can be launched by this backend."""

    # ------------------------------------------------------------------ #
    #                          Buffers and work                          #
    # ------------------------------------------------------------------ #
    @abstractmethod
    def create_buffer(self, context: Any, label: str, shape: tuple[int, ...],
                      dtype: Any, host_data: Optional[np.ndarray] = None,
                      read_only: bool = False) -> DeviceBuffer:
        """Allocate a buffer, optionally initialised from ``host_data``."""

    @abstractmethod
    def enqueue_kernel(self, queue: Any, kernel: Kernel,
                       args: Sequence[Any], global_size: int,
                       local_size: Optional[int] = None,
                       wait_for: Sequence[Event] = ()) -> Event:
        """Enqueue ``kernel`` once all ``wait_for`` events completed."""

    @abstractmethod
    def finish(self, queue: Any) -> None:
        """Block until every enqueued command has completed."""

    @abstractmethod
    def read_buffer(self, queue: Any, buffer: DeviceBuffer, offset: int = 0,
                    count: Optional[int] = None) -> np.ndarray:
        """Blocking read of ``count`` elements starting at ``offset``."""

    def new_event(self, label: str, handle: Any = None) -> Event:
        return Event(id=next(self._event_ids), label=label, handle=handle)

    @staticmethod
    def bind_arguments(kernel: Kernel, args: Sequence[Any]) -> None:
        """Check ``args`` against the kernel's parameter list.

        Raises
        ------
        DispatchError
            When the number of arguments does not match.
        """
        if kernel.parameters is None:
            return
        if len(args) != len(kernel.parameters):
            raise DispatchError(
                f"{kernel.name} takes {len(kernel.parameters)} arguments "
                f"({', '.join(kernel.parameters)}), got {len(args)}"
            )

    # ------------------------------------------------------------------ #
    #                               Release                              #
    # ------------------------------------------------------------------ #
    def release_buffer(self, buffer: DeviceBuffer) -> None:
        buffer.handle = None

    def release_kernel(self, kernel: Kernel) -> None:
        kernel.function = None

    def release_program(self, program: Program) -> None:
        """Drop the program module and delete its source directory."""
        program.module = None
        if program.directory is not None:
            shutil.rmtree(program.directory)
            program.directory = None

    @abstractmethod
    def release_queue(self, queue: Any) -> None:
        """Release the command queue."""

    @abstractmethod
    def release_context(self, context: Any) -> None:
        """Release the compute context."""

    def release_device(self, device: Any) -> None:
        """Release the device handle. Most devices need no explicit release."""
