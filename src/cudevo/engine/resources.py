"""Device buffers and kernel handles for one solve.

Buffer layout
-------------
``rng_state``
    One 16-byte generator state per member.
``seeds``
    One ``uint32`` per member, uploaded once at creation, read-only.
``population[0..2]``
    ``population_size * attribute_count`` ``float64`` values each, flat and
    row-major.
``costs[0..2]``
    ``population_size`` ``float64`` values each.
``const_data``
    Copy of :attr:`EvalParams.const_data`, only when configured.
"""

import logging
from typing import Optional

import attrs
import numpy as np

from cudevo._utils import member_seeds
from cudevo.backends.base import KERNEL_NAMES, DeviceBuffer, Kernel
from cudevo.engine.session import BackendSession
from cudevo.params import ProblemParameters

logger = logging.getLogger(__name__)

SLOT_COUNT = 3
REAL_DTYPE = np.dtype(np.float64)
SEED_DTYPE = np.dtype(np.uint32)


@attrs.define(frozen=True)
class BufferSizes:
    """Byte sizes of every buffer a solve allocates."""

    rng_state: int
    seeds: int
    population: int
    costs: int
    const_data: int = 0

    @classmethod
    def from_params(cls, params: ProblemParameters,
                    rng_state_dtype: np.dtype) -> "BufferSizes":
        pop = params.population_size
        return cls(
            rng_state=pop * np.dtype(rng_state_dtype).itemsize,
            seeds=pop * SEED_DTYPE.itemsize,
            population=params.population_length * REAL_DTYPE.itemsize,
            costs=pop * REAL_DTYPE.itemsize,
            const_data=params.eval_params.const_data_size,
        )

    @property
    def total(self) -> int:
        """Bytes across all buffers, counting each slot."""
        return (self.rng_state + self.seeds + self.const_data
                + SLOT_COUNT * (self.population + self.costs))


class ResourcePool:
    """Allocates and releases the buffers and kernels of one solve.

    Parameters
    ----------
    session
        Initialised session with a built program.

    Notes
    -----
    Every handle is stored as soon as it is created, so :meth:`release` frees
    exactly what a partially completed :meth:`allocate` produced.
    """

    def __init__(self, session: BackendSession):
        self.session = session
        self.rng_state: Optional[DeviceBuffer] = None
        self.seeds: Optional[DeviceBuffer] = None
        self.populations: list[Optional[DeviceBuffer]] = [None] * SLOT_COUNT
        self.costs: list[Optional[DeviceBuffer]] = [None] * SLOT_COUNT
        self.const_data: Optional[DeviceBuffer] = None
        self.kernels: dict[str, Kernel] = {}
        self.sizes: Optional[BufferSizes] = None

    @property
    def backend(self):
        return self.session.backend

    def _create(self, label, shape, dtype, host_data=None, read_only=False):
        return self.backend.create_buffer(
            self.session.context, label, shape, dtype,
            host_data=host_data, read_only=read_only,
        )

    def allocate(self, params: ProblemParameters) -> None:
        """Create every buffer, upload seeds and const data, fetch kernels.

        Raises
        ------
        ConfigurationError
            When the eval layout exceeds device limits or a kernel is missing.
        ResourceError
            When an allocation fails.
        """
        self.session.check_launch_limits(params.eval_params)
        backend = self.backend
        pop = params.population_size
        self.sizes = BufferSizes.from_params(params, backend.rng_state_dtype)

        self.rng_state = self._create("rng_state", (pop,),
                                      backend.rng_state_dtype)
        self.seeds = self._create("seeds", (pop,), SEED_DTYPE,
                                  host_data=member_seeds(pop, params.seed),
                                  read_only=True)
        for slot in range(SLOT_COUNT):
            self.populations[slot] = self._create(
                f"population[{slot}]", (params.population_length,),
                REAL_DTYPE,
            )
            self.costs[slot] = self._create(f"costs[{slot}]", (pop,),
                                            REAL_DTYPE)

        const_data = params.eval_params.const_data
        if const_data is not None:
            self.const_data = self._create(
                "const_data", const_data.shape, const_data.dtype,
                host_data=const_data, read_only=True,
            )

        for name in KERNEL_NAMES:
            self.kernels[name] = backend.create_kernel(self.session.program,
                                                       name)
        logger.debug("Allocated %d bytes in %d buffers", self.sizes.total,
                     len(self.buffers))

    @property
    def buffers(self) -> list[DeviceBuffer]:
        """Every buffer created so far."""
        candidates = [self.rng_state, self.seeds, *self.populations,
                      *self.costs, self.const_data]
        return [buffer for buffer in candidates if buffer is not None]

    def release(self) -> None:
        """Free buffers, then kernels. Each handle is released once."""
        backend = self.backend
        faults = self.session.faults
        for buffer in self.buffers:
            faults.attempt(buffer.label,
                           lambda: backend.release_buffer(buffer))
        self.rng_state = None
        self.seeds = None
        self.populations = [None] * SLOT_COUNT
        self.costs = [None] * SLOT_COUNT
        self.const_data = None

        for name, kernel in list(self.kernels.items()):
            faults.attempt(f"kernel {name}",
                           lambda: backend.release_kernel(kernel))
        self.kernels.clear()
