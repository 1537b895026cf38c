"""Readback of the best member once the pipeline has drained."""

import logging

import attrs
import numpy as np

from cudevo.engine.resources import ResourcePool
from cudevo.engine.session import BackendSession
from cudevo.params import ProblemParameters

logger = logging.getLogger(__name__)


@attrs.define(frozen=True)
class SolveResult:
    """Best member found by a solve.

    Attributes
    ----------
    best
        Attribute vector of the best member, length ``attribute_count``.
    cost
        Cost of ``best``.
    best_index
        Index of the best member in the terminal population.
    terminal_slot
        Slot the final population was read from.
    iterations
        Generations run.
    population_size
        Members in the population.
    """

    best: np.ndarray = attrs.field(eq=False)
    cost: float
    best_index: int = 0
    terminal_slot: int = 0
    iterations: int = 0
    population_size: int = 1


def best_index(costs: np.ndarray) -> int:
    """Index of the lowest cost; ties go to the lowest index.

    NaN costs never win unless every cost is NaN, in which case member 0 is
    returned.
    """
    if costs.size == 0:
        raise ValueError("costs is empty")
    if np.all(np.isnan(costs)):
        return 0
    return int(np.nanargmin(costs))


class ResultExtractor:
    """Blocks until the queue drains, then reads the winner back.

    Two blocking reads: the terminal cost slot, then the winning member's
    attributes only.
    """

    def __init__(self, session: BackendSession, pool: ResourcePool,
                 params: ProblemParameters):
        self.session = session
        self.pool = pool
        self.params = params

    def extract(self, terminal_slot: int) -> SolveResult:
        """Return the best member of ``terminal_slot``.

        Raises
        ------
        DispatchError
            When a queued kernel failed while draining.
        ReadbackError
            When reading either buffer fails.
        """
        backend = self.session.backend
        queue = self.session.queue
        attr_count = self.params.attribute_count

        backend.finish(queue)
        costs = backend.read_buffer(queue, self.pool.costs[terminal_slot])
        index = best_index(costs)
        best = backend.read_buffer(queue,
                                   self.pool.populations[terminal_slot],
                                   offset=index * attr_count,
                                   count=attr_count)
        best.flags.writeable = False
        logger.debug("Best member %d of slot %d, cost %r", index,
                     terminal_slot, costs[index])
        return SolveResult(
            best=best,
            cost=float(costs[index]),
            best_index=index,
            terminal_slot=terminal_slot,
            iterations=self.params.iterations,
            population_size=self.params.population_size,
        )
