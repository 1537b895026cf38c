"""Generational pipeline of kernel launches.

The pipeline enqueues ``init`` and the first ``eval``, then one
``mutate``, ``eval``, ``select`` round per generation. Each launch waits only
on the events of the launches whose output it consumes:

========== =========================================================
launch     waits on
========== =========================================================
INIT       nothing
EVAL0      INIT
MUTATE_i   EVAL0 for i == 0, otherwise SELECT_{i-1}
EVAL_TRIAL MUTATE_i
SELECT_i   the event that produced the current costs (EVAL0 or
           SELECT_{i-1}) and EVAL_TRIAL_i
========== =========================================================

``select`` writes into the slot that is not current, so no kernel ever writes
a buffer another in-flight kernel reads from. The host never blocks while
enqueueing.
"""

import enum
import logging
from typing import Any, Optional, Sequence

import attrs

from cudevo.backends.base import DeviceBuffer, Event, LocalMemory
from cudevo.engine.resources import ResourcePool
from cudevo.engine.session import BackendSession
from cudevo.engine.slots import SlotRotation
from cudevo.params import ProblemParameters

logger = logging.getLogger(__name__)


class Stage(enum.Enum):
    INIT = "init"
    EVAL0 = "eval0"
    MUTATE = "mutate"
    EVAL_TRIAL = "eval_trial"
    SELECT = "select"


@attrs.define(frozen=True)
class LaunchRecord:
    """One enqueued launch, the events it waited on and its buffers."""

    stage: Stage
    generation: Optional[int]
    event: Event
    wait_for: tuple[Event, ...]
    reads: tuple[str, ...]
    writes: tuple[str, ...]


@attrs.define(frozen=True)
class PipelineOutcome:
    terminal_slot: int
    final_event: Event


class GenerationalPipeline:
    """Enqueues the whole solve as a dependency graph of launches.

    Parameters
    ----------
    session
        Session whose queue receives the launches.
    pool
        Allocated buffers and kernels.
    params
        Problem parameters.

    Attributes
    ----------
    launches
        :class:`LaunchRecord` for every launch, in enqueue order.
    rotation
        Slot roles; after :meth:`run` ``rotation.current`` is the terminal
        slot.
    """

    def __init__(self, session: BackendSession, pool: ResourcePool,
                 params: ProblemParameters):
        self.session = session
        self.pool = pool
        self.params = params
        self.launches: list[LaunchRecord] = []
        self.rotation = SlotRotation()

    def eval_work_size(self) -> tuple[int, Optional[int]]:
        """Global and local work sizes of an ``eval`` launch.

        One work-item per candidate, or ``local_work_size`` work-items per
        candidate when per-candidate parallelism is configured.
        """
        pop = self.params.population_size
        eval_params = self.params.eval_params
        if eval_params.per_candidate_parallel:
            local = eval_params.local_work_size
            return pop * local, local
        return pop, None

    def _enqueue(self, stage: Stage, generation: Optional[int],
                 kernel_name: str, args: Sequence[Any],
                 wait_for: Sequence[Event] = (),
                 global_size: Optional[int] = None,
                 local_size: Optional[int] = None,
                 writes: Sequence[DeviceBuffer] = ()) -> Event:
        if global_size is None:
            global_size = self.params.population_size
        event = self.session.backend.enqueue_kernel(
            self.session.queue,
            self.pool.kernels[kernel_name],
            args,
            global_size,
            local_size=local_size,
            wait_for=tuple(wait_for),
        )
        written = {id(buffer) for buffer in writes}
        reads = tuple(arg.label for arg in args
                      if isinstance(arg, DeviceBuffer)
                      and id(arg) not in written)
        self.launches.append(LaunchRecord(
            stage=stage,
            generation=generation,
            event=event,
            wait_for=tuple(wait_for),
            reads=reads,
            writes=tuple(buffer.label for buffer in writes),
        ))
        return event

    def _eval(self, stage: Stage, generation: Optional[int], slot: int,
              wait_for: Sequence[Event]) -> Event:
        pool = self.pool
        params = self.params
        global_size, local_size = self.eval_work_size()
        args = (
            pool.populations[slot],
            pool.costs[slot],
            params.population_size,
            params.attribute_count,
            pool.const_data,
            LocalMemory(params.eval_params.local_data_size),
        )
        return self._enqueue(stage, generation, "eval", args,
                             wait_for=wait_for,
                             global_size=global_size,
                             local_size=local_size,
                             writes=(pool.costs[slot],))

    def run(self) -> PipelineOutcome:
        """Enqueue every launch of the solve.

        Returns
        -------
        PipelineOutcome
            Terminal slot and the event of the last launch.

        Raises
        ------
        DispatchError
            On the first failing launch. Later launches are not enqueued.
        """
        pool = self.pool
        params = self.params
        pop = params.population_size
        attr_count = params.attribute_count

        init_event = self._enqueue(
            Stage.INIT, None, "init",
            (pool.rng_state, pool.seeds, pool.populations[0], pop,
             attr_count, params.mu, params.sigma),
            writes=(pool.rng_state, pool.populations[0]),
        )
        costs_event = self._eval(Stage.EVAL0, None, 0, (init_event,))
        last_event = costs_event

        rotation = self.rotation
        for generation in range(params.iterations):
            current, following = rotation.current, rotation.next
            scratch = rotation.scratch

            mutate_event = self._enqueue(
                Stage.MUTATE, generation, "mutate",
                (pool.rng_state, pool.populations[current],
                 pool.populations[scratch], pop, attr_count, params.shrink,
                 params.crossover),
                wait_for=(last_event,),
                writes=(pool.rng_state, pool.populations[scratch]),
            )
            trial_event = self._eval(Stage.EVAL_TRIAL, generation, scratch,
                                     (mutate_event,))
            select_event = self._enqueue(
                Stage.SELECT, generation, "select",
                (pool.populations[current], pool.costs[current],
                 pool.populations[scratch], pool.costs[scratch],
                 pool.populations[following], pool.costs[following],
                 pop, attr_count),
                wait_for=(costs_event, trial_event),
                writes=(pool.populations[following], pool.costs[following]),
            )
            costs_event = last_event = select_event
            rotation.advance()

        terminal = SlotRotation.terminal_slot(params.iterations)
        logger.debug("Enqueued %d launches over %d generations; terminal "
                     "slot %d", len(self.launches), params.iterations,
                     terminal)
        return PipelineOutcome(terminal_slot=terminal,
                               final_event=last_event)
