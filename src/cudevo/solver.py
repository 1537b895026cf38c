"""User-facing solve interface.

This module exposes the :class:`Solver` class, the raising convenience
wrapper :func:`minimize` and the status-code entry point :func:`solve`.
"""

import logging
import threading
from pathlib import Path
from typing import Optional, Union
from warnings import warn

import numpy as np

from cudevo.backends import ComputeBackend, default_backend
from cudevo.engine.faults import FaultController
from cudevo.engine.pipeline import GenerationalPipeline
from cudevo.engine.resources import ResourcePool
from cudevo.engine.result import ResultExtractor, SolveResult
from cudevo.engine.session import BackendSession
from cudevo.errors import ConfigurationError, DiffEvoError
from cudevo.params import ParamsLike, ProblemParameters, coerce_params
from cudevo.time_logger import TimeLogger

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def minimize(
    source_path: PathLike,
    params: ParamsLike = None,
    backend: Optional[ComputeBackend] = None,
    **kwargs,
) -> SolveResult:
    """Minimise the cost function defined in ``source_path``.

    Parameters
    ----------
    source_path
        Python source defining the ``eval`` kernel for the chosen backend.
    params
        :class:`~cudevo.params.ProblemParameters`, a dict of its fields, or
        ``None`` for defaults.
    backend
        Backend to run on. Defaults to :func:`~cudevo.backends.default_backend`.
    **kwargs
        Overrides for individual parameters, e.g. ``iterations=500``.

    Returns
    -------
    SolveResult
        Best member and its cost.

    Raises
    ------
    DiffEvoError
        The first failure of the solve; see :mod:`cudevo.errors`.
    """
    solver = Solver(backend=backend)
    return solver.solve(source_path, params, **kwargs)


def solve(
    source_path: Optional[PathLike],
    params: ParamsLike,
    best: np.ndarray,
    cost: np.ndarray,
    backend: Optional[ComputeBackend] = None,
) -> int:
    """Run a solve and write the winner into caller-provided arrays.

    Parameters
    ----------
    source_path
        Python source defining the ``eval`` kernel.
    params
        Problem parameters (instance or dict).
    best
        Output array of length ``attribute_count`` receiving the best member.
    cost
        Output array of at least one element; ``cost[0]`` receives the cost.
    backend
        Backend to run on.

    Returns
    -------
    int
        ``0`` on success. ``1`` on failure, with diagnostics already logged;
        ``best`` and ``cost`` are then left untouched.
    """
    try:
        result = Solver(backend=backend).solve(
            source_path, params, _outputs=(best, cost)
        )
    except DiffEvoError:
        return 1
    best[:] = result.best
    cost[0] = result.cost
    return 0


class Solver:
    """Runs differential evolution solves on one backend.

    Parameters
    ----------
    backend
        Backend providing device access. Defaults to
        :func:`~cudevo.backends.default_backend`.
    time_logger
        Receives ``compile`` and ``solve`` timing events.

    Attributes
    ----------
    faults
        Fault controller of the most recent solve.
    pipeline
        Pipeline of the most recent solve, holding its launch records.

    Notes
    -----
    Every solve builds a fresh session and buffer set and releases them before
    returning. One solver runs one solve at a time; separate solvers are
    independent.
    """

    def __init__(
        self,
        backend: Optional[ComputeBackend] = None,
        time_logger: Optional[TimeLogger] = None,
    ):
        self.backend = backend if backend is not None else default_backend()
        self.time_logger = time_logger or TimeLogger()
        self.faults: Optional[FaultController] = None
        self.pipeline: Optional[GenerationalPipeline] = None
        self._in_flight = threading.Lock()

    def solve(
        self,
        source_path: Optional[PathLike],
        params: ParamsLike = None,
        _outputs=None,
        **kwargs,
    ) -> SolveResult:
        """Build, run and read back one solve.

        Parameters
        ----------
        source_path
            Python source defining the ``eval`` kernel.
        params
            Problem parameters (instance, dict or ``None``).
        **kwargs
            Overrides for individual parameters.

        Returns
        -------
        SolveResult
            Best member and its cost.

        Raises
        ------
        DiffEvoError
            The first failure; resources are released before it propagates.
        """
        if not self._in_flight.acquire(blocking=False):
            raise ConfigurationError("This solver is already running a solve")
        try:
            return self._solve(source_path, params, _outputs, kwargs)
        finally:
            self._in_flight.release()

    def _solve(self, source_path, params, outputs, overrides) -> SolveResult:
        faults = FaultController()
        self.faults = faults
        self.pipeline = None
        result = None

        with faults:
            params = coerce_params(params, **overrides)
            if outputs is not None:
                check_outputs(params, *outputs)
            if params.population_size < 4:
                warn(
                    f"population_size {params.population_size} is below "
                    "four; mutation donors may repeat",
                    UserWarning,
                    stacklevel=3,
                )
            logger.info(
                "Solving %s: %d generations, %d members x %d attributes",
                source_path, params.iterations, params.population_size,
                params.attribute_count,
            )
            self.time_logger.start_event("solve", source=str(source_path))
            try:
                session = BackendSession(self.backend, faults,
                                         self.time_logger)
                faults.push("session", session.teardown)
                session.init()
                session.compile(source_path)

                pool = ResourcePool(session)
                faults.push("resources", pool.release)
                pool.allocate(params)

                self.pipeline = GenerationalPipeline(session, pool, params)
                outcome = self.pipeline.run()
                result = ResultExtractor(session, pool, params).extract(
                    outcome.terminal_slot
                )
            finally:
                self.time_logger.stop_event("solve")

        faults.raise_for_failure()
        logger.info("Best cost %r at member %d", result.cost,
                    result.best_index)
        return result


def check_outputs(params: ProblemParameters, best: np.ndarray,
                  cost: np.ndarray) -> None:
    """Validate the caller's output arrays before any work is done.

    Raises
    ------
    ConfigurationError
        When ``best`` is not ``attribute_count`` long or ``cost`` is empty.
    """
    if best is None or np.shape(best) != (params.attribute_count,):
        raise ConfigurationError(
            f"best must have shape ({params.attribute_count},), got "
            f"{None if best is None else np.shape(best)}"
        )
    if cost is None or np.size(cost) < 1:
        raise ConfigurationError("cost must hold at least one element")
