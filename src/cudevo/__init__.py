"""
cudevo: Differential evolution on a GPU command queue
"""

from importlib.metadata import version

# Suppress Numba performance warnings for library users. Small populations
# launch under-occupied grids, which is expected here.
import warnings
from numba.core.errors import NumbaPerformanceWarning
warnings.filterwarnings("ignore", category=NumbaPerformanceWarning)

from cudevo.errors import *             # noqa
from cudevo.backends import (           # noqa
    ComputeBackend,
    HostBackend,
    default_backend,
)
from cudevo.params import (             # noqa
    EvalParams,
    MAX_LOCAL_WORK_SIZE,
    ProblemParameters,
)
from cudevo.engine.result import SolveResult  # noqa
from cudevo.solver import Solver, minimize, solve  # noqa
from cudevo.time_logger import TimeLogger  # noqa

__all__ = [
    "CompileError",
    "ComputeBackend",
    "ConfigurationError",
    "DiffEvoError",
    "DispatchError",
    "EvalParams",
    "HostBackend",
    "MAX_LOCAL_WORK_SIZE",
    "ProblemParameters",
    "ReadbackError",
    "ResourceError",
    "SolveResult",
    "Solver",
    "TimeLogger",
    "default_backend",
    "minimize",
    "solve",
]

try:
    __version__ = version("cudevo")
except ImportError:
    # Package is not installed
    __version__ = "unknown"
