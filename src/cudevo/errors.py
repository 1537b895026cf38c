"""Exception taxonomy for differential evolution solves.

Every fallible step of a solve raises one of the classes below. The solver
surface converts them into a nonzero status (see :func:`cudevo.solve`) or
lets them propagate (see :func:`cudevo.minimize`).
"""

from typing import Optional


class DiffEvoError(Exception):
    """Base class for all solve failures."""


class ConfigurationError(DiffEvoError):
    """Invalid parameters, a missing source file or a missing kernel."""


class ResourceError(DiffEvoError):
    """Host or device allocation, or release, failed."""


class CompileError(DiffEvoError):
    """The combined user and algorithm program failed to build.

    Parameters
    ----------
    message
        Short description of the failure.
    build_log
        Complete diagnostic text produced by the build.
    """

    def __init__(self, message: str, build_log: Optional[str] = None):
        super().__init__(message)
        self.build_log = build_log or ""

    def __str__(self) -> str:
        message = super().__str__()
        if self.build_log:
            return f"{message}\n{self.build_log}"
        return message


class DispatchError(DiffEvoError):
    """Argument binding, enqueue or asynchronous kernel execution failed."""


class ReadbackError(DiffEvoError):
    """Reading results back from the device failed."""


__all__ = [
    "DiffEvoError",
    "ConfigurationError",
    "ResourceError",
    "CompileError",
    "DispatchError",
    "ReadbackError",
]
