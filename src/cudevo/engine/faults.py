"""Sticky failure state and the single best-effort teardown pass.

A :class:`FaultController` wraps one solve. Components register their release
routines with :meth:`FaultController.push` as soon as they exist; when the
``with`` block exits, for any reason, the routines run once in reverse
registration order. Failures while releasing are logged and kept as
secondary errors. They never replace the error that aborted the solve.
"""

import logging
from typing import Any, Callable, Optional

from cudevo.errors import CompileError, DiffEvoError, ResourceError

logger = logging.getLogger(__name__)


class FaultController:
    """Records the first failure of a solve and owns its cleanup list.

    Attributes
    ----------
    failed
        ``True`` once any failure was recorded. Never reset.
    primary_error
        The first error recorded.
    secondary_errors
        Errors raised by release routines during cleanup.
    """

    def __init__(self):
        self.failed = False
        self.primary_error: Optional[BaseException] = None
        self.secondary_errors: list[BaseException] = []
        self._cleanups: list[tuple[str, Callable[[], Any]]] = []
        self._cleaned_up = False

    def __enter__(self) -> "FaultController":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc is not None:
            self.record(exc)
        self.cleanup()
        # Taxonomy errors are reported through raise_for_failure
        return isinstance(exc, DiffEvoError)

    @property
    def cleaned_up(self) -> bool:
        return self._cleaned_up

    def record(self, error: BaseException) -> None:
        """Mark the solve failed and log ``error``.

        Only the first error becomes :attr:`primary_error`.
        """
        self.failed = True
        if self.primary_error is None:
            self.primary_error = error
        if isinstance(error, CompileError):
            logger.error("%s\nBuild log:\n%s", error.args[0],
                         error.build_log)
        else:
            logger.error("%s: %s", type(error).__name__, error)

    def push(self, label: str, release: Callable[[], Any]) -> None:
        """Register ``release`` to run during :meth:`cleanup`."""
        if self._cleaned_up:
            raise RuntimeError("Cleanup already ran for this solve")
        self._cleanups.append((label, release))

    def attempt(self, label: str, release: Callable[[], Any]) -> bool:
        """Run one release step, keeping any failure as a secondary error.

        Returns
        -------
        bool
            ``True`` if the step completed.
        """
        try:
            release()
        except Exception as exc:
            self.secondary_errors.append(exc)
            logger.error("Releasing %s failed: %s", label, exc)
            return False
        logger.debug("Released %s", label)
        return True

    def cleanup(self) -> None:
        """Run every registered release routine once, newest first.

        When the solve had not failed but a release did, the solve is marked
        failed with a :class:`~cudevo.errors.ResourceError`.
        """
        if self._cleaned_up:
            return
        self._cleaned_up = True
        while self._cleanups:
            label, release = self._cleanups.pop()
            self.attempt(label, release)
        if self.secondary_errors and not self.failed:
            self.record(ResourceError(
                f"Teardown failed with {len(self.secondary_errors)} "
                "release error(s)"
            ))

    def raise_for_failure(self) -> None:
        """Re-raise the primary error if the solve failed."""
        if self.failed:
            raise self.primary_error
