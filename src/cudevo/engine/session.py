"""Backend session: device, context, command queue and compiled program."""

import logging
from pathlib import Path
from typing import Optional, Union

from cudevo.backends.base import ComputeBackend
from cudevo.engine.faults import FaultController
from cudevo.errors import ConfigurationError
from cudevo.params import EvalParams
from cudevo.time_logger import TimeLogger

logger = logging.getLogger(__name__)


class BackendSession:
    """Owns the device-side objects every other component builds on.

    Parameters
    ----------
    backend
        Backend providing the command-queue operations.
    faults
        Controller receiving release failures during :meth:`teardown`.
    time_logger
        Receives the ``compile`` timing event.

    Notes
    -----
    Created first and torn down last in a solve. Any subset of the handles
    may be missing at teardown.
    """

    def __init__(self, backend: ComputeBackend,
                 faults: Optional[FaultController] = None,
                 time_logger: Optional[TimeLogger] = None):
        self.backend = backend
        self.faults = faults if faults is not None else FaultController()
        self.time_logger = time_logger or TimeLogger()
        self.device = None
        self.context = None
        self.queue = None
        self.program = None

    def init(self) -> None:
        """Select the device and create the context and command queue."""
        backend = self.backend
        self.device = backend.select_device()
        self.context = backend.create_context(self.device)
        self.queue = backend.create_queue(self.context, self.device)
        logger.info("Initialised %s backend on %s", backend.name,
                    getattr(self.device, "name", self.device))

    def compile(self, source_path: Union[str, Path, None]) -> None:
        """Build the user cost function together with the algorithm kernels.

        Raises
        ------
        ConfigurationError
            When ``source_path`` is missing or cannot be read.
        CompileError
            When the combined program fails to build.
        """
        if source_path is None:
            raise ConfigurationError("eval() source path not specified")
        path = Path(source_path)
        try:
            user_source = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigurationError(
                f"Failed to open eval() source file {path}: {exc}"
            ) from exc

        self.time_logger.start_event("compile", source=str(path))
        try:
            self.program = self.backend.build_program(
                self.context, self.device, user_source, source_name=str(path)
            )
        finally:
            self.time_logger.stop_event("compile")
        logger.debug(self.program.build_log)

    def check_launch_limits(self, eval_params: EvalParams) -> None:
        """Reject an eval layout the selected device cannot launch."""
        self.backend.check_launch_limits(self.device,
                                         eval_params.local_work_size,
                                         eval_params.local_data_size)

    def teardown(self) -> None:
        """Release program, queue, device and context, whichever exist.

        Every release is attempted even when an earlier one fails.
        """
        backend = self.backend
        steps = (
            ("program", "program", backend.release_program),
            ("queue", "command queue", backend.release_queue),
            ("device", "device", backend.release_device),
            ("context", "context", backend.release_context),
        )
        for attribute, label, release in steps:
            handle = getattr(self, attribute)
            if handle is None:
                continue
            self.faults.attempt(label, lambda: release(handle))
            setattr(self, attribute, None)
