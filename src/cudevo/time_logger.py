"""Time logging for program builds and solves."""

import logging
import time
from typing import Any, Optional

import attrs

logger = logging.getLogger(__name__)


@attrs.define(frozen=True)
class TimingEvent:
    """Record of a single timing event.

    Attributes
    ----------
    name : str
        Identifier for the event (e.g., 'compile')
    event_type : str
        Type of event: 'start' or 'stop'
    timestamp : float
        Wall-clock time from time.perf_counter()
    metadata : dict
        Optional metadata (source path, population size, ...)
    """
    name: str = attrs.field(validator=attrs.validators.instance_of(str))
    event_type: str = attrs.field(
        validator=attrs.validators.in_({'start', 'stop'})
    )
    timestamp: float = attrs.field(
        validator=attrs.validators.instance_of(float)
    )
    metadata: dict = attrs.field(factory=dict)


class TimeLogger:
    """Collects start/stop events and reports durations through logging.

    Parameters
    ----------
    verbosity : str, default='default'
        'default' keeps events for :meth:`get_event_duration` only,
        'verbose' logs every completed duration at INFO,
        'debug' also logs starts at DEBUG.

    Notes
    -----
    Create one instance per :class:`~cudevo.solver.Solver`.
    """

    def __init__(self, verbosity: str = 'default') -> None:
        if verbosity not in {'default', 'verbose', 'debug'}:
            raise ValueError(
                f"verbosity must be 'default', 'verbose', or 'debug', "
                f"got '{verbosity}'"
            )
        self.verbosity = verbosity
        self.events: list[TimingEvent] = []
        self._active_starts: dict[str, float] = {}

    def start_event(self, event_name: str, **metadata: Any) -> None:
        """Record the start of a timed operation."""
        if not event_name:
            raise ValueError("event_name cannot be empty")

        timestamp = time.perf_counter()
        self.events.append(TimingEvent(
            name=event_name,
            event_type='start',
            timestamp=timestamp,
            metadata=metadata,
        ))
        self._active_starts[event_name] = timestamp

        if self.verbosity == 'debug':
            logger.debug("Started: %s", event_name)

    def stop_event(self, event_name: str, **metadata: Any) -> None:
        """Record the end of a timed operation.

        A stop without a matching start is stored but not reported.
        """
        if not event_name:
            raise ValueError("event_name cannot be empty")

        timestamp = time.perf_counter()
        self.events.append(TimingEvent(
            name=event_name,
            event_type='stop',
            timestamp=timestamp,
            metadata=metadata,
        ))

        start = self._active_starts.pop(event_name, None)
        if start is None:
            if self.verbosity == 'debug':
                logger.debug("stop_event('%s') without matching start",
                             event_name)
            return
        if self.verbosity in ('verbose', 'debug'):
            logger.info("%s: %.3fs", event_name, timestamp - start)

    def get_event_duration(self, event_name: str) -> Optional[float]:
        """Duration of the most recent completed ``event_name``, or None."""
        start_time = None
        stop_time = None

        for event in reversed(self.events):
            if event.name == event_name:
                if event.event_type == 'stop' and stop_time is None:
                    stop_time = event.timestamp
                elif event.event_type == 'start' and stop_time is not None:
                    start_time = event.timestamp
                    break

        if start_time is not None and stop_time is not None:
            return stop_time - start_time
        return None
