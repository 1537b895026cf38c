"""Tests for the time_logger module."""

import time
import pytest

from cudevo.time_logger import TimeLogger, TimingEvent


class TestTimingEvent:
    """Test TimingEvent record."""

    def test_timing_event_creation(self):
        """Test that TimingEvent can be created with required fields."""
        event = TimingEvent(
            name="compile",
            event_type="start",
            timestamp=123.456,
        )
        assert event.name == "compile"
        assert event.event_type == "start"
        assert event.timestamp == 123.456
        assert event.metadata == {}

    def test_timing_event_with_metadata(self):
        """Test TimingEvent with optional metadata."""
        event = TimingEvent(
            name="compile",
            event_type="stop",
            timestamp=123.456,
            metadata={"source": "sphere.py"},
        )
        assert event.metadata == {"source": "sphere.py"}

    def test_invalid_event_type(self):
        with pytest.raises(ValueError):
            TimingEvent(name="compile", event_type="progress",
                        timestamp=1.0)


class TestTimeLogger:
    """Test TimeLogger class."""

    def test_initialization_default(self):
        """Test TimeLogger initialization with default verbosity."""
        logger = TimeLogger()
        assert logger.verbosity == "default"
        assert logger.events == []

    @pytest.mark.parametrize("verbosity", ["verbose", "debug"])
    def test_initialization_levels(self, verbosity):
        assert TimeLogger(verbosity=verbosity).verbosity == verbosity

    def test_initialization_invalid_verbosity(self):
        """Test that invalid verbosity raises ValueError."""
        with pytest.raises(ValueError, match="verbosity must be"):
            TimeLogger(verbosity="invalid")

    def test_empty_event_name(self):
        logger = TimeLogger()
        with pytest.raises(ValueError):
            logger.start_event("")
        with pytest.raises(ValueError):
            logger.stop_event("")

    def test_start_event(self):
        """Test recording a start event."""
        logger = TimeLogger()
        logger.start_event("solve", population_size=40)

        assert len(logger.events) == 1
        assert logger.events[0].name == "solve"
        assert logger.events[0].event_type == "start"
        assert logger.events[0].timestamp > 0
        assert logger.events[0].metadata == {"population_size": 40}

    def test_stop_event(self):
        """Test recording a stop event."""
        logger = TimeLogger()
        logger.start_event("solve")
        time.sleep(0.01)
        logger.stop_event("solve")

        assert len(logger.events) == 2
        assert logger.events[1].event_type == "stop"
        assert logger.events[1].timestamp > logger.events[0].timestamp

    def test_get_event_duration(self):
        """Test calculating duration between start and stop events."""
        logger = TimeLogger()
        logger.start_event("compile")
        time.sleep(0.02)
        logger.stop_event("compile")

        duration = logger.get_event_duration("compile")
        assert duration is not None
        assert duration >= 0.02

    def test_get_event_duration_no_stop(self):
        """Test get_event_duration returns None when stop event missing."""
        logger = TimeLogger()
        logger.start_event("compile")
        assert logger.get_event_duration("compile") is None

    def test_get_event_duration_unknown(self):
        assert TimeLogger().get_event_duration("compile") is None

    def test_stop_without_start_is_recorded(self):
        logger = TimeLogger(verbosity="debug")
        logger.stop_event("solve")
        assert len(logger.events) == 1
        assert logger.get_event_duration("solve") is None

    def test_most_recent_duration_reported(self):
        logger = TimeLogger()
        logger.start_event("solve")
        time.sleep(0.03)
        logger.stop_event("solve")
        logger.start_event("solve")
        logger.stop_event("solve")
        assert logger.get_event_duration("solve") < 0.03

    def test_multiple_operations(self):
        """Test tracking multiple operations."""
        logger = TimeLogger()
        logger.start_event("solve")
        logger.start_event("compile")
        logger.stop_event("compile")
        logger.stop_event("solve")

        assert len(logger.events) == 4
        assert logger.get_event_duration("compile") is not None
        assert logger.get_event_duration("solve") is not None

    def test_verbose_logs_durations(self, caplog):
        logger = TimeLogger(verbosity="verbose")
        with caplog.at_level("INFO", logger="cudevo.time_logger"):
            logger.start_event("compile")
            logger.stop_event("compile")
        assert "compile:" in caplog.text

    def test_default_is_quiet(self, caplog):
        logger = TimeLogger()
        with caplog.at_level("DEBUG", logger="cudevo.time_logger"):
            logger.start_event("compile")
            logger.stop_event("compile")
        assert caplog.text == ""
