"""Host-side execution engine: session, resources, pipeline and readback."""

from cudevo.engine.faults import FaultController
from cudevo.engine.pipeline import (
    GenerationalPipeline,
    LaunchRecord,
    PipelineOutcome,
    Stage,
)
from cudevo.engine.resources import BufferSizes, ResourcePool
from cudevo.engine.result import ResultExtractor, SolveResult, best_index
from cudevo.engine.session import BackendSession
from cudevo.engine.slots import PERSISTED_SLOTS, SCRATCH_SLOT, SlotRotation

__all__ = [
    "BackendSession",
    "BufferSizes",
    "FaultController",
    "GenerationalPipeline",
    "LaunchRecord",
    "PERSISTED_SLOTS",
    "PipelineOutcome",
    "ResourcePool",
    "ResultExtractor",
    "SCRATCH_SLOT",
    "SlotRotation",
    "SolveResult",
    "Stage",
    "best_index",
]
