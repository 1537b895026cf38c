"""Rotation of the three population/cost slots across generations.

Slot 1 is scratch: it only ever holds the trial vectors of the generation in
flight. Slots 0 and 2 take turns as ``current`` (the generation being read)
and ``next`` (where selection writes the survivors).
"""

import attrs

SCRATCH_SLOT = 1
PERSISTED_SLOTS = (0, 2)


@attrs.define
class SlotRotation:
    """Current/next/scratch view of the slots for one generation."""

    current: int = 0
    next: int = 2
    scratch: int = SCRATCH_SLOT
    generation: int = 0

    def __attrs_post_init__(self):
        self.check()

    def check(self) -> None:
        """Raise ``RuntimeError`` unless the slot roles are consistent."""
        if self.scratch != SCRATCH_SLOT:
            raise RuntimeError(
                f"Scratch slot must be {SCRATCH_SLOT}, got {self.scratch}"
            )
        if {self.current, self.next} != set(PERSISTED_SLOTS):
            raise RuntimeError(
                f"current ({self.current}) and next ({self.next}) must be "
                f"slots {PERSISTED_SLOTS[0]} and {PERSISTED_SLOTS[1]}"
            )

    def advance(self) -> None:
        """Hand the survivors over: ``next`` becomes ``current``."""
        self.current, self.next = self.next, self.current
        self.generation += 1
        self.check()

    @staticmethod
    def terminal_slot(iterations: int) -> int:
        """Slot holding the final population after ``iterations`` rounds."""
        return PERSISTED_SLOTS[iterations % 2]
