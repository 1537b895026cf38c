"""Validators and small helpers shared across cudevo."""

import os
import time
from typing import Optional

import attrs
import numpy as np


def getype_validator(dtype, minimum):
    """Return an attrs validator checking type and a lower bound."""

    def _validate(instance, attribute, value):
        if not isinstance(value, dtype) or isinstance(value, bool):
            raise TypeError(
                f"{attribute.name} must be {dtype.__name__}, got "
                f"{type(value).__name__}"
            )
        if value < minimum:
            raise ValueError(
                f"{attribute.name} must be >= {minimum}, got {value}"
            )

    return _validate


def inrange_validator(minimum, maximum):
    """Return an attrs validator for a float inside ``(minimum, maximum)``."""

    def _validate(instance, attribute, value):
        if not minimum < value < maximum:
            raise ValueError(
                f"{attribute.name} must lie in ({minimum}, {maximum}), "
                f"got {value}"
            )

    return _validate


def float_converter(value):
    """Coerce numeric input to a builtin float."""
    return float(value)


def split_kwargs(attrs_class, kwargs: dict):
    """Split ``kwargs`` into those accepted by ``attrs_class`` and the rest.

    Returns
    -------
    tuple[dict, dict]
        Recognised keyword arguments and leftovers.
    """
    names = {field.name for field in attrs.fields(attrs_class)}
    recognised = {key: value for key, value in kwargs.items()
                  if key in names}
    leftover = {key: value for key, value in kwargs.items()
                if key not in names}
    return recognised, leftover


def seed_sequence(seed: Optional[int] = None) -> np.random.SeedSequence:
    """Build the host seed sequence for per-member RNG seeds.

    Without an explicit ``seed`` the sequence mixes the nanosecond clock with
    the process id.
    """
    if seed is None:
        return np.random.SeedSequence([time.time_ns(), os.getpid()])
    return np.random.SeedSequence(seed)


def member_seeds(population_size: int,
                 seed: Optional[int] = None) -> np.ndarray:
    """Draw one independent ``uint32`` seed per population member."""
    rng = np.random.default_rng(seed_sequence(seed))
    return rng.integers(0, 2 ** 32, size=population_size, dtype=np.uint32)

