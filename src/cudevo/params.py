"""Problem parameters for a differential evolution solve.

:class:`ProblemParameters` is the single configuration object consumed by the
engine. Fields are validated on construction; use
:meth:`ProblemParameters.from_kwargs` to get the validation failures as
:class:`~cudevo.errors.ConfigurationError`.
"""

from typing import Any, Optional, Union

import attrs
import attrs.validators as val
import numpy as np

from cudevo._utils import (
    float_converter,
    getype_validator,
    inrange_validator,
    split_kwargs,
)
from cudevo.errors import ConfigurationError

# Upper bound on work-items per candidate. Backends may lower it further to
# match the selected device.
MAX_LOCAL_WORK_SIZE = 256


def _const_data_converter(value: Any) -> Optional[np.ndarray]:
    """Copy user constant data into a C-contiguous, read-only array."""
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray, memoryview)):
        array = np.frombuffer(bytes(value), dtype=np.uint8).copy()
    else:
        array = np.ascontiguousarray(value).copy()
    array.flags.writeable = False
    return array


def _const_data_validator(instance, attribute, value):
    if value is not None and value.nbytes == 0:
        raise ValueError("const_data must hold at least one byte")


@attrs.define(frozen=True)
class EvalParams:
    """Settings that shape launches of the ``eval`` kernel.

    Attributes
    ----------
    const_data
        Constant data shared by every evaluation, or ``None``. Bytes-like
        input is stored as ``uint8``; arrays keep their dtype.
    local_work_size
        Work-items per candidate. ``0`` launches one work-item per candidate.
    local_data_size
        Bytes of scratch shared by the work-items of one candidate.
    """

    const_data: Optional[np.ndarray] = attrs.field(
        default=None,
        converter=_const_data_converter,
        validator=_const_data_validator,
        eq=False,
    )
    local_work_size: int = attrs.field(
        default=0,
        validator=[getype_validator(int, 0),
                   val.le(MAX_LOCAL_WORK_SIZE)],
    )
    local_data_size: int = attrs.field(
        default=0,
        validator=getype_validator(int, 0),
    )

    @property
    def const_data_size(self) -> int:
        """Number of bytes of constant data."""
        return 0 if self.const_data is None else int(self.const_data.nbytes)

    @property
    def per_candidate_parallel(self) -> bool:
        return self.local_work_size > 0


@attrs.define(frozen=True)
class ProblemParameters:
    """Algorithm settings for one solve.

    Attributes
    ----------
    iterations
        Number of mutate, evaluate, select generations. ``0`` only samples
        and evaluates the initial population.
    population_size
        Number of members.
    attribute_count
        Length of every member's attribute vector.
    mu, sigma
        Initial members are drawn i.i.d. from ``Normal(mu, sigma**2)``.
    shrink
        Differential weight applied to the difference vector, in (0, 1).
    crossover
        Probability that an attribute comes from the mutant, in (0, 1).
    eval_params
        Launch settings for the ``eval`` kernel.
    seed
        Seed for the host generator drawing per-member RNG seeds. ``None``
        draws a fresh seed from the clock and process id.
    """

    iterations: int = attrs.field(default=250,
                                  validator=getype_validator(int, 0))
    population_size: int = attrs.field(default=40,
                                       validator=getype_validator(int, 1))
    attribute_count: int = attrs.field(default=3,
                                       validator=getype_validator(int, 1))
    mu: float = attrs.field(default=0.0, converter=float_converter)
    sigma: float = attrs.field(default=1.0, converter=float_converter,
                               validator=val.ge(0.0))
    shrink: float = attrs.field(default=0.6, converter=float_converter,
                                validator=inrange_validator(0.0, 1.0))
    crossover: float = attrs.field(default=0.5, converter=float_converter,
                                   validator=inrange_validator(0.0, 1.0))
    eval_params: EvalParams = attrs.field(
        factory=EvalParams,
        validator=val.instance_of(EvalParams),
    )
    seed: Optional[int] = attrs.field(
        default=None,
        validator=val.optional(getype_validator(int, 0)),
    )

    @classmethod
    def from_kwargs(cls, **kwargs) -> "ProblemParameters":
        """Build parameters from flat keyword arguments.

        ``const_data``, ``local_work_size`` and ``local_data_size`` are
        routed into :class:`EvalParams`.

        Raises
        ------
        ConfigurationError
            When a keyword is unknown or a value is rejected.
        """
        eval_kwargs, kwargs = split_kwargs(EvalParams, kwargs)
        own_kwargs, unknown = split_kwargs(cls, kwargs)
        if unknown:
            raise ConfigurationError(
                f"Unknown parameters: {', '.join(sorted(unknown))}"
            )
        try:
            if eval_kwargs:
                own_kwargs["eval_params"] = EvalParams(**eval_kwargs)
            return cls(**own_kwargs)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(str(exc)) from exc

    @property
    def population_length(self) -> int:
        """Number of reals in one population slot."""
        return self.population_size * self.attribute_count


ParamsLike = Union[ProblemParameters, dict, None]


def coerce_params(params: ParamsLike, **kwargs) -> ProblemParameters:
    """Return a :class:`ProblemParameters` from an instance, dict or kwargs.

    Keyword arguments override entries of a dict or fields of an instance.
    """
    if isinstance(params, ProblemParameters):
        if not kwargs:
            return params
        eval_kwargs, kwargs = split_kwargs(EvalParams, kwargs)
        try:
            if eval_kwargs:
                kwargs["eval_params"] = attrs.evolve(params.eval_params,
                                                     **eval_kwargs)
            return attrs.evolve(params, **kwargs)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(str(exc)) from exc
    merged = dict(params or {})
    merged.update(kwargs)
    return ProblemParameters.from_kwargs(**merged)
