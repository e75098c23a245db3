"""Module defining the parameter containers of the density initialization.

`DiffusionConfig` holds the settings shared by every heat diffusion run and
`InitMode` selects between plain heat diffusion and cross-validation.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Union

from .errors import InvalidInitMode, InvalidInitParameter
from .locator import SearchStrategy

_LOGGER = logging.getLogger(__name__)

DEFAULT_HEAT_STEP = 0.1
DEFAULT_HEAT_ITER = 500
DEFAULT_N_FOLDS = 5


class InitMode(enum.Enum):
    """Initialization procedure."""

    HEAT = "Heat"
    CV = "CV"

    @classmethod
    def parse(cls, value: Union[InitMode, str]) -> InitMode:
        """Return the mode named by `value` ('Heat' or 'CV', any case).

        Raises:
            InvalidInitMode: If `value` names no mode.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            for mode in cls:
                if mode.value.lower() == value.strip().lower():
                    return mode
        _LOGGER.error("InitMode.parse: unrecognized init %r", value)
        raise InvalidInitMode(f"'init' must be either 'Heat' or 'CV'; got {value!r}")


@dataclass(frozen=True)
class DiffusionConfig:
    """Settings of a heat diffusion run.

    Attributes:
        heat_step (float): Time increment of the explicit heat iteration.
            Must be small enough for the mesh and smoothing parameter, the
            run fails with `NumericalDivergence` otherwise.
        heat_iter (int): Number of heat iterations; 0 returns the injected
            point mass unchanged.
        search (SearchStrategy): Point location strategy.
    """

    heat_step: float = DEFAULT_HEAT_STEP
    heat_iter: int = DEFAULT_HEAT_ITER
    search: SearchStrategy = field(default=SearchStrategy.TREE)

    def __post_init__(self) -> None:
        object.__setattr__(self, "search", SearchStrategy.parse(self.search))
        try:
            heat_step = float(self.heat_step)
        except (TypeError, ValueError):
            raise InvalidInitParameter(
                f"heat_step must be a real number; got {self.heat_step!r}"
            ) from None
        if not (heat_step > 0.0 and heat_step < float("inf")):
            raise InvalidInitParameter(
                f"heat_step must be positive and finite; got {self.heat_step!r}"
            )
        try:
            heat_iter = int(self.heat_iter)
        except (TypeError, ValueError):
            heat_iter = -1
        if isinstance(self.heat_iter, bool) or heat_iter != self.heat_iter:
            raise InvalidInitParameter(
                f"heat_iter must be an integer; got {self.heat_iter!r}"
            )
        if heat_iter < 0:
            raise InvalidInitParameter(
                f"heat_iter must be non-negative; got {self.heat_iter!r}"
            )
        object.__setattr__(self, "heat_step", heat_step)
        object.__setattr__(self, "heat_iter", heat_iter)
