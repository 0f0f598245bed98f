"""Type definitions for the variable step-size integrators.

Provides the data types shared by the stage evaluator, the step-size
controller and the integrator session:

- :class:`IntegratorSettings`: Step-size bounds, error tolerances and the
  tuning factors of the step-size controller.
- :class:`StageEvaluation`: Output of a single stage evaluation, holding both
  embedded solution estimates and every stage derivative.
- :class:`StepSizeDecision`: Output of a step-size control function.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import NamedTuple

from jax import Array

from rkstep.exceptions import ConfigurationError


@dataclass(frozen=True)
class IntegratorSettings:
    """Configuration for adaptive step-size control.

    Settings are fixed for the lifetime of an integrator.  Default factors
    are the usual values for orbit propagation; step-size bounds and
    tolerances should be chosen for the problem at hand.

    Args:
        minimum_step_size: Smallest allowed step magnitude. A step that is
            still rejected at this size raises
            :class:`~rkstep.exceptions.StepSizeExhaustedError`.
        maximum_step_size: Largest allowed step magnitude. May be ``inf``.
        relative_tolerance: Relative error tolerance per state component.
        absolute_tolerance: Absolute error tolerance per state component.
        safety_factor: Factor < 1 applied to the predicted optimal step.
        maximum_factor_increase: Largest allowed ratio ``|h_next| / |h|``.
        minimum_factor_decrease: Smallest allowed ratio ``|h_next| / |h|``.

    Raises:
        ConfigurationError: If any value is out of range.

    Examples:
        ```python
        from rkstep.integrators import IntegratorSettings
        settings = IntegratorSettings(minimum_step_size=1e-3, maximum_step_size=60.0)
        settings.safety_factor
        ```
    """

    minimum_step_size: float = 1e-12
    maximum_step_size: float = math.inf
    relative_tolerance: float = 1e-12
    absolute_tolerance: float = 1e-12
    safety_factor: float = 0.8
    maximum_factor_increase: float = 4.0
    minimum_factor_decrease: float = 0.1

    def __post_init__(self) -> None:
        if not (math.isfinite(self.minimum_step_size) and self.minimum_step_size > 0.0):
            raise ConfigurationError(
                f"minimum_step_size must be positive and finite, got {self.minimum_step_size}"
            )
        if math.isnan(self.maximum_step_size) or self.minimum_step_size > self.maximum_step_size:
            raise ConfigurationError(
                f"minimum_step_size ({self.minimum_step_size}) must not exceed "
                f"maximum_step_size ({self.maximum_step_size})"
            )
        for name in ("relative_tolerance", "absolute_tolerance"):
            value = getattr(self, name)
            if math.isnan(value) or value < 0.0:
                raise ConfigurationError(f"{name} must be non-negative, got {value}")
        if self.relative_tolerance == 0.0 and self.absolute_tolerance == 0.0:
            raise ConfigurationError(
                "relative_tolerance and absolute_tolerance cannot both be zero"
            )
        if not 0.0 < self.safety_factor < 1.0:
            raise ConfigurationError(
                f"safety_factor must lie in (0, 1), got {self.safety_factor}"
            )
        if not self.maximum_factor_increase > 1.0:
            raise ConfigurationError(
                f"maximum_factor_increase must be greater than 1, "
                f"got {self.maximum_factor_increase}"
            )
        if not 0.0 < self.minimum_factor_decrease < 1.0:
            raise ConfigurationError(
                f"minimum_factor_decrease must lie in (0, 1), "
                f"got {self.minimum_factor_decrease}"
            )


class StageEvaluation(NamedTuple):
    """Result of evaluating every stage of an embedded Runge-Kutta step.

    Attributes:
        lower_order_estimate: End-of-step state from the lower-order weights.
        higher_order_estimate: End-of-step state from the higher-order weights.
        stage_derivatives: Stage derivatives ``k_1 .. k_s`` in stage order.
    """

    lower_order_estimate: Array
    higher_order_estimate: Array
    stage_derivatives: tuple[Array, ...]


class StepSizeDecision(NamedTuple):
    """Outcome of a step-size control function.

    Attributes:
        next_step_size: Proposed next step, with the sign of the current one.
            Used as the retry size when the step is rejected.
        accepted: Whether the evaluated step meets the tolerance.
        relative_error: Normalized error measure of the evaluated step.
    """

    next_step_size: float
    accepted: bool
    relative_error: float
