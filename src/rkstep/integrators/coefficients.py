"""Butcher tableaus of the supported embedded Runge-Kutta methods.

Each method is identified by a :class:`CoefficientSet` member and described
by an immutable :class:`RungeKuttaCoefficients` instance. Tableaus are pure
data: they are built on first request by :func:`get_coefficients`, cached per
identifier and shared by every integrator that uses them.

Available methods:

- Runge-Kutta-Fehlberg 4(5), 6 stages
- Dormand-Prince 5(4), 7 stages
- Runge-Kutta-Fehlberg 7(8), 13 stages

The coupling matrix is stored as lower-triangular rows: row *i* holds the
*i* coefficients ``a_i0 .. a_i(i-1)`` of stage *i*, so row 0 is empty.
"""

from __future__ import annotations

import enum
from collections.abc import Callable
from dataclasses import dataclass

from jax import Array

from rkstep.config import get_consistency_tolerance
from rkstep.exceptions import ConfigurationError


class CoefficientSet(enum.Enum):
    """Identifiers of the supported embedded Runge-Kutta methods."""

    RUNGE_KUTTA_FEHLBERG_45 = "rkf45"
    DORMAND_PRINCE_54 = "dopri54"
    RUNGE_KUTTA_FEHLBERG_78 = "rkf78"


class EstimateOrder(enum.Enum):
    """Which of the two embedded estimates becomes the propagated state."""

    LOWER = "lower"
    HIGHER = "higher"


@dataclass(frozen=True)
class RungeKuttaCoefficients:
    """Butcher tableau of an explicit embedded Runge-Kutta pair.

    Args:
        name: Human-readable method name.
        c: Stage time fractions, one per stage.
        a: Lower-triangular coupling rows; row *i* has length *i*.
        b_lower: Weights of the lower-order solution.
        b_higher: Weights of the higher-order solution.
        lower_order: Formal order of the lower-order solution.
        higher_order: Formal order of the higher-order solution.
        propagated_order: Estimate used as the new state of an accepted step.
        b_interpolation: Optional extra weights for dense output.

    Raises:
        ConfigurationError: If the tableau is malformed or inconsistent.
    """

    name: str
    c: tuple[float, ...]
    a: tuple[tuple[float, ...], ...]
    b_lower: tuple[float, ...]
    b_higher: tuple[float, ...]
    lower_order: int
    higher_order: int
    propagated_order: EstimateOrder = EstimateOrder.LOWER
    b_interpolation: tuple[float, ...] | None = None

    def __post_init__(self) -> None:
        s = len(self.c)
        if s < 1:
            raise ConfigurationError(f"{self.name}: tableau needs at least one stage")
        if len(self.a) != s:
            raise ConfigurationError(
                f"{self.name}: expected {s} coupling rows, got {len(self.a)}"
            )
        weights = {"b_lower": self.b_lower, "b_higher": self.b_higher}
        if self.b_interpolation is not None:
            weights["b_interpolation"] = self.b_interpolation
        for label, b in weights.items():
            if len(b) != s:
                raise ConfigurationError(
                    f"{self.name}: {label} has {len(b)} entries, expected {s}"
                )
        if not self.lower_order < self.higher_order:
            raise ConfigurationError(
                f"{self.name}: lower_order ({self.lower_order}) must be below "
                f"higher_order ({self.higher_order})"
            )
        if self.c[0] != 0.0:
            raise ConfigurationError(f"{self.name}: first stage fraction must be 0")

        tol = get_consistency_tolerance()
        for i, (c_i, row) in enumerate(zip(self.c, self.a)):
            if len(row) != i:
                raise ConfigurationError(
                    f"{self.name}: coupling row {i} has {len(row)} entries, expected {i}"
                )
            if abs(sum(row) - c_i) > tol:
                raise ConfigurationError(
                    f"{self.name}: coupling row {i} sums to {sum(row)!r}, "
                    f"but the stage fraction is {c_i!r}"
                )
        for label, b in weights.items():
            if abs(sum(b) - 1.0) > tol:
                raise ConfigurationError(
                    f"{self.name}: {label} sums to {sum(b)!r}, expected 1"
                )

    @property
    def stages(self) -> int:
        """Number of stages per step."""
        return len(self.c)

    def propagated_estimate(
        self, lower_order_estimate: Array, higher_order_estimate: Array
    ) -> Array:
        """Select the estimate that becomes the new state of an accepted step."""
        if self.propagated_order is EstimateOrder.HIGHER:
            return higher_order_estimate
        return lower_order_estimate


def _rkf45() -> RungeKuttaCoefficients:
    return RungeKuttaCoefficients(
        name="Runge-Kutta-Fehlberg 4(5)",
        c=(0.0, 1.0 / 4.0, 3.0 / 8.0, 12.0 / 13.0, 1.0, 1.0 / 2.0),
        a=(
            (),
            (1.0 / 4.0,),
            (3.0 / 32.0, 9.0 / 32.0),
            (1932.0 / 2197.0, -7200.0 / 2197.0, 7296.0 / 2197.0),
            (439.0 / 216.0, -8.0, 3680.0 / 513.0, -845.0 / 4104.0),
            (-8.0 / 27.0, 2.0, -3544.0 / 2565.0, 1859.0 / 4104.0, -11.0 / 40.0),
        ),
        b_lower=(25.0 / 216.0, 0.0, 1408.0 / 2565.0, 2197.0 / 4104.0, -1.0 / 5.0, 0.0),
        b_higher=(
            16.0 / 135.0,
            0.0,
            6656.0 / 12825.0,
            28561.0 / 56430.0,
            -9.0 / 50.0,
            2.0 / 55.0,
        ),
        lower_order=4,
        higher_order=5,
    )


def _dopri54() -> RungeKuttaCoefficients:
    # Last coupling row equals b_higher (first-same-as-last).
    b_higher = (35.0 / 384.0, 0.0, 500.0 / 1113.0, 125.0 / 192.0, -2187.0 / 6784.0, 11.0 / 84.0, 0.0)
    return RungeKuttaCoefficients(
        name="Dormand-Prince 5(4)",
        c=(0.0, 1.0 / 5.0, 3.0 / 10.0, 4.0 / 5.0, 8.0 / 9.0, 1.0, 1.0),
        a=(
            (),
            (1.0 / 5.0,),
            (3.0 / 40.0, 9.0 / 40.0),
            (44.0 / 45.0, -56.0 / 15.0, 32.0 / 9.0),
            (19372.0 / 6561.0, -25360.0 / 2187.0, 64448.0 / 6561.0, -212.0 / 729.0),
            (9017.0 / 3168.0, -355.0 / 33.0, 46732.0 / 5247.0, 49.0 / 176.0, -5103.0 / 18656.0),
            b_higher[:6],
        ),
        b_lower=(
            5179.0 / 57600.0,
            0.0,
            7571.0 / 16695.0,
            393.0 / 640.0,
            -92097.0 / 339200.0,
            187.0 / 2100.0,
            1.0 / 40.0,
        ),
        b_higher=b_higher,
        lower_order=4,
        higher_order=5,
    )


def _rkf78() -> RungeKuttaCoefficients:
    return RungeKuttaCoefficients(
        name="Runge-Kutta-Fehlberg 7(8)",
        c=(
            0.0, 2.0 / 27.0, 1.0 / 9.0, 1.0 / 6.0, 5.0 / 12.0, 1.0 / 2.0, 5.0 / 6.0,
            1.0 / 6.0, 2.0 / 3.0, 1.0 / 3.0, 1.0, 0.0, 1.0,
        ),
        a=(
            (),
            (2.0 / 27.0,),
            (1.0 / 36.0, 1.0 / 12.0),
            (1.0 / 24.0, 0.0, 1.0 / 8.0),
            (5.0 / 12.0, 0.0, -25.0 / 16.0, 25.0 / 16.0),
            (1.0 / 20.0, 0.0, 0.0, 1.0 / 4.0, 1.0 / 5.0),
            (-25.0 / 108.0, 0.0, 0.0, 125.0 / 108.0, -65.0 / 27.0, 125.0 / 54.0),
            (31.0 / 300.0, 0.0, 0.0, 0.0, 61.0 / 225.0, -2.0 / 9.0, 13.0 / 900.0),
            (2.0, 0.0, 0.0, -53.0 / 6.0, 704.0 / 45.0, -107.0 / 9.0, 67.0 / 90.0, 3.0),
            (
                -91.0 / 108.0, 0.0, 0.0, 23.0 / 108.0, -976.0 / 135.0, 311.0 / 54.0,
                -19.0 / 60.0, 17.0 / 6.0, -1.0 / 12.0,
            ),
            (
                2383.0 / 4100.0, 0.0, 0.0, -341.0 / 164.0, 4496.0 / 1025.0, -301.0 / 82.0,
                2133.0 / 4100.0, 45.0 / 82.0, 45.0 / 164.0, 18.0 / 41.0,
            ),
            (
                3.0 / 205.0, 0.0, 0.0, 0.0, 0.0, -6.0 / 41.0, -3.0 / 205.0, -3.0 / 41.0,
                3.0 / 41.0, 6.0 / 41.0, 0.0,
            ),
            (
                -1777.0 / 4100.0, 0.0, 0.0, -341.0 / 164.0, 4496.0 / 1025.0, -289.0 / 82.0,
                2193.0 / 4100.0, 51.0 / 82.0, 33.0 / 164.0, 12.0 / 41.0, 0.0, 1.0,
            ),
        ),
        b_lower=(
            41.0 / 840.0, 0.0, 0.0, 0.0, 0.0, 34.0 / 105.0, 9.0 / 35.0, 9.0 / 35.0,
            9.0 / 280.0, 9.0 / 280.0, 41.0 / 840.0, 0.0, 0.0,
        ),
        b_higher=(
            0.0, 0.0, 0.0, 0.0, 0.0, 34.0 / 105.0, 9.0 / 35.0, 9.0 / 35.0,
            9.0 / 280.0, 9.0 / 280.0, 0.0, 41.0 / 840.0, 41.0 / 840.0,
        ),
        lower_order=7,
        higher_order=8,
    )


_BUILDERS: dict[CoefficientSet, Callable[[], RungeKuttaCoefficients]] = {
    CoefficientSet.RUNGE_KUTTA_FEHLBERG_45: _rkf45,
    CoefficientSet.DORMAND_PRINCE_54: _dopri54,
    CoefficientSet.RUNGE_KUTTA_FEHLBERG_78: _rkf78,
}

_CACHE: dict[CoefficientSet, RungeKuttaCoefficients] = {}


def get_coefficients(method: CoefficientSet | str) -> RungeKuttaCoefficients:
    """Return the Butcher tableau for a method identifier.

    The tableau is constructed and validated on the first request and cached
    afterwards, so repeated lookups return the same object.

    Args:
        method: A :class:`CoefficientSet` member or its string value
            (``"rkf45"``, ``"dopri54"``, ``"rkf78"``).

    Returns:
        RungeKuttaCoefficients: The method's tableau.

    Raises:
        ConfigurationError: If *method* is not a known identifier.

    Examples:
        ```python
        from rkstep.integrators import get_coefficients
        rkf45 = get_coefficients("rkf45")
        rkf45.stages  # 6
        ```
    """
    try:
        key = CoefficientSet(method)
    except ValueError:
        raise ConfigurationError(
            f"Unknown Runge-Kutta method {method!r}. Must be one of: "
            f"{', '.join(m.value for m in CoefficientSet)}"
        ) from None

    coefficients = _CACHE.get(key)
    if coefficients is None:
        coefficients = _BUILDERS[key]()
        _CACHE[key] = coefficients
    return coefficients
