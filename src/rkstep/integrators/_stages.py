"""Stage evaluation for explicit embedded Runge-Kutta methods.

Evaluates the stage derivatives of a single step,

.. math::

    k_i = f\\left(t + c_i h,\\; x + h \\sum_{j<i} a_{ij} k_j\\right)

and combines them into the lower- and higher-order end-of-step estimates.
The derivative function is called exactly once per stage, in stage order,
so derivative functions that depend on an external environment see the
evaluation points of the tableau one after the other.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence

import jax.numpy as jnp
from jax import Array
from jax.typing import ArrayLike

from rkstep.exceptions import DerivativeEvaluationError
from rkstep.integrators._types import StageEvaluation
from rkstep.integrators.coefficients import RungeKuttaCoefficients


def _weighted_sum(weights: Sequence[float], stages: Sequence[Array]) -> Array | None:
    """Return ``sum_j w_j k_j`` skipping zero weights, or ``None`` if all are zero."""
    total = None
    for w, k in zip(weights, stages):
        if w == 0.0:
            continue
        term = w * k
        total = term if total is None else total + term
    return total


def _combine(state: Array, step_size: float, weights: Sequence[float], stages: Sequence[Array]) -> Array:
    increment = _weighted_sum(weights, stages)
    if increment is None:
        return state
    return state + step_size * increment


def evaluate_stages(
    coefficients: RungeKuttaCoefficients,
    derivative: Callable[[float, Array], ArrayLike],
    t: float,
    state: Array,
    step_size: float,
    environment_update: Callable[[float, Array], None] | None = None,
) -> StageEvaluation:
    """Evaluate every stage of one embedded Runge-Kutta step.

    Args:
        coefficients: Butcher tableau of the method.
        derivative: ODE right-hand side ``f(t, x) -> dx/dt``.
        t: Independent variable at the start of the step.
        state: State at the start of the step.
        step_size: Step size ``h``; negative for backward integration.
        environment_update: Optional callback ``g(t_i, x_i)`` invoked right
            before each stage derivative with the same arguments. Use it to
            refresh environment quantities the derivative depends on.

    Returns:
        StageEvaluation: Both embedded estimates and the stage derivatives.

    Raises:
        DerivativeEvaluationError: If the derivative function or the
            environment update raises, or a stage derivative is non-finite or
            does not match the shape of the state.

    Examples:
        ```python
        import jax.numpy as jnp
        from rkstep.integrators import evaluate_stages, get_coefficients
        result = evaluate_stages(
            get_coefficients("rkf45"), lambda t, x: -x, 0.0, jnp.array([1.0]), 0.1
        )
        result.lower_order_estimate  # ~[exp(-0.1)]
        ```
    """
    stages: list[Array] = []
    for i, (c_i, row) in enumerate(zip(coefficients.c, coefficients.a)):
        t_i = t + c_i * step_size
        x_i = _combine(state, step_size, row, stages)
        try:
            if environment_update is not None:
                environment_update(t_i, x_i)
            k_i = jnp.asarray(derivative(t_i, x_i), dtype=state.dtype)
        except Exception as exc:
            raise DerivativeEvaluationError(
                f"Derivative evaluation failed in stage {i} at t={t_i!r}: {exc}",
                time=t,
                step_size=step_size,
            ) from exc

        if k_i.shape != state.shape:
            raise DerivativeEvaluationError(
                f"Stage {i} derivative has shape {k_i.shape}, expected {state.shape}",
                time=t,
                step_size=step_size,
            )
        if not bool(jnp.all(jnp.isfinite(k_i))):
            raise DerivativeEvaluationError(
                f"Non-finite derivative in stage {i} at t={t_i!r}",
                time=t,
                step_size=step_size,
            )
        stages.append(k_i)

    return StageEvaluation(
        lower_order_estimate=_combine(state, step_size, coefficients.b_lower, stages),
        higher_order_estimate=_combine(state, step_size, coefficients.b_higher, stages),
        stage_derivatives=tuple(stages),
    )
