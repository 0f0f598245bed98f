"""Adaptive step-size control for embedded Runge-Kutta methods.

Provides the error-norm computation, the step-size prediction, and the
default step-size control policy used by the variable step-size integrator.
The default policy follows the standard embedded Runge-Kutta approach:

1. Compute an RMS error norm using mixed absolute/relative tolerances.
2. Accept the step if the normalized error is <= 1.0.
3. Predict the next step size from the error and the lower method order.

Any function with the :data:`StepSizeControl` signature can replace the
default policy, for instance to reproduce a published step-size sequence.
"""

from __future__ import annotations

from collections.abc import Callable

import jax.numpy as jnp
from jax import Array
from jax.typing import ArrayLike

from rkstep.config import get_dtype
from rkstep.integrators._types import IntegratorSettings, StepSizeDecision
from rkstep.integrators.coefficients import RungeKuttaCoefficients

StepSizeControl = Callable[
    [Array, Array, float, RungeKuttaCoefficients, IntegratorSettings], StepSizeDecision
]
"""Signature of a step-size control function.

Called as ``control(lower_order_estimate, higher_order_estimate, step_size,
coefficients, settings)`` after every step attempt; returns a
:class:`StepSizeDecision`. On rejection, ``next_step_size`` is used as the
retry size and must be smaller in magnitude than ``step_size``.
"""


def compute_error_norm(
    lower_order_estimate: ArrayLike,
    higher_order_estimate: ArrayLike,
    abs_tol: float,
    rel_tol: float,
) -> Array:
    """Compute the normalized RMS error norm of an embedded step.

    The per-component scale is

    .. math::

        \\text{sc}_k = \\text{abs\\_tol} + \\text{rel\\_tol}
            \\cdot \\max(|x^{\\text{low}}_k|, |x^{\\text{high}}_k|)

    and the returned norm is
    :math:`\\sqrt{\\frac{1}{n}\\sum_k ((x^{\\text{high}}_k - x^{\\text{low}}_k) / \\text{sc}_k)^2}`.
    A component with zero scale contributes nothing when both estimates agree
    and makes the norm infinite otherwise.

    Args:
        lower_order_estimate: Lower-order end-of-step state.
        higher_order_estimate: Higher-order end-of-step state.
        abs_tol: Absolute error tolerance (may be ``inf``).
        rel_tol: Relative error tolerance (may be ``inf``).

    Returns:
        jax.Array: Scalar normalized error. The step is accepted if <= 1.0.
    """
    lower = jnp.asarray(lower_order_estimate, dtype=get_dtype())
    higher = jnp.asarray(higher_order_estimate, dtype=get_dtype())

    difference = higher - lower
    magnitude = jnp.maximum(jnp.abs(lower), jnp.abs(higher))
    # Avoid inf * 0 when the relative tolerance is infinite
    relative_part = jnp.where(magnitude > 0.0, rel_tol * magnitude, 0.0)
    scale = abs_tol + relative_part

    safe_scale = jnp.where(scale > 0.0, scale, 1.0)
    ratio = jnp.where(
        scale > 0.0,
        difference / safe_scale,
        jnp.where(difference == 0.0, 0.0, jnp.inf),
    )
    return jnp.sqrt(jnp.mean(ratio**2))


def compute_next_step_size(
    error: ArrayLike,
    h: ArrayLike,
    order: float,
    safety_factor: float,
    min_scale_factor: float,
    max_scale_factor: float,
    min_step: float,
    max_step: float,
) -> Array:
    """Compute the next step size based on the current error estimate.

    Uses the standard optimal step-size formula:

    .. math::

        h_{\\text{next}} = |h| \\cdot \\text{clip}\\left(S \\cdot
            \\text{error}^{-1/(p+1)},\\; f_{\\min},\\; f_{\\max}\\right)

    where *S* is the safety factor and *p* is the order of the lower-order
    estimate. A zero error applies the maximum scale factor. The result is
    clamped to ``[min_step, max_step]`` and the sign of ``h`` is preserved
    for backward integration.

    Args:
        error: Normalized error from :func:`compute_error_norm`.
        h: Current step size (may be negative for backward integration).
        order: Order of the lower-order estimate (e.g. 4 for RKF45).
        safety_factor: Multiplicative safety factor (typically 0.8-0.9).
        min_scale_factor: Minimum allowed ratio ``|h_next| / |h|``.
        max_scale_factor: Maximum allowed ratio ``|h_next| / |h|``.
        min_step: Absolute minimum step size.
        max_step: Absolute maximum step size.

    Returns:
        jax.Array: Suggested next step size with same sign as ``h``.
    """
    error = jnp.asarray(error, dtype=get_dtype())
    h = jnp.asarray(h, dtype=get_dtype())

    abs_h = jnp.abs(h)
    sign_h = jnp.sign(h)

    exponent = 1.0 / (order + 1.0)
    safe_error = jnp.where(error > 0.0, error, 1.0)
    scale = jnp.where(
        error > 0.0,
        safety_factor * jnp.power(safe_error, -exponent),
        max_scale_factor,
    )

    # Clamp scale factor
    scale = jnp.clip(scale, min_scale_factor, max_scale_factor)

    # Compute and clamp absolute step size
    abs_h_next = jnp.clip(abs_h * scale, min_step, max_step)

    return sign_h * abs_h_next


def default_step_size_control(
    lower_order_estimate: Array,
    higher_order_estimate: Array,
    step_size: float,
    coefficients: RungeKuttaCoefficients,
    settings: IntegratorSettings,
) -> StepSizeDecision:
    """Default step-size control policy.

    Accepts the step when the RMS error norm is at most 1 and proposes the
    next step from :func:`compute_next_step_size` with the order of the
    lower-order estimate.

    Args:
        lower_order_estimate: Lower-order end-of-step state.
        higher_order_estimate: Higher-order end-of-step state.
        step_size: Step size of the evaluated attempt.
        coefficients: Tableau of the method in use.
        settings: Tolerances, bounds and tuning factors.

    Returns:
        StepSizeDecision: Proposed next step, acceptance flag and error.
    """
    error = compute_error_norm(
        lower_order_estimate,
        higher_order_estimate,
        settings.absolute_tolerance,
        settings.relative_tolerance,
    )
    next_step_size = compute_next_step_size(
        error,
        step_size,
        coefficients.lower_order,
        settings.safety_factor,
        settings.minimum_factor_decrease,
        settings.maximum_factor_increase,
        settings.minimum_step_size,
        settings.maximum_step_size,
    )
    error = float(error)
    return StepSizeDecision(
        next_step_size=float(next_step_size),
        accepted=error <= 1.0,
        relative_error=error,
    )
