"""Variable step-size Runge-Kutta integrator.

:class:`RungeKuttaVariableStepSizeIntegrator` owns the current and previous
``(t, x)`` pairs of a propagation and advances them with an embedded
Runge-Kutta method from :mod:`rkstep.integrators.coefficients`. Each step
evaluates the stages, asks the step-size control function for a verdict and
retries with a smaller step until the attempt is accepted or the minimum
step size is exhausted.

The integrator is a two-state machine:

- ``READY``: after construction, a rollback or a reinitialization.
- ``STEPPED``: after a successful step. Only here can the last step be
  rolled back, which restores the exact previous pair.

Integrators are not thread-safe; give each thread its own instance.
"""

from __future__ import annotations

import enum
import logging
import math
from collections.abc import Callable

import jax.numpy as jnp
from jax import Array
from jax.typing import ArrayLike

from rkstep.config import get_dtype
from rkstep.exceptions import DerivativeEvaluationError, StepSizeExhaustedError
from rkstep.integrators._adaptive import StepSizeControl, default_step_size_control
from rkstep.integrators._stages import evaluate_stages
from rkstep.integrators._types import IntegratorSettings, StageEvaluation, StepSizeDecision
from rkstep.integrators.coefficients import (
    CoefficientSet,
    RungeKuttaCoefficients,
    get_coefficients,
)

logger = logging.getLogger(__name__)


class SessionState(enum.Enum):
    """Rollback state of an integrator."""

    READY = "ready"
    STEPPED = "stepped"


def _as_state(state: ArrayLike) -> Array:
    x = jnp.atleast_1d(jnp.asarray(state, dtype=get_dtype()))
    if x.ndim != 1 or x.size == 0:
        raise ValueError(f"State must be a non-empty vector, got shape {x.shape}")
    return x


def _as_step_size(step_size: float) -> float:
    h = float(step_size)
    if h == 0.0 or not math.isfinite(h):
        raise ValueError(f"Step size must be finite and non-zero, got {step_size!r}")
    return h


class RungeKuttaVariableStepSizeIntegrator:
    """Adaptive embedded Runge-Kutta integrator with one-level rollback.

    Args:
        coefficients: Tableau of the method, or a :class:`CoefficientSet`
            member or its string value (e.g. ``"rkf45"``).
        derivative: ODE right-hand side ``f(t, x) -> dx/dt``. Called once per
            stage per step attempt.
        initial_time: Initial value of the independent variable.
        initial_state: Initial state vector.
        settings: Step-size bounds, tolerances and tuning factors. Uses the
            default :class:`IntegratorSettings` if ``None``.
        step_size_control: Replacement for
            :func:`~rkstep.integrators._adaptive.default_step_size_control`.
        environment_update: Optional callback ``g(t_i, x_i)`` invoked before
            every stage derivative, for derivative functions that read an
            environment that must first be brought to the stage point.

    Raises:
        ConfigurationError: If the method identifier is unknown.
        ValueError: If the initial state is not a non-empty vector.

    Examples:
        ```python
        import jax.numpy as jnp
        from rkstep.integrators import IntegratorSettings, RungeKuttaVariableStepSizeIntegrator
        integrator = RungeKuttaVariableStepSizeIntegrator(
            "rkf45",
            lambda t, x: x,
            0.0,
            jnp.array([1.0]),
            IntegratorSettings(minimum_step_size=1e-6, maximum_step_size=0.5),
        )
        integrator.integrate_to(1.0, 0.1)  # ~[e]
        ```
    """

    def __init__(
        self,
        coefficients: RungeKuttaCoefficients | CoefficientSet | str,
        derivative: Callable[[float, Array], ArrayLike],
        initial_time: float,
        initial_state: ArrayLike,
        settings: IntegratorSettings | None = None,
        step_size_control: StepSizeControl | None = None,
        environment_update: Callable[[float, Array], None] | None = None,
    ) -> None:
        if not isinstance(coefficients, RungeKuttaCoefficients):
            coefficients = get_coefficients(coefficients)
        self._coefficients = coefficients
        self._derivative = derivative
        self._settings = settings if settings is not None else IntegratorSettings()
        self._step_size_control = (
            step_size_control if step_size_control is not None else default_step_size_control
        )
        self._environment_update = environment_update

        self._next_step_size: float | None = None
        self._last_step_size: float | None = None
        self._last_relative_error: float | None = None
        self._last_evaluation: StageEvaluation | None = None
        self._reset(initial_time, initial_state)

    def _reset(self, time: float, state: ArrayLike) -> None:
        self._current_time = float(time)
        self._current_state = _as_state(state)
        self._previous_time: float | None = None
        self._previous_state: Array | None = None
        self._state = SessionState.READY

    # ── Properties ──────────────────────────────

    @property
    def coefficients(self) -> RungeKuttaCoefficients:
        """Butcher tableau in use."""
        return self._coefficients

    @property
    def settings(self) -> IntegratorSettings:
        """Step-size control settings."""
        return self._settings

    @property
    def state(self) -> SessionState:
        """Current rollback state (``READY`` or ``STEPPED``)."""
        return self._state

    @property
    def rollback_available(self) -> bool:
        """Whether :meth:`rollback_to_previous_state` would succeed."""
        return self._state is SessionState.STEPPED

    @property
    def current_time(self) -> float:
        """Current value of the independent variable."""
        return self._current_time

    @property
    def current_state(self) -> Array:
        """Current state vector."""
        return self._current_state

    @property
    def previous_time(self) -> float | None:
        """Independent variable before the last accepted step, if any."""
        return self._previous_time

    @property
    def previous_state(self) -> Array | None:
        """State before the last accepted step, if any."""
        return self._previous_state

    @property
    def next_step_size(self) -> float | None:
        """Step size recommended by the last accepted step."""
        return self._next_step_size

    @property
    def last_step_size(self) -> float | None:
        """Step size of the last accepted step."""
        return self._last_step_size

    @property
    def last_relative_error(self) -> float | None:
        """Normalized error of the last accepted step."""
        return self._last_relative_error

    @property
    def last_lower_order_estimate(self) -> Array | None:
        """Lower-order estimate of the last accepted step."""
        return None if self._last_evaluation is None else self._last_evaluation.lower_order_estimate

    @property
    def last_higher_order_estimate(self) -> Array | None:
        """Higher-order estimate of the last accepted step."""
        return None if self._last_evaluation is None else self._last_evaluation.higher_order_estimate

    @property
    def last_stage_derivatives(self) -> tuple[Array, ...] | None:
        """Stage derivatives of the last accepted step."""
        return None if self._last_evaluation is None else self._last_evaluation.stage_derivatives

    # ── Stepping ────────────────────────────────

    def _bounded_step_size(self, step_size: float) -> float:
        """Clamp ``|step_size|`` to the configured bounds, keeping its sign."""
        magnitude = min(
            max(abs(step_size), self._settings.minimum_step_size),
            self._settings.maximum_step_size,
        )
        return math.copysign(magnitude, step_size)

    def _compute_accepted_step(
        self, step_size: float
    ) -> tuple[float, StageEvaluation, StepSizeDecision]:
        """Evaluate and retry until accepted.

        Only the rollback state changes on failure: a failed step makes
        rollback unavailable, the current and previous pairs are kept.
        """
        try:
            return self._retry_until_accepted(step_size)
        except (DerivativeEvaluationError, StepSizeExhaustedError):
            self._state = SessionState.READY
            raise

    def _retry_until_accepted(
        self, step_size: float
    ) -> tuple[float, StageEvaluation, StepSizeDecision]:
        h = step_size
        while True:
            evaluation = evaluate_stages(
                self._coefficients,
                self._derivative,
                self._current_time,
                self._current_state,
                h,
                self._environment_update,
            )
            decision = self._step_size_control(
                evaluation.lower_order_estimate,
                evaluation.higher_order_estimate,
                h,
                self._coefficients,
                self._settings,
            )
            if decision.accepted:
                return h, evaluation, decision

            retry = float(decision.next_step_size)
            if abs(h) <= self._settings.minimum_step_size or not 0.0 < retry / h < 1.0:
                logger.warning(
                    "Step size exhausted at t=%r: step %r rejected with error %.3e",
                    self._current_time,
                    h,
                    decision.relative_error,
                )
                raise StepSizeExhaustedError(
                    f"Step of size {h!r} at t={self._current_time!r} rejected with "
                    f"error {decision.relative_error:.3e} and no smaller step is allowed "
                    f"(minimum step size {self._settings.minimum_step_size!r})",
                    time=self._current_time,
                    step_size=h,
                    relative_error=decision.relative_error,
                )
            logger.debug(
                "Rejected step %r at t=%r (error %.3e), retrying with %r",
                h,
                self._current_time,
                decision.relative_error,
                retry,
            )
            h = retry

    def _accept(
        self,
        step_size: float,
        new_time: float,
        evaluation: StageEvaluation,
        decision: StepSizeDecision,
    ) -> None:
        new_state = self._coefficients.propagated_estimate(
            evaluation.lower_order_estimate, evaluation.higher_order_estimate
        )

        self._previous_time = self._current_time
        self._previous_state = self._current_state
        self._current_time = new_time
        self._current_state = new_state

        self._last_step_size = step_size
        self._next_step_size = float(decision.next_step_size)
        self._last_relative_error = float(decision.relative_error)
        self._last_evaluation = evaluation
        self._state = SessionState.STEPPED

    def perform_integration_step(self, step_size: float) -> float:
        """Advance the state by one accepted step.

        The step is attempted with *step_size* and retried with the step-size
        controller's proposal while it is rejected. On acceptance the current
        pair becomes the previous pair and the propagated estimate becomes
        the current state.

        Args:
            step_size: Step to attempt. Negative for backward integration. Its
                magnitude is clamped to the minimum and maximum step sizes.

        Returns:
            float: The accepted step size, which may be smaller in magnitude
            than *step_size*.

        Raises:
            ValueError: If *step_size* is zero or not finite.
            DerivativeEvaluationError: If the derivative function fails. The
                current state is kept; rollback becomes unavailable.
            StepSizeExhaustedError: If no step down to the minimum step size
                is accepted. The current state is kept; rollback becomes
                unavailable.
        """
        h_try = self._bounded_step_size(_as_step_size(step_size))
        h, evaluation, decision = self._compute_accepted_step(h_try)
        self._accept(h, self._current_time + h, evaluation, decision)
        return h

    def integrate_to(self, final_time: float, initial_step_size: float) -> Array:
        """Integrate until the independent variable equals *final_time*.

        Steps never overshoot *final_time*: the last step is shortened to the
        remaining interval, and the final time is matched exactly. The
        direction of integration follows the sign of
        ``final_time - current_time``; the sign of *initial_step_size* is
        ignored. Each step is at most the maximum step size; only the last
        step may fall below the minimum step size.

        Args:
            final_time: Value of the independent variable to integrate to.
            initial_step_size: Magnitude of the first step to attempt.

        Returns:
            jax.Array: The state at *final_time*.

        Raises:
            ValueError: If *initial_step_size* is zero or not finite.
            DerivativeEvaluationError: If the derivative function fails.
            StepSizeExhaustedError: If the minimum step size is exhausted.
                Steps accepted before the failure are kept.
        """
        final_time = float(final_time)
        step = abs(self._bounded_step_size(_as_step_size(initial_step_size)))
        direction = 1.0 if final_time > self._current_time else -1.0
        n_steps = 0

        while self._current_time != final_time:
            remaining = final_time - self._current_time
            clipped = step >= abs(remaining)
            h_try = remaining if clipped else direction * step

            h, evaluation, decision = self._compute_accepted_step(h_try)
            new_time = final_time if (clipped and h == h_try) else self._current_time + h
            self._accept(h, new_time, evaluation, decision)
            n_steps += 1

            step = abs(self._bounded_step_size(_as_step_size(self._next_step_size)))

        logger.info(
            "Integrated to t=%r in %d steps using %s", final_time, n_steps, self._coefficients.name
        )
        return self._current_state

    def rollback_to_previous_state(self) -> bool:
        """Restore the state held before the last accepted step.

        Only one level of rollback is kept: a second consecutive call, or a
        call before any step, returns ``False`` and changes nothing.

        Only the time and state are restored. :attr:`next_step_size`,
        :attr:`last_step_size`, :attr:`last_relative_error` and the
        ``last_*`` estimates keep describing the step that was rolled back.

        Returns:
            bool: ``True`` if the rollback was performed.
        """
        if self._state is not SessionState.STEPPED:
            return False

        logger.debug("Rolling back from t=%r to t=%r", self._current_time, self._previous_time)
        self._current_time = self._previous_time
        self._current_state = self._previous_state
        self._state = SessionState.READY
        return True

    def reinitialize(self, time: float, state: ArrayLike) -> None:
        """Restart the integration from a new ``(time, state)`` pair.

        Used to apply discrete events between continuous integration arcs.
        The previous pair is cleared and rollback becomes unavailable; the
        recommended next step size is kept.

        Args:
            time: New value of the independent variable.
            state: New state vector.

        Raises:
            ValueError: If *state* is not a non-empty vector.
        """
        self._reset(time, state)
