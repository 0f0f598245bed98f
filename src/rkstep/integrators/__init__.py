"""Adaptive embedded Runge-Kutta integrators.

Provides variable step-size integration with embedded error estimation,
step rejection and one-level rollback. State vectors are JAX arrays; the
integrator itself is a plain Python object stepping eagerly.

Available methods (see :class:`CoefficientSet`):

- ``"rkf45"`` -- Runge-Kutta-Fehlberg 4(5)
- ``"dopri54"`` -- Dormand-Prince 5(4)
- ``"rkf78"`` -- Runge-Kutta-Fehlberg 7(8)

Typical usage::

    integrator = RungeKuttaVariableStepSizeIntegrator(
        "rkf45", dynamics, t0, x0, IntegratorSettings(...)
    )
    state = integrator.integrate_to(t1, initial_step_size)

where ``dynamics(t, x) -> dx`` defines the ODE right-hand side.
"""

from rkstep.integrators._adaptive import (
    StepSizeControl,
    compute_error_norm,
    compute_next_step_size,
    default_step_size_control,
)
from rkstep.integrators._stages import evaluate_stages
from rkstep.integrators._types import IntegratorSettings, StageEvaluation, StepSizeDecision
from rkstep.integrators.coefficients import (
    CoefficientSet,
    EstimateOrder,
    RungeKuttaCoefficients,
    get_coefficients,
)
from rkstep.integrators.session import RungeKuttaVariableStepSizeIntegrator, SessionState

__all__ = [
    "CoefficientSet",
    "EstimateOrder",
    "IntegratorSettings",
    "RungeKuttaCoefficients",
    "RungeKuttaVariableStepSizeIntegrator",
    "SessionState",
    "StageEvaluation",
    "StepSizeControl",
    "StepSizeDecision",
    "compute_error_norm",
    "compute_next_step_size",
    "default_step_size_control",
    "evaluate_stages",
    "get_coefficients",
]
