"""
rkstep is an adaptive embedded Runge-Kutta integration engine for dynamical systems, implemented on JAX arrays.
"""

from .config import set_dtype, get_dtype

from .exceptions import (
    IntegratorError,
    ConfigurationError,
    DerivativeEvaluationError,
    StepSizeExhaustedError,
)

from .integrators import (
    CoefficientSet,
    EstimateOrder,
    IntegratorSettings,
    RungeKuttaCoefficients,
    RungeKuttaVariableStepSizeIntegrator,
    SessionState,
    StageEvaluation,
    StepSizeDecision,
    default_step_size_control,
    evaluate_stages,
    get_coefficients,
)

__all__ = [
    # Config
    "set_dtype",
    "get_dtype",
    # Exceptions
    "IntegratorError",
    "ConfigurationError",
    "DerivativeEvaluationError",
    "StepSizeExhaustedError",
    # Integrators
    "CoefficientSet",
    "EstimateOrder",
    "IntegratorSettings",
    "RungeKuttaCoefficients",
    "RungeKuttaVariableStepSizeIntegrator",
    "SessionState",
    "StageEvaluation",
    "StepSizeDecision",
    "default_step_size_control",
    "evaluate_stages",
    "get_coefficients",
]
