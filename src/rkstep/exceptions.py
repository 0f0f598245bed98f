"""
Custom exceptions raised by the rkstep integrators.

Rolling back an integrator that has nothing to roll back is not an error and
therefore has no exception here; it is reported through a boolean return.
"""

from __future__ import annotations


class IntegratorError(Exception):
    """Base exception for rkstep errors."""


class ConfigurationError(IntegratorError, ValueError):
    """Raised for inconsistent tableaus or invalid integrator settings.

    Fatal for the object being constructed; there is no default recovery.
    """


class DerivativeEvaluationError(IntegratorError, RuntimeError):
    """Raised when the derivative function fails during a step attempt.

    The integrator state is left as it was before the attempt, so the caller
    may retry with a different step or state, or abort the run.

    Attributes:
        time: Independent variable at the start of the failed attempt.
        step_size: Step size of the failed attempt.
    """

    def __init__(self, message: str, time: float | None = None, step_size: float | None = None):
        super().__init__(message)
        self.time = time
        self.step_size = step_size


class StepSizeExhaustedError(IntegratorError, RuntimeError):
    """Raised when repeated rejections drive the step below the minimum.

    The last accepted state is preserved in the integrator so that the caller
    can inspect how far the integration progressed.

    Attributes:
        time: Independent variable of the last accepted state.
        step_size: Smallest step size that was attempted.
        relative_error: Normalized error of the last rejected attempt.
    """

    def __init__(
        self,
        message: str,
        time: float | None = None,
        step_size: float | None = None,
        relative_error: float | None = None,
    ):
        super().__init__(message)
        self.time = time
        self.step_size = step_size
        self.relative_error = relative_error
