"""Tests for the stage evaluator in rkstep.integrators._stages."""

import jax.numpy as jnp
import pytest

from rkstep.exceptions import DerivativeEvaluationError
from rkstep.integrators import CoefficientSet, evaluate_stages, get_coefficients

_ALL_METHODS = list(CoefficientSet)


def _exponential_growth(t, x):
    """dx/dt = x. Solution: x(t) = x0 * exp(t)."""
    return x


def _cubic_dynamics(t, x):
    """dx/dt = 3t^2. Solution: x(t) = x0 + t^3."""
    return 3.0 * t**2 * jnp.ones_like(x)


class TestEstimates:
    @pytest.mark.parametrize("method", _ALL_METHODS)
    def test_exponential_single_step(self, method):
        x0 = jnp.array([1.0])
        h = 0.1
        result = evaluate_stages(get_coefficients(method), _exponential_growth, 0.0, x0, h)
        expected = jnp.exp(h)
        assert jnp.allclose(result.lower_order_estimate, expected, atol=1e-7)
        assert jnp.allclose(result.higher_order_estimate, expected, atol=1e-8)

    @pytest.mark.parametrize("method", _ALL_METHODS)
    def test_cubic_exactness(self, method):
        """Both estimates are exact for polynomials below their order."""
        x0 = jnp.array([0.0, 1.0])
        result = evaluate_stages(get_coefficients(method), _cubic_dynamics, 1.0, x0, 0.5)
        expected = x0 + 1.5**3 - 1.0
        assert jnp.allclose(result.lower_order_estimate, expected, atol=1e-12)
        assert jnp.allclose(result.higher_order_estimate, expected, atol=1e-12)

    def test_higher_order_is_more_accurate(self):
        x0 = jnp.array([1.0])
        h = 0.5
        result = evaluate_stages(get_coefficients("rkf45"), _exponential_growth, 0.0, x0, h)
        exact = jnp.exp(h)
        low_error = jnp.abs(result.lower_order_estimate[0] - exact)
        high_error = jnp.abs(result.higher_order_estimate[0] - exact)
        assert high_error < low_error

    def test_backward_step(self):
        x0 = jnp.array([1.0])
        result = evaluate_stages(get_coefficients("rkf78"), _exponential_growth, 0.0, x0, -0.2)
        assert jnp.allclose(result.lower_order_estimate, jnp.exp(-0.2), atol=1e-9)

    def test_state_is_not_mutated(self):
        x0 = jnp.array([1.0, -2.0])
        before = jnp.array(x0)
        evaluate_stages(get_coefficients("rkf45"), _exponential_growth, 0.0, x0, 0.3)
        assert jnp.array_equal(x0, before)

    def test_stage_derivatives_exposed(self):
        coefficients = get_coefficients("dopri54")
        x0 = jnp.array([2.0])
        result = evaluate_stages(coefficients, _exponential_growth, 0.0, x0, 0.1)
        assert len(result.stage_derivatives) == coefficients.stages
        # First stage is the derivative at the start of the step.
        assert jnp.array_equal(result.stage_derivatives[0], x0)


class TestEvaluationOrder:
    @pytest.mark.parametrize("method", _ALL_METHODS)
    def test_one_call_per_stage_in_order(self, method):
        coefficients = get_coefficients(method)
        times = []

        def recording(t, x):
            times.append(t)
            return x

        t0, h = 2.0, 0.25
        evaluate_stages(coefficients, recording, t0, jnp.array([1.0]), h)
        assert times == pytest.approx([t0 + c * h for c in coefficients.c])

    def test_no_caching_across_calls(self):
        calls = []

        def recording(t, x):
            calls.append(t)
            return x

        coefficients = get_coefficients("rkf45")
        evaluate_stages(coefficients, recording, 0.0, jnp.array([1.0]), 0.1)
        evaluate_stages(coefficients, recording, 0.0, jnp.array([1.0]), 0.1)
        assert len(calls) == 2 * coefficients.stages

    def test_environment_update_precedes_each_stage(self):
        events = []

        def update(t, x):
            events.append(("update", t, float(x[0])))

        def derivative(t, x):
            events.append(("derivative", t, float(x[0])))
            return x

        coefficients = get_coefficients("rkf45")
        evaluate_stages(coefficients, derivative, 0.0, jnp.array([1.0]), 0.1, update)

        assert len(events) == 2 * coefficients.stages
        for i in range(coefficients.stages):
            kind_u, t_u, x_u = events[2 * i]
            kind_d, t_d, x_d = events[2 * i + 1]
            assert (kind_u, kind_d) == ("update", "derivative")
            assert t_u == t_d
            assert x_u == x_d


class TestFailures:
    def test_raising_derivative_is_wrapped(self):
        def failing(t, x):
            if t > 0.0:
                raise ArithmeticError("domain error")
            return x

        with pytest.raises(DerivativeEvaluationError, match="stage 1") as info:
            evaluate_stages(get_coefficients("rkf45"), failing, 0.0, jnp.array([1.0]), 0.1)
        assert isinstance(info.value.__cause__, ArithmeticError)
        assert info.value.time == 0.0
        assert info.value.step_size == 0.1

    def test_non_finite_derivative_raises(self):
        def singular(t, x):
            return jnp.log(x - 1.0)

        with pytest.raises(DerivativeEvaluationError, match="Non-finite"):
            evaluate_stages(get_coefficients("rkf45"), singular, 0.0, jnp.array([0.5]), 0.1)

    def test_shape_mismatch_raises(self):
        def wrong_shape(t, x):
            return jnp.zeros(3)

        with pytest.raises(DerivativeEvaluationError, match="shape"):
            evaluate_stages(get_coefficients("rkf45"), wrong_shape, 0.0, jnp.array([1.0]), 0.1)

    def test_environment_update_failure_is_wrapped(self):
        def update(t, x):
            raise KeyError("missing body")

        with pytest.raises(DerivativeEvaluationError):
            evaluate_stages(
                get_coefficients("rkf45"), _exponential_growth, 0.0, jnp.array([1.0]), 0.1, update
            )
