"""Benchmark of the RKF45 integrator against Burden and Faires.

Reproduces the Runge-Kutta-Fehlberg example of Burden, R.L., Faires, J.D.,
Numerical Analysis (Table 5.11 in the 9th edition):

    y' = y - t^2 + 1,  0 <= t <= 2,  y(0) = 0.5
    TOL = 1e-5, hmax = 0.25, hmin = 0.01

The book uses its own step-size rule, supplied here as a custom step-size
control function. Exact solution: y(t) = (t + 1)^2 - 0.5 e^t.
"""

import math

import jax.numpy as jnp
import pytest

from rkstep.integrators import (
    IntegratorSettings,
    RungeKuttaVariableStepSizeIntegrator,
    StepSizeDecision,
)

# t_i, w_i (propagated 4th-order estimate), h_i, R_i
_TABLE = (
    (0.2500000, 0.9204886, 0.2500000, 6.2e-6),
    (0.4865522, 1.3964910, 0.2365522, 4.5e-6),
    (0.7293332, 1.9537488, 0.2427810, 4.3e-6),
    (0.9793332, 2.5864260, 0.2500000, 3.8e-6),
    (1.2293332, 3.2604605, 0.2500000, 2.4e-6),
    (1.4793332, 3.9520955, 0.2500000, 7.0e-7),
    (1.7293332, 4.6308268, 0.2500000, 1.5e-6),
    (1.9793332, 5.2574861, 0.2500000, 4.3e-6),
)

_FINAL_TIME = 2.0

_SETTINGS = IntegratorSettings(
    minimum_step_size=0.01,
    maximum_step_size=0.25,
    relative_tolerance=0.0,
    absolute_tolerance=1e-5,
    safety_factor=0.84,
    maximum_factor_increase=4.0,
    minimum_factor_decrease=0.1,
)


def _derivative(t, y):
    return y - t**2 + 1.0


def _exact(t):
    return (t + 1.0) ** 2 - 0.5 * math.exp(t)


def _burden_faires_control(lower, higher, step_size, coefficients, settings):
    """Step-size rule of Burden and Faires, Algorithm 5.3."""
    error = float(jnp.max(jnp.abs(higher - lower))) / abs(step_size)
    tolerance = settings.absolute_tolerance
    if error > 0.0:
        delta = settings.safety_factor * (tolerance / error) ** 0.25
    else:
        delta = settings.maximum_factor_increase

    if delta <= settings.minimum_factor_decrease:
        next_step = settings.minimum_factor_decrease * step_size
    elif delta >= settings.maximum_factor_increase:
        next_step = settings.maximum_factor_increase * step_size
    else:
        next_step = delta * step_size
    next_step = math.copysign(min(abs(next_step), settings.maximum_step_size), step_size)

    return StepSizeDecision(next_step, error <= tolerance, error)


def _integrator():
    return RungeKuttaVariableStepSizeIntegrator(
        "rkf45",
        _derivative,
        0.0,
        jnp.array([0.5]),
        _SETTINGS,
        step_size_control=_burden_faires_control,
    )


class TestBurdenFaires:
    def test_step_by_step(self):
        integrator = _integrator()
        step_size = 0.25
        for t_i, w_i, h_i, r_i in _TABLE:
            used = integrator.perform_integration_step(step_size)

            assert used == pytest.approx(h_i, abs=1e-6)
            assert integrator.current_time == pytest.approx(t_i, abs=1e-6)
            assert float(integrator.current_state[0]) == pytest.approx(w_i, abs=1e-6)
            assert float(integrator.last_lower_order_estimate[0]) == pytest.approx(w_i, abs=1e-6)
            assert integrator.last_relative_error == pytest.approx(r_i, rel=0.1)
            # Propagated 4th-order values stay within the tolerance band of the exact solution.
            assert float(integrator.current_state[0]) == pytest.approx(
                _exact(integrator.current_time), abs=5e-5
            )

            step_size = integrator.next_step_size

        last_time = integrator.current_time
        last_state = integrator.current_state

        final_state = integrator.integrate_to(_FINAL_TIME, integrator.next_step_size)
        assert integrator.current_time == _FINAL_TIME
        assert integrator.last_step_size == pytest.approx(2.0 - _TABLE[-1][0], abs=1e-6)
        assert float(final_state[0]) == pytest.approx(_exact(_FINAL_TIME), abs=5e-5)
        assert jnp.array_equal(final_state, integrator.current_state)

        assert integrator.rollback_to_previous_state()
        assert integrator.current_time == last_time
        assert jnp.array_equal(integrator.current_state, last_state)
        assert not integrator.rollback_to_previous_state()

    def test_integrate_to_in_one_call(self):
        integrator = _integrator()
        final_state = integrator.integrate_to(_FINAL_TIME, 0.25)

        assert integrator.current_time == _FINAL_TIME
        assert float(final_state[0]) == pytest.approx(_exact(_FINAL_TIME), abs=5e-5)

        assert integrator.rollback_to_previous_state()
        assert integrator.current_time == pytest.approx(_TABLE[-1][0], abs=1e-6)
        assert float(integrator.current_state[0]) == pytest.approx(_TABLE[-1][1], abs=1e-6)
        assert not integrator.rollback_to_previous_state()
