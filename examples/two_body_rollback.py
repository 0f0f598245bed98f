# /// script
# requires-python = ">=3.11"
# dependencies = ["typer>=0.9.0", "rkstep"]
#
# [tool.uv.sources]
# rkstep = { path = ".." }
# ///
"""Propagate a two-body orbit with an adaptive integrator and a discrete event.

Integrates a circular low Earth orbit with one of the embedded Runge-Kutta
methods, stepping until an altitude threshold is crossed, rolling back the
crossing step, and finishing the crossing with a bisected step. Halfway
through, an impulsive manoeuvre is applied through ``reinitialize``.

Requires rkstep to be installed (``uv pip install -e .`` from the repo root).

Usage:
    uv run examples/two_body_rollback.py [OPTIONS]

Examples:
    # Default: RKF78, one orbit, 10 m/s prograde burn at mid-orbit
    uv run examples/two_body_rollback.py

    # Dormand-Prince with looser tolerances
    uv run examples/two_body_rollback.py --method dopri54 --tolerance 1e-8
"""

import enum
import logging
import math
import time
from typing import Annotated

import jax.numpy as jnp
import typer

from rkstep import set_dtype
from rkstep.integrators import IntegratorSettings, RungeKuttaVariableStepSizeIntegrator

GM_EARTH = 3.986004415e14
R_EARTH = 6.3781363e6

set_dtype(jnp.float64)


class Method(enum.StrEnum):
    """Embedded Runge-Kutta method."""

    rkf45 = "rkf45"
    dopri54 = "dopri54"
    rkf78 = "rkf78"


def _two_body(t, state):
    r = state[:3]
    v = state[3:]
    r_norm = jnp.linalg.norm(r)
    return jnp.concatenate([v, -GM_EARTH * r / r_norm**3])


def _altitude(state) -> float:
    return float(jnp.linalg.norm(state[:3])) - R_EARTH


def main(
    method: Annotated[Method, typer.Option(help="Integration method")] = Method.rkf78,
    altitude: Annotated[float, typer.Option(help="Initial circular altitude in km")] = 500.0,
    delta_v: Annotated[float, typer.Option(help="Prograde burn at mid-orbit in m/s")] = 10.0,
    threshold: Annotated[
        float, typer.Option(help="Altitude to detect after the burn in km")
    ] = 520.0,
    tolerance: Annotated[float, typer.Option(help="Relative error tolerance")] = 1e-11,
    verbose: Annotated[bool, typer.Option(help="Show integrator debug logging")] = False,
) -> None:
    """Propagate one orbit, apply a burn and locate an altitude crossing."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO)

    sma = R_EARTH + altitude * 1e3
    period = 2.0 * math.pi * math.sqrt(sma**3 / GM_EARTH)
    state0 = jnp.array([sma, 0.0, 0.0, 0.0, math.sqrt(GM_EARTH / sma), 0.0])
    settings = IntegratorSettings(
        minimum_step_size=1e-6,
        maximum_step_size=600.0,
        relative_tolerance=tolerance,
        absolute_tolerance=1e-6,
    )
    integrator = RungeKuttaVariableStepSizeIntegrator(
        method.value, _two_body, 0.0, state0, settings
    )

    # ── Stage 1: Coast to mid-orbit ──────────────────────────────────────
    t0 = time.perf_counter()
    state = integrator.integrate_to(0.5 * period, 10.0)
    print(f"Coasted {0.5 * period:.1f} s in {time.perf_counter() - t0:.2f} s")
    print(f"  Altitude: {_altitude(state) / 1e3:.3f} km")

    # ── Stage 2: Impulsive burn ──────────────────────────────────────────
    velocity = state[3:]
    burned = state.at[3:].set(velocity + delta_v * velocity / jnp.linalg.norm(velocity))
    integrator.reinitialize(integrator.current_time, burned)
    print(f"Applied {delta_v:.1f} m/s prograde burn")

    # ── Stage 3: Step until the threshold is crossed ─────────────────────
    target = threshold * 1e3
    step = integrator.next_step_size
    end_time = 2.0 * period
    while integrator.current_time < end_time:
        integrator.perform_integration_step(min(step, end_time - integrator.current_time))
        if _altitude(integrator.current_state) >= target:
            break
        step = integrator.next_step_size
    else:
        print(f"Altitude {threshold:.1f} km not reached")
        raise typer.Exit(code=1)

    # ── Stage 4: Roll back and bisect the crossing step ──────────────────
    crossing_step = integrator.last_step_size
    integrator.rollback_to_previous_state()
    low, high = 0.0, crossing_step
    while high - low > 1e-3:
        mid = 0.5 * (low + high)
        integrator.perform_integration_step(mid)
        above = _altitude(integrator.current_state) >= target
        integrator.rollback_to_previous_state()
        if above:
            high = mid
        else:
            low = mid
    integrator.perform_integration_step(high)
    print(
        f"Crossed {threshold:.1f} km at t = {integrator.current_time:.3f} s "
        f"(altitude {_altitude(integrator.current_state) / 1e3:.4f} km)"
    )


if __name__ == "__main__":
    typer.run(main)
