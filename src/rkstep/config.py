"""Module-wide floating-point precision configuration.

Provides ``set_dtype`` and ``get_dtype`` to control the float dtype of the
state vectors handled by rkstep.  The default is ``jnp.float32``, which is
what JAX produces out of the box.  Switching to ``jnp.float64`` automatically
enables JAX's 64-bit mode (``jax_enable_x64``).

Call ``set_dtype`` **before** constructing integrators.  States already held
by an integrator keep the dtype they were created with.

The independent variable and step sizes are always Python floats (double
precision) regardless of this setting.
"""

from __future__ import annotations

import jax
import jax.numpy as jnp

_VALID_DTYPES = (jnp.float16, jnp.bfloat16, jnp.float32, jnp.float64)

_dtype = jnp.float32


def set_dtype(dtype) -> None:
    """Set the module-wide float dtype for rkstep.

    If *dtype* is ``jnp.float64``, JAX's 64-bit mode is automatically
    enabled via ``jax.config.update("jax_enable_x64", True)``.

    Args:
        dtype: One of ``jnp.float16``, ``jnp.bfloat16``, ``jnp.float32``,
            or ``jnp.float64``.

    Raises:
        ValueError: If *dtype* is not a supported float type.
    """
    global _dtype
    if dtype not in _VALID_DTYPES:
        raise ValueError(
            f"Unsupported dtype {dtype}. Must be one of: "
            f"jnp.float16, jnp.bfloat16, jnp.float32, jnp.float64"
        )
    if dtype == jnp.float64:
        jax.config.update("jax_enable_x64", True)
    _dtype = dtype


def get_dtype():
    """Return the current module-wide float dtype.

    Returns:
        The active float dtype (default ``jnp.float32``).
    """
    return _dtype


def get_consistency_tolerance() -> float:
    """Return the tolerance used when checking Butcher tableau consistency.

    Tableaus are stored as Python floats, so the check itself runs in double
    precision; the tolerance is loosened for reduced-precision dtypes so that
    a tableau accepted here is also consistent at the working precision.

    - ``float64``:  1e-12
    - ``float32``:  1e-6
    - ``float16`` / ``bfloat16``: 1e-3

    Returns:
        float: Absolute tolerance on row sums and weight sums.
    """
    if _dtype == jnp.float64:
        return 1e-12
    if _dtype == jnp.float32:
        return 1e-6
    return 1e-3
