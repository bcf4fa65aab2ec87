# advectrace/utils/jax_utils.py
from __future__ import annotations
import warnings
from typing import Any, Callable, Optional, Sequence

try:
    import jax
    import jax.numpy as jnp
    from jax import jit as _jit
    JAX_AVAILABLE = True
except Exception:
    JAX_AVAILABLE = False
    jax = None  # type: ignore
    jnp = None  # type: ignore

import numpy as np


def get_jax_version() -> Optional[str]:
    """Return the JAX version string if available, else None."""
    return getattr(jax, "__version__", None) if JAX_AVAILABLE else None


def default_device_kind() -> str:
    """'gpu' if JAX sees a GPU, else 'cpu'."""
    if not JAX_AVAILABLE:
        return "cpu"
    try:
        return "gpu" if len(jax.devices("gpu")) > 0 else "cpu"
    except Exception:
        return "cpu"


def enable_x64(enable: bool = True) -> bool:
    """
    Toggle 64-bit floats in JAX.

    Called with True when the configured dtype is float64. Returns True if
    the flag was applied.
    """
    if not JAX_AVAILABLE:
        return False
    try:
        jax.config.update("jax_enable_x64", bool(enable))
        return True
    except Exception as e:
        warnings.warn(f"Could not set jax_enable_x64={enable}: {e}", RuntimeWarning)
        return False


def to_numpy(x: Any, dtype: Any = None) -> np.ndarray:
    """Convert JAX/NumPy arrays to NumPy."""
    return np.asarray(x, dtype=dtype)


def maybe_jit(fn: Callable, enable: bool = True, static_argnums: Optional[Sequence[int]] = None):
    """
    JIT-wrap `fn` with JAX when available and enabled; otherwise return `fn` unchanged.

    `fn` must be written against an array namespace that works for both
    backends (see `array_namespace`).
    """
    if JAX_AVAILABLE and enable:
        return _jit(fn, static_argnums=static_argnums)
    return fn


def array_namespace():
    """jax.numpy when JAX is importable, numpy otherwise."""
    return jnp if JAX_AVAILABLE else np
