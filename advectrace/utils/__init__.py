# advectrace/utils/__init__.py
"""
Utilities for advectrace.

Contains:
- jax_utils: JAX guards and jit helpers
- config: package-wide defaults
- spatial: bounding boxes and vectorised box tests
- logging: timers, memory monitoring, progress tracking
- diagnostics: optional dependency report
"""

from .jax_utils import (
    JAX_AVAILABLE,
    get_jax_version,
    default_device_kind,
    enable_x64,
    to_numpy,
    maybe_jit,
    array_namespace,
)

from .spatial import (
    AABB,
    bounds_table,
    boxes_containing_point,
    points_in_boxes,
    union_box,
)

from .logging import (
    Timer,
    timeit,
    memory_info,
    create_progress_callback,
    ProgressCallback,
)

from .config import (
    PackageConfig,
    configure,
    get_config,
    reset_config,
)

from .diagnostics import check_system_requirements

__all__ = [
    # jax_utils
    "JAX_AVAILABLE",
    "get_jax_version",
    "default_device_kind",
    "enable_x64",
    "to_numpy",
    "maybe_jit",
    "array_namespace",
    # spatial
    "AABB",
    "bounds_table",
    "boxes_containing_point",
    "points_in_boxes",
    "union_box",
    # logging
    "Timer",
    "timeit",
    "memory_info",
    "create_progress_callback",
    "ProgressCallback",
    # config
    "PackageConfig",
    "configure",
    "get_config",
    "reset_config",
    # diagnostics
    "check_system_requirements",
]
