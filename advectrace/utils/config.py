# advectrace/utils/config.py
"""
Global package configuration.

Provides centralized settings for numeric precision, threading defaults,
progress reporting and JAX usage across all modules. Per-engine settings
live in `advectrace.tracking.tracer.TracerOptions`; values here are the
package-wide defaults those options fall back to.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Any, Optional
import os
import warnings
import psutil

from .jax_utils import JAX_AVAILABLE, enable_x64


@dataclass
class PackageConfig:
    """
    Global configuration for advectrace.

    Controls numeric precision, default worker counts and reporting.
    """
    # Data type settings
    dtype: str = "float64"              # 'float32' | 'float64'

    # Threading defaults
    num_threads: Optional[int] = None   # None -> os.cpu_count()
    serial_threshold: int = 100         # batches smaller than this run serially

    # JAX usage
    use_jax_jit: bool = True            # JIT vectorised kernels when JAX is present

    # Progress and monitoring
    show_progress: bool = False
    verbose: bool = False

    # Environment settings
    _system_memory_gb: float = field(init=False)
    _cpu_count: int = field(init=False)

    def __post_init__(self):
        self._detect_system_resources()
        self._validate_config()
        self._apply_jax_config()

    def _detect_system_resources(self):
        """Detect available system resources."""
        try:
            self._system_memory_gb = psutil.virtual_memory().total / (1024**3)
        except Exception:
            self._system_memory_gb = 8.0  # Conservative default
        self._cpu_count = os.cpu_count() or 1

    def _validate_config(self):
        """Validate configuration settings."""
        if self.dtype not in ["float32", "float64"]:
            raise ValueError(f"dtype must be 'float32' or 'float64', got '{self.dtype}'")

        if self.num_threads is not None and self.num_threads < 1:
            warnings.warn(f"num_threads={self.num_threads} is not positive, using 1")
            self.num_threads = 1

        if self.serial_threshold < 0:
            warnings.warn(f"serial_threshold={self.serial_threshold} is negative, using 0")
            self.serial_threshold = 0

    def _apply_jax_config(self):
        """Apply JAX-specific configuration."""
        if not JAX_AVAILABLE:
            return
        enable_x64(self.dtype == "float64")

    # ---------- Configuration methods ----------

    def set_dtype(self, dtype: str) -> None:
        """Set global data type."""
        if dtype not in ["float32", "float64"]:
            raise ValueError("dtype must be 'float32' or 'float64'")
        self.dtype = dtype
        self._apply_jax_config()

    def resolved_num_threads(self) -> int:
        """Worker count to use when none is given explicitly."""
        return self.num_threads if self.num_threads is not None else self._cpu_count

    def get_system_info(self) -> Dict[str, Any]:
        """Get system resource information."""
        return {
            "system_memory_gb": self._system_memory_gb,
            "cpu_count": self._cpu_count,
            "jax_available": JAX_AVAILABLE,
            "current_config": {
                "dtype": self.dtype,
                "num_threads": self.resolved_num_threads(),
                "serial_threshold": self.serial_threshold,
                "use_jax_jit": self.use_jax_jit,
            }
        }


# Global configuration instance
_global_config = PackageConfig()


def get_config() -> PackageConfig:
    """Get global package configuration."""
    return _global_config


def configure(**kwargs) -> None:
    """
    Configure package settings.

    Parameters
    ----------
    **kwargs : dict
        Configuration parameters to update
    """
    global _global_config

    for key, value in kwargs.items():
        if hasattr(_global_config, key) and not key.startswith("_"):
            setattr(_global_config, key, value)
        else:
            warnings.warn(f"Unknown configuration parameter: {key}")

    # Re-validate and apply
    _global_config._validate_config()
    _global_config._apply_jax_config()


def reset_config() -> None:
    """Reset configuration to defaults."""
    global _global_config
    _global_config = PackageConfig()
