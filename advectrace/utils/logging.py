# advectrace/utils/logging.py
"""
Logging utilities: timers, memory monitoring, and progress reporting.

Lightweight monitoring for the advection engine. Messages go to stdout via
print and are gated by the caller's `verbose` flag; recoverable
misconfiguration is reported through `warnings`.
"""

from __future__ import annotations
from typing import Optional, Dict, Any, Protocol
import time
import gc
import sys
from contextlib import contextmanager

try:
    import psutil
    PSUTIL_AVAILABLE = True
except Exception:
    PSUTIL_AVAILABLE = False


class ProgressCallback(Protocol):
    """Protocol for progress callbacks used during long operations."""
    def __call__(self, step: int, total: int, **kwargs: Any) -> None:
        """Called periodically during operations to report progress."""
        ...


class Timer:
    """
    Simple timer for performance monitoring.

    Can be used as a context manager or manually started/stopped.
    Tracks wall time and, optionally, resident memory.
    """

    def __init__(self, name: str = "Timer", track_memory: bool = False, verbose: bool = True):
        self.name = name
        self.track_memory = track_memory
        self.verbose = verbose
        self.start_time: Optional[float] = None
        self.end_time: Optional[float] = None
        self.start_memory: Optional[Dict[str, Any]] = None
        self.end_memory: Optional[Dict[str, Any]] = None

    def start(self) -> None:
        """Start the timer."""
        self.start_time = time.perf_counter()
        self.end_time = None
        if self.track_memory:
            self.start_memory = memory_info()

    def stop(self) -> float:
        """Stop the timer and return elapsed time in seconds."""
        if self.start_time is None:
            raise RuntimeError("Timer not started")
        self.end_time = time.perf_counter()
        if self.track_memory:
            self.end_memory = memory_info()
        return self.elapsed

    @property
    def elapsed(self) -> float:
        """Get elapsed time in seconds."""
        if self.start_time is None:
            return 0.0
        end = self.end_time if self.end_time is not None else time.perf_counter()
        return end - self.start_time

    @property
    def memory_delta_mb(self) -> Optional[float]:
        """Resident memory delta in MB (if tracking enabled)."""
        if not self.track_memory or self.start_memory is None or self.end_memory is None:
            return None
        return self.end_memory.get("rss_mb", 0.0) - self.start_memory.get("rss_mb", 0.0)

    def __enter__(self) -> 'Timer':
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()
        if self.verbose:
            self.report()

    def report(self) -> str:
        """Print and return a timing report."""
        msg = f"{self.name}: {self.elapsed:.6f}s"
        delta = self.memory_delta_mb
        if delta is not None:
            msg += f" (memory delta {delta:+.1f} MB)"
        print(msg)
        return msg


@contextmanager
def timeit(name: str = "Operation", track_memory: bool = False, verbose: bool = True):
    """
    Context manager for timing operations.

    Example
    -------
    >>> with timeit("advect step"):
    ...     pass
    """
    timer = Timer(name, track_memory=track_memory, verbose=verbose)
    with timer:
        yield timer


def memory_info() -> Dict[str, Any]:
    """
    Get current memory usage information.

    Returns
    -------
    dict
        Memory info with keys like 'rss_mb', 'available_mb'
    """
    info: Dict[str, Any] = {}

    if PSUTIL_AVAILABLE:
        try:
            process = psutil.Process()
            mem = process.memory_info()
            info["rss_mb"] = mem.rss / 1024 / 1024
            info["vms_mb"] = mem.vms / 1024 / 1024

            vm = psutil.virtual_memory()
            info["available_mb"] = vm.available / 1024 / 1024
            info["percent_used"] = vm.percent
        except Exception:
            pass

    if not info:
        # Very rough: object count only
        gc.collect()
        info["objects_count"] = len(gc.get_objects())
        info["rss_mb"] = 0.0

    return info


def create_progress_callback(
    name: str = "Advecting",
    update_every: int = 100,
    show_memory: bool = False,
    show_rate: bool = True,
) -> ProgressCallback:
    """
    Create a single-line progress callback.

    Parameters
    ----------
    name : str
        Name to show in progress messages
    update_every : int
        Update frequency (every N items)
    show_memory : bool
        Whether to show resident memory
    show_rate : bool
        Whether to show processing rate

    Returns
    -------
    ProgressCallback
        Function that can be called with (step, total, **kwargs)
    """
    start_time = time.perf_counter()

    def callback(step: int, total: int, **kwargs: Any) -> None:
        if step % max(update_every, 1) != 0 and step != total:
            return

        elapsed = time.perf_counter() - start_time
        percent = 100.0 * step / max(1, total)

        msg = f"{name}: {step}/{total} ({percent:.1f}%)"

        if show_rate and elapsed > 0:
            msg += f", {step / elapsed:.1f} particles/s"

        if show_memory:
            current_memory = memory_info()
            if "rss_mb" in current_memory:
                msg += f", {current_memory['rss_mb']:.0f}MB"

        if kwargs:
            extra = ", ".join(f"{k}={v}" for k, v in kwargs.items())
            msg += f", {extra}"

        sys.stdout.write(f"\r{msg}")
        sys.stdout.flush()

        if step == total:
            sys.stdout.write("\n")
            sys.stdout.flush()

    return callback
