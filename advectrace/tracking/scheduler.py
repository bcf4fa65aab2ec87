# advectrace/tracking/scheduler.py
"""
Batch scheduling of per-particle work.

Small batches (or force_serial) run on the calling thread; larger ones go
to a fixed ThreadPoolExecutor owned by the SchedulerContext. Results are
always returned in input order, so both modes produce identical output.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, TypeVar

from ..utils.config import get_config
from ..utils.logging import create_progress_callback

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class SchedulerContext:
    """
    Explicit threading state of one tracer.

    Attributes
    ----------
    num_threads : int, optional
        Worker count (package default when None)
    serial_threshold : int
        Batches with fewer items run serially
    force_serial : bool
        Never use the pool
    """
    num_threads: Optional[int] = None
    serial_threshold: int = 100
    force_serial: bool = False
    _executor: Optional[ThreadPoolExecutor] = field(default=None, init=False, repr=False)

    def __post_init__(self):
        if self.num_threads is None:
            self.num_threads = get_config().resolved_num_threads()
        self.num_threads = max(1, int(self.num_threads))
        self.serial_threshold = max(0, int(self.serial_threshold))

    def use_pool(self, batch_size: int) -> bool:
        return not self.force_serial and self.num_threads > 1 and batch_size >= self.serial_threshold

    @property
    def executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=self.num_threads, thread_name_prefix="advectrace")
        return self._executor

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def __enter__(self) -> "SchedulerContext":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class BatchScheduler:
    """
    Runs a task once per item, serially or on the context's pool.

    Parameters
    ----------
    context : SchedulerContext
    progress_style : str
        "auto" | "tqdm" | "simple" | "none"
    progress_desc : str
        Label of the progress bar
    """

    def __init__(self, context: Optional[SchedulerContext] = None, progress_style: str = "none",
                 progress_desc: str = "Advecting"):
        self.context = context or SchedulerContext()
        self.progress_style = progress_style
        self.progress_desc = progress_desc
        self.last_mode = "serial"

    def _make_progress(self, total: int):
        """
        Create a progress reporter.

        Returns a tuple (update_fn(n=1), close_fn()).
        """
        style = (self.progress_style or "none").lower()
        if style == "none" or total == 0:
            return (lambda n=1: None), (lambda: None)

        if style in ("auto", "tqdm"):
            from tqdm import tqdm
            bar = tqdm(total=total, desc=self.progress_desc, leave=False)
            return (lambda n=1: bar.update(n)), bar.close

        callback = create_progress_callback(self.progress_desc, update_every=max(1, total // 20), show_rate=False)
        done = {"n": 0}

        def update_simple(n=1):
            done["n"] += n
            callback(done["n"], total)

        return update_simple, (lambda: None)

    def run(self, items: Sequence[T], task: Callable[[T], R]) -> List[R]:
        """Apply `task` to every item exactly once; results in input order."""
        items = list(items)
        update, close = self._make_progress(len(items))
        try:
            if not self.context.use_pool(len(items)):
                self.last_mode = "serial"
                results = []
                for item in items:
                    results.append(task(item))
                    update(1)
                return results

            self.last_mode = "threaded"
            futures = [self.context.executor.submit(task, item) for item in items]
            results = []
            for fut in futures:
                results.append(fut.result())
                update(1)
            return results
        finally:
            close()
