# advectrace/parallel/communicators.py
"""
Collective communicators.

The engine only needs three collectives: `rank`/`size`, `allgather` of a
picklable object and `barrier`. Three implementations are provided:

- SerialCommunicator: one process, collectives are trivial.
- ThreadCommunicatorGroup: N in-process ranks running on threads, used to
  exercise the distributed code paths without an MPI launcher.
- MPICommunicator: mpi4py (optional dependency).
"""

from __future__ import annotations

import copy
import threading
from typing import Any, Callable, List, Optional, Protocol, Sequence

try:
    from mpi4py import MPI
    MPI_AVAILABLE = True
except ImportError:
    MPI = None  # type: ignore
    MPI_AVAILABLE = False


class Communicator(Protocol):
    """Minimal collective interface used by the migration manager."""

    @property
    def rank(self) -> int:
        ...

    @property
    def size(self) -> int:
        ...

    def allgather(self, obj: Any) -> List[Any]:
        """Every rank contributes `obj`; every rank receives the list ordered by rank."""
        ...

    def barrier(self) -> None:
        ...


class SerialCommunicator:
    """Single-process communicator."""

    @property
    def rank(self) -> int:
        return 0

    @property
    def size(self) -> int:
        return 1

    def allgather(self, obj: Any) -> List[Any]:
        return [obj]

    def barrier(self) -> None:
        return None


class MPICommunicator:
    """mpi4py-backed communicator (lowercase, pickle-based collectives)."""

    def __init__(self, comm: Optional[Any] = None):
        if not MPI_AVAILABLE:
            raise ImportError("MPICommunicator requires mpi4py")
        self.comm = comm if comm is not None else MPI.COMM_WORLD

    @property
    def rank(self) -> int:
        return int(self.comm.Get_rank())

    @property
    def size(self) -> int:
        return int(self.comm.Get_size())

    def allgather(self, obj: Any) -> List[Any]:
        return list(self.comm.allgather(obj))

    def barrier(self) -> None:
        self.comm.Barrier()


class ThreadCommunicatorGroup:
    """
    Shared state of `size` in-process ranks.

    Each rank gets its own `ThreadCommunicator` via `communicator(rank)`.
    Gathered objects are deep-copied so ranks never share mutable state,
    matching message-passing semantics.
    """

    def __init__(self, size: int):
        if size < 1:
            raise ValueError(f"size must be >= 1, got {size}")
        self.size = int(size)
        self._barrier = threading.Barrier(self.size)
        self._slots: List[Any] = [None] * self.size

    def communicator(self, rank: int) -> "ThreadCommunicator":
        if not 0 <= rank < self.size:
            raise ValueError(f"rank {rank} out of range for size {self.size}")
        return ThreadCommunicator(self, rank)

    def abort(self) -> None:
        """Break the barrier so ranks blocked in a collective raise BrokenBarrierError."""
        self._barrier.abort()

    def run(self, fn: Callable[["ThreadCommunicator"], Any]) -> List[Any]:
        """
        Run `fn(comm)` on one thread per rank and return the results by rank.

        The first exception raised by any rank is re-raised here after all
        threads have finished.
        """
        results: List[Any] = [None] * self.size
        errors: List[Optional[BaseException]] = [None] * self.size

        def target(rank: int) -> None:
            try:
                results[rank] = fn(self.communicator(rank))
            except BaseException as exc:
                errors[rank] = exc
                self.abort()

        threads = [threading.Thread(target=target, args=(r,), name=f"rank-{r}") for r in range(self.size)]
        for th in threads:
            th.start()
        for th in threads:
            th.join()

        for exc in errors:
            if exc is not None and not isinstance(exc, threading.BrokenBarrierError):
                raise exc
        for exc in errors:
            if exc is not None:
                raise exc
        return results


class ThreadCommunicator:
    """One rank of a ThreadCommunicatorGroup."""

    def __init__(self, group: ThreadCommunicatorGroup, rank: int):
        self._group = group
        self._rank = int(rank)

    @property
    def rank(self) -> int:
        return self._rank

    @property
    def size(self) -> int:
        return self._group.size

    def allgather(self, obj: Any) -> List[Any]:
        g = self._group
        g._slots[self._rank] = copy.deepcopy(obj)
        g._barrier.wait()
        gathered = [copy.deepcopy(s) for s in g._slots]
        # Nobody may overwrite a slot until every rank has read them all
        g._barrier.wait()
        return gathered

    def barrier(self) -> None:
        self._group._barrier.wait()


def get_communicator(kind: str = "auto") -> Communicator:
    """
    Pick a communicator.

    'auto' uses MPI when mpi4py is importable and the job has more than one
    rank, otherwise the serial communicator.
    """
    kind = kind.lower()
    if kind == "serial":
        return SerialCommunicator()
    if kind == "mpi":
        return MPICommunicator()
    if kind == "auto":
        if MPI_AVAILABLE and MPI.COMM_WORLD.Get_size() > 1:
            return MPICommunicator()
        return SerialCommunicator()
    raise ValueError(f"Unknown communicator kind '{kind}'")


def rank_offsets(counts: Sequence[int]) -> List[int]:
    """Exclusive prefix sum of per-rank counts."""
    out, acc = [], 0
    for c in counts:
        out.append(acc)
        acc += int(c)
    return out
