# advectrace/parallel/__init__.py
"""Collective communicators for distributed (domain-decomposed) runs."""

from .communicators import (
    MPI_AVAILABLE,
    Communicator,
    SerialCommunicator,
    MPICommunicator,
    ThreadCommunicatorGroup,
    ThreadCommunicator,
    get_communicator,
    rank_offsets,
)

__all__ = [
    "MPI_AVAILABLE",
    "Communicator",
    "SerialCommunicator",
    "MPICommunicator",
    "ThreadCommunicatorGroup",
    "ThreadCommunicator",
    "get_communicator",
    "rank_offsets",
]
