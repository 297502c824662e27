# transport.py
"""
Collective communication between worker ranks.

The engine needs three collectives: a broadcast of the initial field from
the root rank, an all-gather of every rank's slice in rank order, and a
logical-OR reduction of the quit flag. Three transports implement them:

* LoopbackTransport: a single rank, every collective is the identity.
* ThreadTransport: P ranks emulated as threads of one process.
* MpiTransport: one rank per MPI process, through mpi4py.
"""
from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import List, Optional

import numpy as np

from constants import ROOT_RANK
from utils import ConfigurationError, TransportError

TRANSPORT_KINDS = ("loopback", "threads", "mpi")


class Transport(ABC):
    @property
    @abstractmethod
    def rank(self) -> int:
        raise NotImplementedError

    @property
    @abstractmethod
    def world_size(self) -> int:
        raise NotImplementedError

    @property
    def is_root(self) -> bool:
        return self.rank == ROOT_RANK

    @abstractmethod
    def broadcast(self, buffer: np.ndarray, root: int = ROOT_RANK) -> None:
        """Overwrites `buffer` on every rank with the root's contents."""
        raise NotImplementedError

    @abstractmethod
    def all_gather(self, send: np.ndarray, recv: np.ndarray) -> None:
        """Concatenates every rank's `send` into `recv` in ascending rank order."""
        raise NotImplementedError

    @abstractmethod
    def any_flag(self, flag: bool) -> bool:
        """True on every rank if `flag` is True on any rank."""
        raise NotImplementedError

    def finalize(self) -> None:
        pass

    def abort(self, code: int = 1) -> None:
        """Tears down every rank after a fatal error on this one."""
        pass


class LoopbackTransport(Transport):
    @property
    def rank(self) -> int:
        return 0

    @property
    def world_size(self) -> int:
        return 1

    def broadcast(self, buffer: np.ndarray, root: int = ROOT_RANK) -> None:
        del buffer
        if root != 0:
            raise TransportError(f"Broadcast root {root} does not exist in a single-rank run.")

    def all_gather(self, send: np.ndarray, recv: np.ndarray) -> None:
        if send.size != recv.size:
            raise TransportError(
                f"All-gather size mismatch: sending {send.size} values into {recv.size}."
            )
        np.copyto(recv.reshape(send.shape), send)

    def any_flag(self, flag: bool) -> bool:
        return bool(flag)


class ThreadGroup:
    """
    Shared rendezvous for P in-process ranks.

    Every collective is a deposit into per-rank slots followed by a barrier;
    a second barrier keeps the slots stable until every rank has read them.
    """
    def __init__(self, world_size: int):
        if world_size <= 0:
            raise ConfigurationError(f"world_size must be positive, got {world_size}.")
        self.world_size = world_size
        self._barrier = threading.Barrier(world_size)
        self._slots: List[Optional[object]] = [None] * world_size

    def transport(self, rank: int) -> "ThreadTransport":
        if not 0 <= rank < self.world_size:
            raise ValueError(f"Rank {rank} outside group of size {self.world_size}.")
        return ThreadTransport(self, rank)

    def transports(self) -> List["ThreadTransport"]:
        return [self.transport(rank) for rank in range(self.world_size)]

    def abort(self) -> None:
        """Breaks the barrier so ranks blocked in a collective fail instead of hanging."""
        self._barrier.abort()

    def _wait(self) -> None:
        try:
            self._barrier.wait()
        except threading.BrokenBarrierError as e:
            raise TransportError("Collective aborted: another rank failed.") from e


class ThreadTransport(Transport):
    def __init__(self, group: ThreadGroup, rank: int):
        self._group = group
        self._rank = rank

    @property
    def rank(self) -> int:
        return self._rank

    @property
    def world_size(self) -> int:
        return self._group.world_size

    def broadcast(self, buffer: np.ndarray, root: int = ROOT_RANK) -> None:
        group = self._group
        if self._rank == root:
            group._slots[root] = buffer.copy()
        group._wait()
        if self._rank != root:
            source = group._slots[root]
            if source.size != buffer.size:
                group.abort()
                raise TransportError(
                    f"Broadcast size mismatch on rank {self._rank}: "
                    f"root sent {source.size} values, buffer holds {buffer.size}."
                )
            np.copyto(buffer, source.reshape(buffer.shape))
        group._wait()

    def all_gather(self, send: np.ndarray, recv: np.ndarray) -> None:
        group = self._group
        group._slots[self._rank] = send.copy()
        group._wait()
        parts = group._slots
        if sum(part.size for part in parts) != recv.size:
            group.abort()
            raise TransportError(
                f"All-gather size mismatch on rank {self._rank}: "
                f"{sum(part.size for part in parts)} values for a buffer of {recv.size}."
            )
        np.concatenate([part.reshape(-1) for part in parts], out=recv.reshape(-1))
        group._wait()

    def abort(self, code: int = 1) -> None:
        del code
        self._group.abort()

    def any_flag(self, flag: bool) -> bool:
        group = self._group
        group._slots[self._rank] = bool(flag)
        group._wait()
        result = any(group._slots)
        group._wait()
        return result


class MpiTransport(Transport):
    """
    Collectives over MPI.COMM_WORLD.

    mpi4py is imported here rather than at module level so that runs and
    tests without an MPI installation never load it. `comm` defaults to
    COMM_WORLD and `mpi` to the mpi4py.MPI module.
    """
    def __init__(self, comm=None, mpi=None):
        if mpi is None:
            try:
                from mpi4py import MPI as mpi
            except ImportError as e:
                raise ConfigurationError(
                    "transport 'mpi' requires mpi4py (pip install 'vicsek-swarm[mpi]')."
                ) from e
        self._MPI = mpi
        self._comm = comm if comm is not None else mpi.COMM_WORLD
        self._rank = self._comm.Get_rank()
        self._world_size = self._comm.Get_size()
        logging.debug(f"MPI transport ready: rank {self._rank} of {self._world_size}.")

    @property
    def rank(self) -> int:
        return self._rank

    @property
    def world_size(self) -> int:
        return self._world_size

    def broadcast(self, buffer: np.ndarray, root: int = ROOT_RANK) -> None:
        try:
            self._comm.Bcast([buffer, self._MPI.FLOAT], root=root)
        except self._MPI.Exception as e:
            raise TransportError(f"Broadcast failed on rank {self._rank}: {e}") from e

    def all_gather(self, send: np.ndarray, recv: np.ndarray) -> None:
        try:
            self._comm.Allgather([send, self._MPI.FLOAT], [recv, self._MPI.FLOAT])
        except self._MPI.Exception as e:
            raise TransportError(f"All-gather failed on rank {self._rank}: {e}") from e

    def any_flag(self, flag: bool) -> bool:
        try:
            return bool(self._comm.allreduce(bool(flag), op=self._MPI.LOR))
        except self._MPI.Exception as e:
            raise TransportError(f"Quit-flag reduction failed on rank {self._rank}: {e}") from e

    def abort(self, code: int = 1) -> None:
        logging.critical(f"Aborting MPI job from rank {self._rank} with code {code}.")
        self._comm.Abort(code)

    def finalize(self) -> None:
        if not self._MPI.Is_finalized():
            self._MPI.Finalize()
            logging.debug(f"MPI finalized on rank {self._rank}.")


def create_transport(kind: str) -> Transport:
    """
    Builds the transport named in `run_control.transport`.

    Only process-level transports can be created here; the thread transport
    needs a ThreadGroup shared by all ranks, see `main.run_threaded`.
    """
    if kind == "loopback":
        return LoopbackTransport()
    if kind == "mpi":
        return MpiTransport()
    raise ConfigurationError(
        f"Unknown transport '{kind}'. Expected one of {', '.join(TRANSPORT_KINDS)}."
    )
