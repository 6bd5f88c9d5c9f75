"""
Point-to-point communicators used by the distributed engine.

Both classes expose the same small surface, named after the mpi4py calls
they wrap:

    rank, size
    Isend(buf, dest, tag) -> request with wait()
    Waitall(requests)
    Recv(buf, source, tag, timeout=None)      fills buf in place
    Probe(source) -> ProbeStatus(tag, count)  does not consume the message
    bcast_int(value, root) -> int
    Abort(code)

``MPICommunicator`` runs over a real MPI job. ``LocalCommunicator`` connects
a group of ranks living as threads in one process.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import numpy as np

from .codec import WIRE_DTYPE
from .errors import CommunicatorAborted, WorkerTimeoutError

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.001


@dataclass(frozen=True)
class ProbeStatus:
    tag: int
    count: int


class _Request:
    def __init__(self, request=None, buf=None):
        self.request = request
        self.buf = buf  # keep the send buffer alive until completion

    def wait(self) -> None:
        if self.request is not None:
            self.request.Wait()
            self.request = None
        self.buf = None


class MPICommunicator:
    def __init__(self, comm=None):
        from mpi4py import MPI

        self.MPI = MPI
        self.comm = comm if comm is not None else MPI.COMM_WORLD
        self.rank = self.comm.Get_rank()
        self.size = self.comm.Get_size()

    def Isend(self, buf: np.ndarray, dest: int, tag: int) -> _Request:
        buf = np.ascontiguousarray(buf, dtype=WIRE_DTYPE)
        return _Request(self.comm.Isend(buf, dest=dest, tag=tag), buf)

    def Waitall(self, requests: List[_Request]) -> None:
        for req in requests:
            req.wait()

    def Recv(self, buf: np.ndarray, source: int, tag: int, timeout: Optional[float] = None) -> None:
        if timeout is None:
            self.comm.Recv(buf, source=source, tag=tag)
            return
        req = self.comm.Irecv(buf, source=source, tag=tag)
        deadline = time.monotonic() + timeout
        while not req.Test():
            if time.monotonic() >= deadline:
                req.Cancel()
                req.Wait()
                raise WorkerTimeoutError(
                    f"No message with tag {tag} from rank {source} within {timeout:.1f}s")
            time.sleep(POLL_INTERVAL)

    def Probe(self, source: int) -> ProbeStatus:
        status = self.MPI.Status()
        self.comm.Probe(source=source, tag=self.MPI.ANY_TAG, status=status)
        return ProbeStatus(status.Get_tag(), status.Get_count(self.MPI.INT64_T))

    def bcast_int(self, value: Optional[int], root: int = 0) -> int:
        buf = np.array([value if value is not None else 0], dtype=WIRE_DTYPE)
        self.comm.Bcast(buf, root=root)
        return int(buf[0])

    def Abort(self, code: int = 1) -> None:
        self.comm.Abort(code)


class _Fabric:
    """Mailboxes shared by every rank of one local group."""

    def __init__(self, size: int):
        self.size = size
        self.cond = threading.Condition()
        self.mailboxes: List[deque] = [deque() for _ in range(size)]
        self.broadcasts: List[deque] = [deque() for _ in range(size)]
        self.aborted: Optional[int] = None


class LocalCommunicator:
    def __init__(self, fabric: _Fabric, rank: int):
        self._fabric = fabric
        self.rank = rank
        self.size = fabric.size

    @classmethod
    def create_group(cls, size: int) -> List["LocalCommunicator"]:
        if size < 1:
            raise ValueError(f"Group size must be >= 1, got {size}")
        fabric = _Fabric(size)
        return [cls(fabric, rank) for rank in range(size)]

    def _wait_for(self, predicate: Callable[[], Any], deadline: Optional[float], what: str):
        fabric = self._fabric
        while True:
            if fabric.aborted is not None:
                raise CommunicatorAborted(f"Rank {self.rank}: group aborted with code {fabric.aborted}")
            found = predicate()
            if found is not None:
                return found
            if deadline is None:
                fabric.cond.wait()
            else:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise WorkerTimeoutError(f"Rank {self.rank}: timed out waiting for {what}")
                fabric.cond.wait(remaining)

    def Isend(self, buf: np.ndarray, dest: int, tag: int) -> _Request:
        data = np.array(buf, dtype=WIRE_DTYPE, copy=True).reshape(-1)
        with self._fabric.cond:
            self._fabric.mailboxes[dest].append((self.rank, tag, data))
            self._fabric.cond.notify_all()
        return _Request()

    def Waitall(self, requests: List[_Request]) -> None:
        for req in requests:
            req.wait()

    def Recv(self, buf: np.ndarray, source: int, tag: int, timeout: Optional[float] = None) -> None:
        box = self._fabric.mailboxes[self.rank]

        def match():
            for i, (src, t, data) in enumerate(box):
                if src == source and t == tag:
                    del box[i]
                    return data
            return None

        deadline = None if timeout is None else time.monotonic() + timeout
        with self._fabric.cond:
            data = self._wait_for(match, deadline, f"tag {tag} from rank {source}")
        if data.size != buf.size:
            raise ValueError(f"Message with tag {tag} holds {data.size} elements, buffer expects {buf.size}")
        buf.reshape(-1)[:] = data

    def Probe(self, source: int) -> ProbeStatus:
        box = self._fabric.mailboxes[self.rank]

        def first():
            for src, t, data in box:
                if src == source:
                    return ProbeStatus(t, data.size)
            return None

        with self._fabric.cond:
            return self._wait_for(first, None, f"any message from rank {source}")

    def bcast_int(self, value: Optional[int], root: int = 0) -> int:
        fabric = self._fabric
        with fabric.cond:
            if self.rank == root:
                for r in range(fabric.size):
                    if r != root:
                        fabric.broadcasts[r].append(int(value))
                fabric.cond.notify_all()
                return int(value)
            box = fabric.broadcasts[self.rank]
            return self._wait_for(lambda: box.popleft() if box else None, None, "broadcast")

    def Abort(self, code: int = 1) -> None:
        with self._fabric.cond:
            if self._fabric.aborted is None:
                self._fabric.aborted = code
            self._fabric.cond.notify_all()


def run_local_group(size: int, target: Callable[[LocalCommunicator], Any]) -> Dict[int, Any]:
    """Run ``target(comm)`` on every rank of a fresh local group, one thread each.

    Returns rank -> return value. The first exception raised by any rank
    aborts the group and is re-raised here.
    """
    comms = LocalCommunicator.create_group(size)
    results: Dict[int, Any] = {}
    errors: Dict[int, BaseException] = {}

    def runner(comm: LocalCommunicator):
        try:
            results[comm.rank] = target(comm)
        except CommunicatorAborted as e:
            errors.setdefault(comm.rank, e)
        except Exception as e:
            logger.error("Rank %d failed: %s", comm.rank, e)
            errors[comm.rank] = e
            comm.Abort(1)

    threads = [threading.Thread(target=runner, args=(c,), name=f"rank-{c.rank}") for c in comms]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    primary = [e for e in errors.values() if not isinstance(e, CommunicatorAborted)]
    if primary:
        raise primary[0]
    if errors:
        raise next(iter(errors.values()))
    return results
