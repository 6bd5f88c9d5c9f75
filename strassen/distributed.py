"""
One-level distributed Strassen.

Rank 0 splits A and B into quadrants, ships the operands of the seven
products to worker ranks and recombines the returned products. Workers run
each assigned product through the sequential engine.

Usage: mpiexec -np P python -m strassen.distributed N
"""

from __future__ import annotations

import logging
import sys
import time
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from .codec import WIRE_DTYPE, empty_buffer, flatten, unflatten, zero_buffer
from .comm import MPICommunicator, run_local_group
from .config import DEFAULT_CONFIG, StrassenConfig
from .errors import InsufficientMemoryError, OddDimensionError, ProtocolError, StrassenError
from .matrix import MatrixOps, check_operands, combine_products, create
from .memory import MemoryBudget
from .protocol import (
    PARTS_PER_TASK, TASK_COUNT_TAG, TASK_IDS, assign_tasks, compute_task, is_task_id_tag,
    local_index_from_tag, part_tag, result_tag, task_id_tag, task_parts, tasks_for_worker,
)
from .sequential import SequentialEngine

logger = logging.getLogger(__name__)

ROOT = 0

OperandFactory = Callable[[int], Tuple[np.ndarray, np.ndarray]]


class DistributedEngine:
    def __init__(self, comm, config: StrassenConfig = DEFAULT_CONFIG,
                 sequential: Optional[SequentialEngine] = None,
                 ops: Optional[MatrixOps] = None,
                 budget: Optional[MemoryBudget] = None):
        self.comm = comm
        self.config = config
        self.ops = ops if ops is not None else MatrixOps()
        self.budget = budget if budget is not None else MemoryBudget(config=config)
        self.sequential = sequential if sequential is not None else SequentialEngine(
            ops=self.ops, budget=self.budget, config=config)
        self.elapsed: Optional[float] = None

    @property
    def is_coordinator(self) -> bool:
        return self.comm.rank == ROOT

    def run(self, n: Optional[int] = None,
            make_operands: Optional[OperandFactory] = None) -> Optional[np.ndarray]:
        """Take part in one distributed multiply.

        Rank 0 passes the side length and a factory producing (A, B) for it;
        the factory is only called once the size is known to be splittable.
        Every rank must call this. Returns the product on rank 0, None elsewhere.
        """
        if self.is_coordinator:
            self.budget.report("Root-Initial")
        n = self.comm.bcast_int(n if self.is_coordinator else None, root=ROOT)

        if n < 2 or n % 2 != 0:
            if self.is_coordinator:
                if n < 2:
                    raise ValueError(f"Matrix size ({n}) must be at least 2")
                raise OddDimensionError(f"Matrix size {n} is not divisible by 2; cannot split for Strassen")
            logger.debug("Rank %d: size %d cannot be split, no work", self.comm.rank, n)
            return None

        self.budget.report(f"Process-{self.comm.rank}-PreExecution")

        if not self.is_coordinator:
            self.serve(n)
            return None

        if make_operands is None:
            raise ValueError("The coordinator needs operands")
        A, B = check_operands(*make_operands(n))
        if A.shape[0] != n:
            raise ValueError(f"Operands are {A.shape[0]}x{A.shape[0]}, announced size is {n}")
        return self.coordinate(A, B)

    def multiply(self, A=None, B=None) -> Optional[np.ndarray]:
        if not self.is_coordinator:
            return self.run()
        A, B = check_operands(A, B)
        return self.run(A.shape[0], lambda n: (A, B))

    # ---- coordinator ----

    def coordinate(self, A: np.ndarray, B: np.ndarray) -> np.ndarray:
        n = A.shape[0]
        half = n // 2
        workers = self.comm.size - 1
        logger.info("Using distributed computation with %d workers", workers)

        if not self.budget.process_may_proceed(n):
            logger.warning("Root process may have insufficient memory for %dx%d matrices; "
                           "consider smaller matrices or more processes", n, n)

        start = time.time()
        A_quads = self.ops.quadrants(A)
        B_quads = self.ops.quadrants(B)

        assignment = assign_tasks(workers)
        self.distribute_tasks(assignment, A_quads, B_quads, half)
        M = self.collect_results(assignment, half)

        C = combine_products(self.ops, M)
        self.elapsed = time.time() - start
        return C

    def distribute_tasks(self, assignment: Dict[int, int], A_quads, B_quads, half: int) -> None:
        workers = self.comm.size - 1
        requests = []

        for worker in range(1, workers + 1):
            count = len(tasks_for_worker(assignment, worker))
            requests.append(self.comm.Isend(np.array([count], dtype=WIRE_DTYPE), worker, TASK_COUNT_TAG))

        for worker in range(1, workers + 1):
            for local, task in enumerate(tasks_for_worker(assignment, worker)):
                logger.debug("Dispatching task %d to worker %d", task, worker)
                requests.append(self.comm.Isend(
                    np.array([task], dtype=WIRE_DTYPE), worker, task_id_tag(worker, local)))
                for part, quad in enumerate(task_parts(task, A_quads, B_quads)):
                    flat = flatten(quad) if quad is not None else zero_buffer(half)
                    requests.append(self.comm.Isend(flat, worker, part_tag(worker, local, part)))

        self.comm.Waitall(requests)

    def collect_results(self, assignment: Dict[int, int], half: int) -> List[np.ndarray]:
        M: List[Optional[np.ndarray]] = [None] * len(TASK_IDS)
        for task in TASK_IDS:
            buf = empty_buffer(half)
            self.comm.Recv(buf, assignment[task], result_tag(task), timeout=self.config.result_timeout)
            M[task - 1] = unflatten(buf, half)
            logger.debug("Collected result for task %d from worker %d", task, assignment[task])
        return M

    # ---- worker ----

    def serve(self, n: int) -> None:
        rank = self.comm.rank
        half = n // 2

        if not self.budget.process_may_proceed(half):
            if self.config.strict_worker_memory:
                raise InsufficientMemoryError(
                    f"Worker {rank}: not enough memory for {half}x{half} submatrices")
            logger.warning("Worker %d: Memory warning for submatrix size %dx%d", rank, half, half)

        count_buf = np.empty(1, dtype=WIRE_DTYPE)
        self.comm.Recv(count_buf, ROOT, TASK_COUNT_TAG)
        task_count = int(count_buf[0])

        received = set()
        pending = []
        unexpected = 0
        while len(received) < task_count:
            status = self.comm.Probe(ROOT)

            if not is_task_id_tag(status.tag):
                unexpected += 1
                logger.error("Worker %d: Unexpected tag received: %d", rank, status.tag)
                self.comm.Recv(np.empty(status.count, dtype=WIRE_DTYPE), ROOT, status.tag)
                if unexpected > self.config.max_unexpected_messages:
                    raise ProtocolError(
                        f"Worker {rank}: {unexpected} unexpected messages, coordinator out of sync")
                continue

            task_buf = np.empty(1, dtype=WIRE_DTYPE)
            self.comm.Recv(task_buf, ROOT, status.tag)
            task = int(task_buf[0])
            local = local_index_from_tag(status.tag, rank)

            parts = []
            for part in range(PARTS_PER_TASK):
                buf = empty_buffer(half)
                self.comm.Recv(buf, ROOT, part_tag(rank, local, part))
                parts.append(unflatten(buf, half))

            result = compute_task(task, parts, self.sequential.multiply, self.ops)
            pending.append(self.comm.Isend(flatten(result), ROOT, result_tag(task)))
            received.add(task)
            logger.debug("Worker %d: Completed task %d", rank, task)

        self.comm.Waitall(pending)


def distributed_multiply(A, B, workers: int = 7,
                         config: StrassenConfig = DEFAULT_CONFIG,
                         budget: Optional[MemoryBudget] = None) -> np.ndarray:
    """Multiply on an in-process group of ``workers + 1`` ranks."""
    A, B = check_operands(A, B)

    def participate(comm):
        engine = DistributedEngine(comm, config=config, budget=budget)
        return engine.multiply(A, B)

    return run_local_group(workers + 1, participate)[ROOT]


def _configure_logging():
    lg = logging.getLogger("strassen")
    if not lg.handlers:
        h = logging.StreamHandler()
        h.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(message)s"))
        lg.addHandler(h)
        lg.setLevel(logging.INFO)
    return lg


def parse_size(text: str) -> int:
    try:
        return int(text)
    except ValueError:
        raise ValueError(f"Matrix size must be an integer, got {text!r}") from None


def main(argv=None, comm=None):
    argv = sys.argv[1:] if argv is None else argv
    comm = comm if comm is not None else MPICommunicator()
    rank = comm.rank
    size = comm.size

    if len(argv) != 1:
        if rank == 0:
            print("Usage: mpiexec -np P python -m strassen.distributed N")
        return 2

    _configure_logging()

    engine = DistributedEngine(comm, config=StrassenConfig.from_env())
    rng = np.random.default_rng(42)

    try:
        N = None
        if rank == 0:
            # workers are already waiting on the size broadcast
            N = parse_size(argv[0])
            print("Strassen's Algorithm Distributed Implementation (per-process memory adaptive)")
            print(f"Processors: {size}, Matrix Size: {N}×{N}")
        engine.run(N, lambda n: (create(n, rng), create(n, rng)))
    except OddDimensionError:
        print("Matrix size is not divisible by 2. Cannot do strassen algorithm!")
        return 1
    except (ValueError, StrassenError) as e:
        print(f"Fatal: {e}", file=sys.stderr)
        comm.Abort(1)
        return 1

    if rank == 0:
        print(f"Execution time: {engine.elapsed:.6f} seconds")
    return 0


if __name__ == "__main__":
    sys.exit(main())
