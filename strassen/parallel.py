"""
Fork-join Strassen over a bounded thread pool.

Each task forks six of its seven sub-products to the pool, computes the
seventh on the current thread, then joins the six. A join on a subtask the
pool has not started yet cancels it and runs it inline, so nested joins never
wait on work that is queued behind the joining thread.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional

import numpy as np

from .config import DEFAULT_CONFIG, StrassenConfig
from .matrix import MatrixOps, check_operands, combine_products, strassen_operands
from .memory import MemoryBudget
from .sequential import SequentialEngine

logger = logging.getLogger(__name__)


class ParallelEngine:
    def __init__(self, executor: Optional[ThreadPoolExecutor] = None,
                 sequential: Optional[SequentialEngine] = None,
                 ops: Optional[MatrixOps] = None,
                 budget: Optional[MemoryBudget] = None,
                 config: StrassenConfig = DEFAULT_CONFIG):
        self.ops = ops if ops is not None else MatrixOps()
        self.budget = budget if budget is not None else MemoryBudget(config=config)
        self.sequential = sequential if sequential is not None else SequentialEngine(
            ops=self.ops, budget=self.budget, config=config)
        self._owns_executor = executor is None
        self.executor = executor if executor is not None else ThreadPoolExecutor(
            max_workers=config.pool_size, thread_name_prefix="strassen")
        self.leaf_size = config.leaf_size

    def close(self) -> None:
        if self._owns_executor:
            self.executor.shutdown(wait=True)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def multiply(self, A, B) -> np.ndarray:
        A, B = check_operands(A, B)
        n = A.shape[0]

        if not self.budget.parallel_may_proceed(n):
            logger.warning("Insufficient memory for fork-join Strassen recursion at size %dx%d. "
                           "Falling back to conventional multiplication.", n, n)
            return self.ops.multiply(A, B)

        max_depth = self.budget.max_parallel_depth(n)
        logger.info("Adaptive max recursion depth (based on memory): %d", max_depth)
        return self._compute(A, B, 0, max_depth)

    def _compute(self, A: np.ndarray, B: np.ndarray, depth: int, max_depth: int) -> np.ndarray:
        n = A.shape[0]

        if n == 1 or n % 2 != 0 or n <= self.leaf_size:
            return self.ops.multiply(A, B)
        if not self.budget.parallel_may_proceed(n):
            logger.warning("Falling back to conventional multiply at size %dx%d due to memory.", n, n)
            return self.ops.multiply(A, B)
        if depth >= max_depth:
            return self.sequential.multiply(A, B)

        pairs = strassen_operands(self.ops, self.ops.quadrants(A), self.ops.quadrants(B))

        forked = [
            self.executor.submit(self._compute, left, right, depth + 1, max_depth)
            for left, right in pairs[:6]
        ]
        m7 = self._compute(pairs[6][0], pairs[6][1], depth + 1, max_depth)

        products = [None] * 7
        products[6] = m7
        for i in reversed(range(6)):
            products[i] = self._join(forked[i], pairs[i], depth + 1, max_depth)

        return combine_products(self.ops, products)

    def _join(self, future: Future, pair, depth: int, max_depth: int) -> np.ndarray:
        if future.cancel():
            return self._compute(pair[0], pair[1], depth, max_depth)
        return future.result()


def parallel_multiply(A, B, config: StrassenConfig = DEFAULT_CONFIG) -> np.ndarray:
    with ParallelEngine(config=config) as engine:
        return engine.multiply(A, B)
