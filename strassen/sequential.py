import logging

import numpy as np

from .config import DEFAULT_CONFIG, StrassenConfig
from .matrix import MatrixOps, check_operands, combine_products, strassen_operands
from .memory import MemoryBudget

logger = logging.getLogger(__name__)


class SequentialEngine:
    """Single-threaded recursive Strassen with a memory-gated direct fallback."""

    def __init__(self, ops: MatrixOps | None = None, budget: MemoryBudget | None = None,
                 config: StrassenConfig = DEFAULT_CONFIG):
        self.ops = ops if ops is not None else MatrixOps()
        self.budget = budget if budget is not None else MemoryBudget(config=config)
        self.leaf_size = config.leaf_size

    def multiply(self, A, B) -> np.ndarray:
        A, B = check_operands(A, B)
        return self._multiply(A, B)

    def _multiply(self, A: np.ndarray, B: np.ndarray) -> np.ndarray:
        n = A.shape[0]

        if n == 1:
            return A * B
        if n % 2 != 0:
            logger.debug("Odd size %dx%d, using direct multiply", n, n)
            return self.ops.multiply(A, B)
        if n <= self.leaf_size:
            return self.ops.multiply(A, B)
        if not self.budget.sequential_may_proceed(n):
            logger.warning("Insufficient memory for Strassen recursion at size %dx%d. "
                           "Falling back to conventional multiplication.", n, n)
            return self.ops.multiply(A, B)

        pairs = strassen_operands(self.ops, self.ops.quadrants(A), self.ops.quadrants(B))
        products = [self._multiply(left, right) for left, right in pairs]
        return combine_products(self.ops, products)


def sequential_multiply(A, B, config: StrassenConfig = DEFAULT_CONFIG) -> np.ndarray:
    return SequentialEngine(config=config).multiply(A, B)
