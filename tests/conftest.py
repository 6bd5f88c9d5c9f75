import numpy as np
import pytest

from strassen.matrix import MatrixOps
from strassen.memory import FixedMemoryProbe, MemoryBudget

GB = 1024 ** 3


class CountingOps(MatrixOps):
    """MatrixOps that records how often decomposition and direct multiply run."""

    def __init__(self):
        self.extract_calls = []
        self.multiply_calls = []

    def extract(self, parent, row, col, size):
        self.extract_calls.append(size)
        return super().extract(parent, row, col, size)

    def multiply(self, A, B):
        self.multiply_calls.append(A.shape[0])
        return super().multiply(A, B)


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def roomy_budget():
    return MemoryBudget(FixedMemoryProbe(8 * GB))


@pytest.fixture
def starved_budget():
    return MemoryBudget(FixedMemoryProbe(0))


@pytest.fixture
def counting_ops():
    return CountingOps()


def random_matrix(rng, n, low=-9, high=10):
    return rng.integers(low, high, size=(n, n), dtype=np.int64)
