import logging
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from strassen.config import StrassenConfig
from strassen.memory import FixedMemoryProbe, MemoryBudget
from strassen.parallel import ParallelEngine, parallel_multiply
from strassen.sequential import SequentialEngine, sequential_multiply

from .conftest import random_matrix


class RecordingSequential(SequentialEngine):
    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.sizes = []

    def multiply(self, A, B):
        self.sizes.append(np.asarray(A).shape[0])
        return super().multiply(A, B)


class CountingPool(ThreadPoolExecutor):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.submits = 0

    def submit(self, fn, /, *args, **kwargs):
        self.submits += 1
        return super().submit(fn, *args, **kwargs)


class TestParallelCorrectness:
    """Fork-join Strassen agrees with the sequential engine."""

    @pytest.mark.parametrize("n", [2, 4, 8, 16, 32])
    def test_matches_sequential(self, rng, roomy_budget, n):
        A = random_matrix(rng, n)
        B = random_matrix(rng, n)
        with ParallelEngine(budget=roomy_budget) as engine:
            result = engine.multiply(A, B)
        assert np.array_equal(result, SequentialEngine(budget=roomy_budget).multiply(A, B))

    def test_two_by_two_scenario(self):
        assert np.array_equal(parallel_multiply([[1, 2], [3, 4]], [[1, 2], [3, 4]]),
                              [[7, 10], [15, 22]])

    def test_one_by_one_scenario(self):
        assert np.array_equal(parallel_multiply([[5]], [[6]]), [[30]])

    def test_odd_size(self, rng):
        A = random_matrix(rng, 5)
        B = random_matrix(rng, 5)
        assert np.array_equal(parallel_multiply(A, B), A @ B)

    def test_single_thread_pool_does_not_deadlock(self, rng, roomy_budget):
        A = random_matrix(rng, 16)
        B = random_matrix(rng, 16)
        with ThreadPoolExecutor(max_workers=1) as pool:
            engine = ParallelEngine(executor=pool, budget=roomy_budget)
            assert np.array_equal(engine.multiply(A, B), A @ B)

    def test_small_configured_pool(self, rng, roomy_budget):
        A = random_matrix(rng, 16)
        B = random_matrix(rng, 16)
        with ParallelEngine(budget=roomy_budget, config=StrassenConfig(max_workers=2)) as engine:
            assert engine.executor._max_workers == 2
            assert np.array_equal(engine.multiply(A, B), sequential_multiply(A, B))


class TestParallelDepthAndMemory:
    """Depth bound and memory gates."""

    def test_low_memory_skips_task_tree(self, rng, starved_budget, counting_ops, caplog):
        A = random_matrix(rng, 8)
        B = random_matrix(rng, 8)
        with caplog.at_level(logging.WARNING, logger="strassen.parallel"):
            with ParallelEngine(ops=counting_ops, budget=starved_budget) as engine:
                result = engine.multiply(A, B)
        assert np.array_equal(result, A @ B)
        assert counting_ops.extract_calls == []
        assert counting_ops.multiply_calls == [8]
        assert "Insufficient memory for fork-join Strassen" in caplog.text

    def test_depth_zero_delegates_to_sequential(self, rng):
        # enough for the gate at n=8, too little for even one fork level
        budget = MemoryBudget(FixedMemoryProbe(8000))
        assert budget.parallel_may_proceed(8)
        assert budget.max_parallel_depth(8) == 0
        sequential = RecordingSequential(budget=budget)
        A = random_matrix(rng, 8)
        B = random_matrix(rng, 8)
        with ParallelEngine(sequential=sequential, budget=budget) as engine:
            assert np.array_equal(engine.multiply(A, B), A @ B)
        assert sequential.sizes == [8]

    def test_depth_one_forks_once(self, rng):
        budget = MemoryBudget(FixedMemoryProbe(40000))
        assert budget.max_parallel_depth(8) == 1
        sequential = RecordingSequential(budget=budget)
        A = random_matrix(rng, 8)
        B = random_matrix(rng, 8)
        with ParallelEngine(sequential=sequential, budget=budget) as engine:
            assert np.array_equal(engine.multiply(A, B), A @ B)
        assert sorted(sequential.sizes) == [4] * 7

    def test_six_forked_one_inline(self, rng):
        budget = MemoryBudget(FixedMemoryProbe(40000))
        assert budget.max_parallel_depth(8) == 1
        A = random_matrix(rng, 8)
        B = random_matrix(rng, 8)
        with CountingPool(max_workers=2) as pool:
            engine = ParallelEngine(executor=pool, budget=budget)
            assert np.array_equal(engine.multiply(A, B), A @ B)
        assert pool.submits == 6

    def test_shared_executor_left_open(self, rng, roomy_budget):
        with ThreadPoolExecutor(max_workers=2) as pool:
            with ParallelEngine(executor=pool, budget=roomy_budget) as engine:
                engine.multiply(random_matrix(rng, 4), random_matrix(rng, 4))
            assert pool.submit(lambda: 1).result() == 1
