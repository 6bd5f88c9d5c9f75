import numpy as np
import pytest

from strassen.matrix import MatrixOps, combine_products
from strassen.protocol import (
    PARTS_PER_TASK, TASK_IDS, assign_tasks, compute_task, is_task_id_tag, local_index_from_tag, part_tag,
    result_tag, task_id_tag, task_parts, tasks_for_worker,
)

from .conftest import random_matrix


class TestTaskAssignment:
    """Task id -> worker rank mapping."""

    def test_round_robin_three_workers(self):
        assignment = assign_tasks(3)
        assert tasks_for_worker(assignment, 1) == [1, 4, 7]
        assert tasks_for_worker(assignment, 2) == [2, 5]
        assert tasks_for_worker(assignment, 3) == [3, 6]

    @pytest.mark.parametrize("workers", [7, 8, 10])
    def test_one_to_one_with_seven_or_more(self, workers):
        assert assign_tasks(workers) == {i: i for i in range(1, 8)}

    def test_single_worker_takes_everything(self):
        assert tasks_for_worker(assign_tasks(1), 1) == list(range(1, 8))

    def test_needs_a_worker(self):
        with pytest.raises(ValueError):
            assign_tasks(0)


class TestTags:
    """Tag arithmetic of the wire contract."""

    def test_values(self):
        assert task_id_tag(3, 1) == 231
        assert part_tag(3, 1, 2) == 1312
        assert result_tag(7) == 3007

    def test_task_id_range(self):
        assert is_task_id_tag(task_id_tag(1, 0))
        assert is_task_id_tag(task_id_tag(7, 0))
        assert not is_task_id_tag(50)
        assert not is_task_id_tag(part_tag(1, 0, 0))
        assert not is_task_id_tag(result_tag(1))

    @pytest.mark.parametrize("worker", [1, 2, 7])
    @pytest.mark.parametrize("local", [0, 1, 2])
    def test_local_index_inverts_tag(self, worker, local):
        assert local_index_from_tag(task_id_tag(worker, local), worker) == local


class TestComputeTask:
    """Each task rebuilds its product from the four shipped slots."""

    def test_tasks_recombine_to_product(self, rng):
        ops = MatrixOps()
        A = random_matrix(rng, 8)
        B = random_matrix(rng, 8)
        A_quads, B_quads = ops.quadrants(A), ops.quadrants(B)

        products = []
        for task in range(1, 8):
            parts = [p if p is not None else np.zeros((4, 4), dtype=np.int64)
                     for p in task_parts(task, A_quads, B_quads)]
            products.append(compute_task(task, parts, lambda x, y: x @ y))

        assert np.array_equal(combine_products(ops, products), A @ B)

    def test_unused_slots(self, rng):
        ops = MatrixOps()
        quads = ops.quadrants(random_matrix(rng, 4))
        unused = {task: [i for i, p in enumerate(task_parts(task, quads, quads)) if p is None]
                  for task in range(1, 8)}
        assert unused == {1: [], 2: [3], 3: [1], 4: [1], 5: [3], 6: [], 7: []}

    def test_every_task_ships_the_same_slot_count(self, rng):
        quads = MatrixOps().quadrants(random_matrix(rng, 4))
        assert {len(task_parts(task, quads, quads)) for task in TASK_IDS} == {PARTS_PER_TASK}

    def test_invalid_task(self, rng):
        with pytest.raises(ValueError):
            compute_task(8, [np.zeros((1, 1))] * 4, lambda x, y: x @ y)
        with pytest.raises(ValueError):
            task_parts(0, [None] * 4, [None] * 4)
