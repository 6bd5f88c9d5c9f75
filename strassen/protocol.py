"""
Coordinator/worker wire contract for the one-level distributed Strassen.

Tags (all messages travel between rank 0 and a worker rank):

    50                                       task count, coordinator -> worker
    200 + worker*10 + local                  task id, coordinator -> worker
    1000 + worker*100 + local*10 + part      operand slot 0..3, coordinator -> worker
    3000 + task                              product, worker -> coordinator

``local`` is the position of the task among the tasks assigned to that
worker. Operand slots a task does not use travel as zero-filled buffers.

Every buffer, including the one-element count and task-id messages, holds
int64 (8 bytes per element) in row-major order, not 32-bit ints. Both ends
must agree on this, and the memory estimates use the same 8-byte element
size.
"""

from typing import Callable, Dict, List, Optional, Sequence

import numpy as np

from .matrix import MatrixOps

TASK_IDS = tuple(range(1, 8))
PARTS_PER_TASK = 4

TASK_COUNT_TAG = 50
TASK_ID_TAG_BASE = 200
PART_TAG_BASE = 1000
RESULT_TAG_BASE = 3000


def task_id_tag(worker: int, local_index: int) -> int:
    return TASK_ID_TAG_BASE + worker * 10 + local_index


def part_tag(worker: int, local_index: int, part: int) -> int:
    return PART_TAG_BASE + worker * 100 + local_index * 10 + part


def result_tag(task: int) -> int:
    return RESULT_TAG_BASE + task


def is_task_id_tag(tag: int) -> bool:
    return TASK_ID_TAG_BASE <= tag < PART_TAG_BASE


def local_index_from_tag(tag: int, worker: int) -> int:
    return tag - TASK_ID_TAG_BASE - worker * 10


def assign_tasks(workers: int) -> Dict[int, int]:
    """Map task id -> worker rank (1-based)."""
    if workers < 1:
        raise ValueError(f"Distributed Strassen needs at least one worker, got {workers}")
    if workers >= len(TASK_IDS):
        return {task: task for task in TASK_IDS}
    return {task: ((task - 1) % workers) + 1 for task in TASK_IDS}


def tasks_for_worker(assignment: Dict[int, int], worker: int) -> List[int]:
    return [task for task in TASK_IDS if assignment[task] == worker]


def task_parts(task: int, A_quads: Sequence[np.ndarray],
               B_quads: Sequence[np.ndarray]) -> List[Optional[np.ndarray]]:
    """The four operand slots shipped for a task; None marks an unused slot."""
    A11, A12, A21, A22 = A_quads
    B11, B12, B21, B22 = B_quads
    if task == 1:
        return [A11, A22, B11, B22]
    if task == 2:
        return [A21, A22, B11, None]
    if task == 3:
        return [A11, None, B12, B22]
    if task == 4:
        return [A22, None, B21, B11]
    if task == 5:
        return [A11, A12, B22, None]
    if task == 6:
        return [A21, A11, B11, B12]
    if task == 7:
        return [A12, A22, B21, B22]
    raise ValueError(f"Invalid task: {task}")


def compute_task(task: int, parts: Sequence[np.ndarray],
                 multiply: Callable[[np.ndarray, np.ndarray], np.ndarray],
                 ops: Optional[MatrixOps] = None) -> np.ndarray:
    ops = ops if ops is not None else MatrixOps()
    if task == 1:
        left, right = ops.add(parts[0], parts[1]), ops.add(parts[2], parts[3])
    elif task in (2, 5):
        left, right = ops.add(parts[0], parts[1]), parts[2]
    elif task in (3, 4):
        left, right = parts[0], ops.subtract(parts[2], parts[3])
    elif task in (6, 7):
        left, right = ops.subtract(parts[0], parts[1]), ops.add(parts[2], parts[3])
    else:
        raise ValueError(f"Invalid task: {task}")
    return multiply(left, right)
