"""
Dense square integer matrix primitives shared by every engine.

Matrices are 2D int64 numpy arrays. Nothing here mutates its inputs except
``join``, whose whole purpose is to write into a destination.
"""

from __future__ import annotations

from typing import List, Sequence, Tuple

import numpy as np

DTYPE = np.int64


def as_matrix(M) -> np.ndarray:
    arr = np.asarray(M, dtype=DTYPE)
    if arr.ndim != 2 or arr.shape[0] != arr.shape[1]:
        raise ValueError(f"Expected a square matrix, got shape {arr.shape}")
    return arr


def check_operands(A, B) -> Tuple[np.ndarray, np.ndarray]:
    A = as_matrix(A)
    B = as_matrix(B)
    if A.shape != B.shape:
        raise ValueError(f"Operand shapes differ: A{A.shape} B{B.shape}")
    return A, B


def create(n: int, rng: np.random.Generator | None = None) -> np.ndarray:
    """Random n x n matrix with entries in 1..10."""
    if rng is None:
        rng = np.random.default_rng()
    return rng.integers(1, 11, size=(n, n), dtype=DTYPE)


def create_identity(n: int) -> np.ndarray:
    return np.eye(n, dtype=DTYPE)


class MatrixOps:
    """Elementwise arithmetic, direct multiply and quadrant copy/paste."""

    def add(self, A: np.ndarray, B: np.ndarray) -> np.ndarray:
        return A + B

    def subtract(self, A: np.ndarray, B: np.ndarray) -> np.ndarray:
        return A - B

    def multiply(self, A: np.ndarray, B: np.ndarray) -> np.ndarray:
        return A @ B

    def extract(self, parent: np.ndarray, row: int, col: int, size: int) -> np.ndarray:
        return parent[row:row + size, col:col + size].copy()

    def join(self, dest: np.ndarray, block: np.ndarray, row: int, col: int) -> None:
        size = block.shape[0]
        dest[row:row + size, col:col + size] = block

    def quadrants(self, M: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        """Return copies of (M11, M12, M21, M22)."""
        mid = M.shape[0] // 2
        return (
            self.extract(M, 0, 0, mid),
            self.extract(M, 0, mid, mid),
            self.extract(M, mid, 0, mid),
            self.extract(M, mid, mid, mid),
        )

    def assemble(self, C11, C12, C21, C22) -> np.ndarray:
        mid = C11.shape[0]
        C = np.zeros((2 * mid, 2 * mid), dtype=DTYPE)
        self.join(C, C11, 0, 0)
        self.join(C, C12, 0, mid)
        self.join(C, C21, mid, 0)
        self.join(C, C22, mid, mid)
        return C


def strassen_operands(ops: MatrixOps, A_quads: Sequence[np.ndarray],
                      B_quads: Sequence[np.ndarray]) -> List[Tuple[np.ndarray, np.ndarray]]:
    """Left/right operand pairs of the seven products M1..M7, in order."""
    A11, A12, A21, A22 = A_quads
    B11, B12, B21, B22 = B_quads
    return [
        (ops.add(A11, A22), ops.add(B11, B22)),
        (ops.add(A21, A22), B11),
        (A11, ops.subtract(B12, B22)),
        (A22, ops.subtract(B21, B11)),
        (ops.add(A11, A12), B22),
        (ops.subtract(A21, A11), ops.add(B11, B12)),
        (ops.subtract(A12, A22), ops.add(B21, B22)),
    ]


def combine_products(ops: MatrixOps, M: Sequence[np.ndarray]) -> np.ndarray:
    M1, M2, M3, M4, M5, M6, M7 = M

    C11 = ops.add(ops.subtract(ops.add(M1, M4), M5), M7)
    C12 = ops.add(M3, M5)
    C21 = ops.add(M2, M4)
    C22 = ops.add(ops.add(ops.subtract(M1, M2), M3), M6)

    return ops.assemble(C11, C12, C21, C22)


def direct_multiply(A, B) -> np.ndarray:
    A, B = check_operands(A, B)
    return MatrixOps().multiply(A, B)
