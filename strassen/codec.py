import numpy as np

from .matrix import DTYPE

WIRE_DTYPE = DTYPE


def flatten(M) -> np.ndarray:
    """Row-major copy: flat[i * n + j] == M[i][j]."""
    return np.ascontiguousarray(M, dtype=WIRE_DTYPE).reshape(-1).copy()


def unflatten(flat, n: int) -> np.ndarray:
    flat = np.asarray(flat, dtype=WIRE_DTYPE)
    if flat.size != n * n:
        raise ValueError(f"Buffer of {flat.size} elements cannot hold a {n}x{n} matrix")
    return flat.reshape(n, n).copy()


def empty_buffer(n: int) -> np.ndarray:
    return np.empty(n * n, dtype=WIRE_DTYPE)


def zero_buffer(n: int) -> np.ndarray:
    return np.zeros(n * n, dtype=WIRE_DTYPE)
