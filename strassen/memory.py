"""
Memory budget heuristics that decide whether another level of Strassen
recursion fits in memory.

One level of expansion at size n keeps three n x n matrices (A, B, C) and
fifteen n/2 x n/2 matrices (eight quadrants, seven products) alive, which is
6.75 full-size matrices. Each engine scales that by its own overhead:

    sequential   depth * 1.5   (every frame on the call stack holds a level)
    parallel     2.0           (sibling branches run concurrently)
    per-process  1 / threshold (distributed coordinator and workers)
"""

from __future__ import annotations

import logging
import math
from typing import Optional

import numpy as np
import psutil

from .config import DEFAULT_CONFIG, MB, StrassenConfig
from .matrix import DTYPE

logger = logging.getLogger(__name__)

EXPANSION_FACTOR = 6.75
ELEMENT_SIZE = np.dtype(DTYPE).itemsize
SEQUENTIAL_OVERHEAD = 1.5
PARALLEL_OVERHEAD = 2.0
DEPTH_DENOMINATOR = 105.0


class MemoryProbe:
    def available_bytes(self) -> int:
        raise NotImplementedError

    def used_bytes(self) -> int:
        raise NotImplementedError

    def total_bytes(self) -> int:
        raise NotImplementedError


class PsutilMemoryProbe(MemoryProbe):
    """Reads live system memory through psutil."""

    def available_bytes(self) -> int:
        return int(psutil.virtual_memory().available)

    def used_bytes(self) -> int:
        return int(psutil.Process().memory_info().rss)

    def total_bytes(self) -> int:
        return int(psutil.virtual_memory().total)


class FixedMemoryProbe(MemoryProbe):
    """Reports a constant amount of memory; lets tests force a fallback."""

    def __init__(self, available: int, total: Optional[int] = None):
        self.available = int(available)
        self.total = int(total if total is not None else available)

    def available_bytes(self) -> int:
        return self.available

    def used_bytes(self) -> int:
        return max(0, self.total - self.available)

    def total_bytes(self) -> int:
        return self.total


def recursion_depth(n: int) -> int:
    """floor(log2(n)) for n >= 1."""
    return max(0, int(n).bit_length() - 1)


class MemoryBudget:
    def __init__(self, probe: Optional[MemoryProbe] = None,
                 config: StrassenConfig = DEFAULT_CONFIG,
                 element_size: int = ELEMENT_SIZE):
        self.probe = probe if probe is not None else PsutilMemoryProbe()
        self.threshold = config.memory_safety_threshold
        self.min_free_bytes = config.min_free_memory_bytes
        self.element_size = element_size

    def estimate_bytes(self, n: int, overhead: float = 1.0) -> float:
        return EXPANSION_FACTOR * n * n * self.element_size * overhead

    def sequential_estimate(self, n: int) -> float:
        return self.estimate_bytes(n, recursion_depth(n) * SEQUENTIAL_OVERHEAD)

    def parallel_estimate(self, n: int) -> float:
        return self.estimate_bytes(n, PARALLEL_OVERHEAD)

    def process_estimate(self, n: int) -> float:
        return self.estimate_bytes(n, 1.0 / self.threshold)

    def sequential_may_proceed(self, n: int) -> bool:
        return self._check("Sequential", n, self.sequential_estimate(n))

    def parallel_may_proceed(self, n: int) -> bool:
        return self._check("Parallel", n, self.parallel_estimate(n))

    def process_may_proceed(self, n: int) -> bool:
        """Per-process check used by the distributed coordinator and workers."""
        available = self.probe.available_bytes()
        required = self.process_estimate(n)
        ok = available >= required and available >= self.min_free_bytes
        if not ok:
            logger.warning(
                "Process memory check failed for %dx%d: available %.2f MB, required %.2f MB, "
                "floor %.2f MB, threshold %.0f%%",
                n, n, available / MB, required / MB, self.min_free_bytes / MB, self.threshold * 100)
        return ok

    def _check(self, label: str, n: int, needed: float) -> bool:
        available = self.probe.available_bytes()
        ok = needed < available * self.threshold
        if not ok:
            logger.warning(
                "%s memory check failed for %dx%d: available %.2f MB, estimated %.2f MB, "
                "threshold %.0f%% of available",
                label, n, n, available / MB, needed / MB, self.threshold * 100)
        return ok

    def max_parallel_depth(self, n: int, available: Optional[int] = None) -> int:
        """Deepest fork-join level that still fits.

        Each extra level shrinks n**2 by four, so the governing ratio falls
        quadratically in depth; halving log2(ratio) turns that into a depth.
        """
        if available is None:
            available = self.probe.available_bytes()
        safe = available * self.threshold
        denom = DEPTH_DENOMINATOR * n * n
        if denom <= 0 or safe <= 0:
            return 0
        return max(0, math.floor(0.5 * math.log2(safe / denom)))

    def report(self, context: str) -> None:
        logger.info("[%s] Memory: Used %.1f MB / Total %.1f MB",
                    context, self.probe.used_bytes() / MB, self.probe.total_bytes() / MB)
