import os
from dataclasses import dataclass, fields
from typing import Optional

MB = 1024 * 1024


def _env(name, cast, default):
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return cast(raw)


def _flag(raw: str) -> bool:
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class StrassenConfig:
    memory_safety_threshold: float = 0.9    # fraction of available memory treated as usable
    min_free_memory_mb: int = 50            # absolute floor for per-process checks
    leaf_size: int = 1                      # sizes at or below this multiply directly
    max_workers: Optional[int] = None       # parallel pool size, None -> os.cpu_count()
    result_timeout: Optional[float] = None  # seconds per distributed result, None waits forever
    strict_worker_memory: bool = False
    max_unexpected_messages: int = 3

    def __post_init__(self):
        if not 0.0 < self.memory_safety_threshold <= 1.0:
            raise ValueError(f"memory_safety_threshold must be in (0, 1], got {self.memory_safety_threshold}")
        if self.min_free_memory_mb < 0:
            raise ValueError(f"min_free_memory_mb must be >= 0, got {self.min_free_memory_mb}")
        if self.leaf_size < 1:
            raise ValueError(f"leaf_size must be >= 1, got {self.leaf_size}")
        if self.max_workers is not None and self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")
        if self.result_timeout is not None and self.result_timeout <= 0:
            raise ValueError(f"result_timeout must be positive, got {self.result_timeout}")
        if self.max_unexpected_messages < 0:
            raise ValueError(f"max_unexpected_messages must be >= 0, got {self.max_unexpected_messages}")

    @property
    def min_free_memory_bytes(self) -> int:
        return self.min_free_memory_mb * MB

    @property
    def pool_size(self) -> int:
        return self.max_workers or os.cpu_count() or 1

    @classmethod
    def from_env(cls, **overrides) -> "StrassenConfig":
        """Build a config from STRASSEN_* environment variables.

        Keyword arguments win over the environment.
        """
        values = {
            "memory_safety_threshold": _env("STRASSEN_MEMORY_SAFETY_THRESHOLD", float, 0.9),
            "min_free_memory_mb": _env("STRASSEN_MIN_FREE_MEMORY_MB", int, 50),
            "leaf_size": _env("STRASSEN_LEAF_SIZE", int, 1),
            "max_workers": _env("STRASSEN_MAX_WORKERS", int, None),
            "result_timeout": _env("STRASSEN_RESULT_TIMEOUT", float, None),
            "strict_worker_memory": _env("STRASSEN_STRICT_WORKER_MEMORY", _flag, False),
            "max_unexpected_messages": _env("STRASSEN_MAX_UNEXPECTED_MESSAGES", int, 3),
        }
        known = {f.name for f in fields(cls)}
        unknown = set(overrides) - known
        if unknown:
            raise TypeError(f"Unknown config option(s): {', '.join(sorted(unknown))}")
        values.update(overrides)
        return cls(**values)


DEFAULT_CONFIG = StrassenConfig()
