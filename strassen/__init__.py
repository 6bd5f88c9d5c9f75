from .config import StrassenConfig
from .distributed import DistributedEngine, distributed_multiply
from .matrix import MatrixOps, direct_multiply
from .memory import FixedMemoryProbe, MemoryBudget, PsutilMemoryProbe
from .parallel import ParallelEngine, parallel_multiply
from .sequential import SequentialEngine, sequential_multiply

__version__ = "0.1.0"
