class StrassenError(Exception):
    """Base class for every failure raised by the engines."""


class InsufficientMemoryError(StrassenError):
    pass


class OddDimensionError(StrassenError, ValueError):
    """A distributed run was asked to split a matrix with an odd side length."""


class ProtocolError(StrassenError):
    """Coordinator and worker disagree about which message comes next."""


class WorkerTimeoutError(ProtocolError):
    pass


class CommunicatorAborted(StrassenError):
    pass
