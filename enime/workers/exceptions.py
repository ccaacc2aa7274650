class DispatcherError(Exception):
    """Base exception for worker dispatch errors."""


class DispatcherNotReady(DispatcherError):
    """Raised when execute is issued before initialize completed."""

    def __init__(self):
        super().__init__("Worker dispatcher is not initialized, call initialize() first")


class DispatcherBusy(DispatcherError):
    """Raised when execute is issued while a previous invocation is still running."""

    def __init__(self, mode: str):
        self.mode = mode
        super().__init__(f"Worker dispatcher is busy with a {mode} invocation")


class WorkerCrash(DispatcherError):
    """Raised when the isolated worker terminated unexpectedly."""

    def __init__(self, mode: str, reason: str):
        self.mode = mode
        super().__init__(f"Worker crashed during {mode}: {reason}")


class WorkerTimeout(DispatcherError):
    def __init__(self, mode: str, timeout: float):
        self.mode = mode
        self.timeout = timeout
        super().__init__(f"Worker did not settle {mode} within {timeout}s")
