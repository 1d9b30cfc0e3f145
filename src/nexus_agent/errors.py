"""Error taxonomy for thread orchestration."""


class NexusAgentError(Exception):
    """Base class for all orchestration errors."""


class ThreadNotFound(NexusAgentError):
    """Raised when a thread id does not exist in the store."""

    def __init__(self, thread_id: str) -> None:
        super().__init__(f"Thread {thread_id} not found")
        self.thread_id = thread_id


class InvalidDelay(NexusAgentError, ValueError):
    """Raised when a wake delay expression cannot be parsed."""

    def __init__(self, expr: str) -> None:
        super().__init__(
            f'Invalid delay format: {expr!r}. Use format like "30s", "5m", "2h", "1d"'
        )
        self.expr = expr


class InvalidStatusTransition(NexusAgentError):
    """Raised when a status change would leave a terminal state."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Cannot move thread from {current} to {target}")
        self.current = current
        self.target = target


class PersistenceFailure(NexusAgentError):
    """Raised when a thread write fails after all retry attempts."""


class WakeCancellationFailure(NexusAgentError):
    """A pending wake job could not be removed; logged, never raised to callers."""


class ToolNotFound(NexusAgentError):
    """Raised when the model calls a tool that is not registered."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown tool: {name}")
        self.name = name


class ToolInputError(NexusAgentError):
    """Raised when tool arguments fail schema validation."""


class DuplicateSourceThread(NexusAgentError):
    """Raised when an open thread already exists for a deduplicated source key."""

    def __init__(self, source: str, source_id: str | None) -> None:
        super().__init__(f"Open thread already exists for {source}:{source_id}")
        self.source = source
        self.source_id = source_id
