class SyncError(Exception):
    """Base class for failures raised while talking to the upstream API."""


class RateLimitedError(SyncError):
    """Upstream rejected the request because the point budget was exhausted."""


class TransientError(SyncError):
    """Network, HTTP or payload failure that is worth retrying."""


class FatalSyncError(SyncError):
    def __init__(self, context: str, message: str, cause: BaseException | None = None) -> None:
        super().__init__(f"[{context}] {message}")
        self.context = context
        self.cause = cause


class CheckpointSchemaError(SyncError):
    """A checkpoint artifact has an unknown schema or version."""
