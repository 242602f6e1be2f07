"""Token accounting errors."""


class TokenSubsystemUnavailable(RuntimeError):
    """The token system was not built or has been shut down."""

    def __init__(self, message: str = "Token tracking system not initialized"):
        super().__init__(message)
