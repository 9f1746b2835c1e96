"""
Failure types shared by the store, the guard and the assistant layer.
"""


class FluxoError(Exception):
    """Base class for all Fluxo failures."""

    pass


class NotFoundError(FluxoError):
    """Raised when a referenced record does not exist for the user."""

    pass


class ValidationError(FluxoError):
    """Raised when a field is missing or malformed."""

    pass


class PermissionDeniedError(FluxoError):
    """Raised when the access guard blocks an action."""

    pass


class BackendUnavailableError(FluxoError):
    """Raised when storage or the hosted model cannot be reached."""

    pass


class QuotaExceededError(BackendUnavailableError):
    """Raised when the hosted model rejects a call for quota reasons."""

    pass


class UnknownToolError(FluxoError):
    """Raised when a tool call name is not in the router's allow-list."""

    def __init__(self, name: str):
        super().__init__(f"Unknown tool: {name}")
        self.name = name
