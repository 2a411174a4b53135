"""
Refusal taxonomy shared by the service layer.

Every refusal is a ``ValueError`` subclass carrying a stable ``kind`` (what a
client switches on) and the HTTP status the API layer maps it to.
"""


class EngineError(ValueError):
    """Base class for structured refusals."""

    kind = "Error"
    status_code = 400

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind)
        self.message = message or self.kind

    def to_dict(self) -> dict:
        return {"error": self.kind, "message": self.message}


class Unauthorized(EngineError):
    kind = "Unauthorized"
    status_code = 401


class Forbidden(EngineError):
    kind = "Forbidden"
    status_code = 403


class SubscriptionRequired(EngineError):
    kind = "SubscriptionRequired"
    status_code = 403


class EventNotOpen(EngineError):
    kind = "EventNotOpen"


class WindowClosed(EngineError):
    kind = "WindowClosed"


class AlreadyEntered(EngineError):
    kind = "AlreadyEntered"
    status_code = 409


class AlreadyCanceled(EngineError):
    kind = "AlreadyCanceled"
    status_code = 409


class AlreadyMatched(EngineError):
    kind = "AlreadyMatched"
    status_code = 409


class GroupFull(EngineError):
    kind = "GroupFull"
    status_code = 409


class InvalidEventState(EngineError):
    kind = "InvalidEventState"
    status_code = 409


class NotYetAccessible(EngineError):
    kind = "NotYetAccessible"
    status_code = 403


class AlreadyReviewed(EngineError):
    kind = "AlreadyReviewed"
    status_code = 409


class NotFound(EngineError):
    kind = "NotFound"
    status_code = 404


class ValidationFailed(EngineError):
    kind = "ValidationFailed"


class StoreFailure(EngineError):
    """A primary write failed; the operation was aborted."""

    kind = "StoreFailure"
    status_code = 500
