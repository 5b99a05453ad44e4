class NotFoundError(LookupError):
    """Raised when a caller asks for a specific batch or patient that is absent."""


class CapabilityError(RuntimeError):
    """An external capability (text generation, voice, SMS) failed."""

    def __init__(self, message: str, *, kind: str = "unavailable") -> None:
        super().__init__(message)
        self.kind = kind


class InconsistentReadError(RuntimeError):
    """A batch resolved earlier in the same pass no longer exists."""


class DuplicateCallError(RuntimeError):
    """A call-history entry with the same call id was already stored."""


__all__ = [
    "NotFoundError",
    "CapabilityError",
    "InconsistentReadError",
    "DuplicateCallError",
]
