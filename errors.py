"""Errors raised while preparing and delivering certificates."""


class ValidationError(ValueError):
    """Inputs missing before a run starts (no background, no rows)."""


class RenderError(RuntimeError):
    """Background decode or drawing failure for a certificate."""


class TransportError(RuntimeError):
    """Relay answered with a non-2xx status or could not be reached."""

    def __init__(self, message: str, status_code=None):
        super().__init__(message)
        self.status_code = status_code
