"""
Guard Errors Module - Internal failure taxonomy

These exceptions are raised and caught inside the guard; none of them crosses a
public entry point of the ProtectionCoordinator.
"""


class GuardError(Exception):
    """Base class for environment guard failures."""


class DetectionError(GuardError):
    """A probe could not complete (permission denied, OS API unavailable)."""

    def __init__(self, detector: str, message: str):
        super().__init__(f"{detector}: {message}")
        self.detector = detector


class MitigationFailure(GuardError):
    """A corrective action failed (process already exited, file in use)."""

    def __init__(self, action: str, message: str):
        super().__init__(f"{action}: {message}")
        self.action = action


class BuildAttemptFailure(GuardError):
    """A single build attempt failed (non-zero exit, timeout, pipe break)."""

    def __init__(self, attempt: int, reason: str):
        super().__init__(f"attempt {attempt}: {reason}")
        self.attempt = attempt
        self.reason = reason


class ExhaustedRetries(GuardError):
    """All build attempts failed. Surfaced to callers as a False return."""


class InitializationFailure(GuardError):
    """Full coordinator initialization failed; minimal protection is used instead."""
