from __future__ import annotations

from typing import Optional


class ValidationError(ValueError):
    """Raised when caller input violates a documented contract (e.g., inverted bracket)."""


class PrimitiveFailure(RuntimeError):
    """Raised when the similarity search call fails or cannot be invoked at all."""

    def __init__(self, message: str, *, exit_code: Optional[int] = None, stderr: str = "") -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr


class TimeoutExceeded(RuntimeError):
    """Raised when the wall-clock budget of a search chain runs out."""

    def __init__(self, seconds: float) -> None:
        super().__init__(f"Search timed out after {seconds:.0f}s")
        self.seconds = seconds
