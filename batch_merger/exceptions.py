"""Error taxonomy for the merge pipeline."""

from typing import List, Optional, Tuple


class MergeError(Exception):
    """Base class for every error raised out of a merge request."""

    status_code = 500

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def to_dict(self) -> dict:
        payload = {"error": type(self).__name__, "message": self.message}
        if self.cause is not None:
            payload["cause"] = str(self.cause)
        return payload


class ValidationError(MergeError):
    """Bad input or unsupported format. Client-caused, not retryable."""

    status_code = 400

    def __init__(self, message: str, results=None):
        super().__init__(message)
        self.results = list(results or [])

    @property
    def messages(self) -> List[str]:
        lines = []
        for result in self.results:
            if result.is_valid:
                continue
            name = result.display_name
            lines.append(f"{name}: {'; '.join(result.errors)}")
        if not lines:
            lines.append(self.message)
        return lines

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["details"] = self.messages
        return payload


class ConversionError(MergeError):
    """Every strategy in a converter chain failed for one file."""

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        attempts: Optional[List[Tuple[str, str]]] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message, cause=cause)
        self.source = source
        self.attempts = list(attempts or [])

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["attempts"] = [{"strategy": name, "error": error} for name, error in self.attempts]
        return payload


class AssemblyError(MergeError):
    """The final artifact could not be written."""


class ResourceTimeoutError(MergeError):
    """Throttle wait elapsed. Logged by the governor, never raised to callers."""

    def __init__(self, message: str, waited_seconds: float = 0.0):
        super().__init__(message)
        self.waited_seconds = waited_seconds
