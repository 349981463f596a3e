from typing import Optional


class SiteAnalyzerError(Exception):
    """Base class for every error raised by the analysis engine."""


class ValidationError(SiteAnalyzerError):
    """Malformed URL or request input. Never retried."""


class ProbeError(SiteAnalyzerError):
    """A single probe failed for one URL."""

    def __init__(self, category: str, url: str, message: str, cause: Optional[BaseException] = None):
        self.category = category
        self.url = url
        self.message = message
        self.cause = cause
        super().__init__(f"{category} probe failed for {url}: {message}")


class CancellationError(SiteAnalyzerError):
    """The caller aborted the operation."""

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason or "Unknown reason"
        super().__init__(f"Operation cancelled: {self.reason}")


class OperationTimeoutError(SiteAnalyzerError):
    """A deadline elapsed before the awaited work finished."""

    def __init__(self, timeout: Optional[float]):
        self.timeout = timeout
        if timeout is None:
            super().__init__("Operation timed out")
        else:
            super().__init__(f"Operation timed out after {timeout:.2f}s")


class AnalysisTimeoutError(OperationTimeoutError):
    """The analysis deadline elapsed before any probe settled."""


class PersistenceError(SiteAnalyzerError):
    """A repository read or write failed."""
