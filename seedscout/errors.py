from __future__ import annotations

from typing import Any, Optional


class ExtractionError(RuntimeError):
    """Base class for pipeline failures tied to a single source URL."""

    code = "extraction_error"
    retryable = False

    def __init__(self, message: str, url: str = "", status_code: int = 0) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class LinkDeadError(ExtractionError):
    code = "link_dead"

    def __init__(self, url: str, status_code: int = 404) -> None:
        super().__init__(f"Product page not found ({status_code})", url=url, status_code=status_code)


class RateLimitedError(ExtractionError):
    code = "rate_limited"
    retryable = True

    def __init__(self, url: str, status_code: int = 429) -> None:
        super().__init__(f"Vendor rate limited the request ({status_code})", url=url, status_code=status_code)


class RescueFailedError(ExtractionError):
    code = "rescue_failed"


class ExtractionFailed(ExtractionError):
    """Live extraction produced only a placeholder; the controller routes it to rescue."""

    def __init__(self, message: str, url: str = "", status_code: int = 0, partial: Optional[Any] = None) -> None:
        super().__init__(message, url=url, status_code=status_code)
        self.partial = partial


class GenericNameDetected(ExtractionError):
    """Normalization landed on a category/breadcrumb label instead of a variety name."""

    def __init__(self, message: str, url: str = "", partial: Optional[Any] = None) -> None:
        super().__init__(message, url=url)
        self.partial = partial
