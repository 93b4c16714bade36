"""
Error taxonomy for the knowledge-base ingestion pipeline
"""
from enum import Enum
from typing import List, Optional


class ErrorCode(str, Enum):
    INVALID_INPUT = "INVALID_INPUT"
    NOT_FOUND = "NOT_FOUND"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    REQUEST_TIMEOUT = "REQUEST_TIMEOUT"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class KnowledgeBaseError(Exception):
    """Base class for errors surfaced to callers"""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    retryable: bool = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(KnowledgeBaseError):
    """Missing or malformed deployment configuration. Never retried."""

    code = ErrorCode.CONFIGURATION_ERROR


class ValidationError(KnowledgeBaseError):
    """Input rejected before any network access"""

    code = ErrorCode.INVALID_INPUT


class NotFoundError(KnowledgeBaseError):
    code = ErrorCode.NOT_FOUND


class PageFetchError(KnowledgeBaseError):
    """A single page could not be fetched or parsed"""

    code = ErrorCode.EXTERNAL_SERVICE_ERROR

    def __init__(self, url: str, reason: str, status_code: Optional[int] = None,
                 retryable: bool = False):
        super().__init__(f"Error crawling {url}: {reason}")
        self.url = url
        self.reason = reason
        self.status_code = status_code
        self.retryable = retryable


class CrawlTimeoutError(KnowledgeBaseError):
    code = ErrorCode.REQUEST_TIMEOUT
    retryable = True


class ExternalServiceError(KnowledgeBaseError):
    """Failure of one of our own dependencies (embedding provider, vector store)"""

    code = ErrorCode.EXTERNAL_SERVICE_ERROR

    def __init__(self, service: str, message: str):
        super().__init__(f"{service}: {message}")
        self.service = service


class RateLimitExceeded(KnowledgeBaseError):
    code = ErrorCode.RATE_LIMIT_EXCEEDED
    retryable = True

    def __init__(self, message: str, retry_after: int):
        super().__init__(message)
        self.retry_after = max(1, int(retry_after))


class IdentityResolutionDegraded(Exception):
    """Directory lookup failed; admin bypass is not granted. Internal only."""

    def __init__(self, identity: str, reason: str):
        super().__init__(f"Could not resolve identity {identity}: {reason}")
        self.identity = identity
        self.reason = reason


class CrawlFailedError(KnowledgeBaseError):
    """No page of a crawl could be fetched and indexed"""

    code = ErrorCode.EXTERNAL_SERVICE_ERROR

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = list(errors or [])
