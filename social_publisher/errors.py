# social_publisher/errors.py
import re
from typing import Any, Dict, Optional


class PublisherError(Exception):
    """Base class for every error the service raises on purpose."""

    status_code = 500
    retryable = False

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__

    @property
    def code(self) -> str:
        return re.sub(r"(?<!^)(?=[A-Z])", "_", self.__class__.__name__).lower()

    def to_dict(self, attempts: Optional[int] = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {"code": self.code, "message": self.message, "retryable": self.retryable}
        if attempts is not None:
            body["attempts"] = attempts
        return body


class ValidationError(PublisherError):
    status_code = 400


class ContentValidationError(ValidationError):
    """Adapter or media gate rejected content for one platform."""

    def __init__(self, platform: str, message: str):
        super().__init__(f"{platform}: {message}")
        self.platform = platform


class InvalidMediaRequest(ValidationError):
    pass


class ConflictError(PublisherError):
    status_code = 409


class NotFound(PublisherError):
    status_code = 404


class QuotaExceeded(PublisherError):
    status_code = 403

    def __init__(self, account_id: str, limit: int):
        super().__init__(f"pending post limit of {limit} reached")
        self.account_id = account_id
        self.limit = limit


class RateLimited(PublisherError):
    status_code = 429

    def __init__(self, limit: int, retry_after: int):
        super().__init__(f"rate limit of {limit} requests exceeded, retry in {retry_after}s")
        self.limit = limit
        self.retry_after = retry_after


class PlatformError(PublisherError):
    status_code = 502

    def __init__(self, platform: str, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.platform = platform
        self.status = status


class TransientPlatformError(PlatformError):
    retryable = True


class TerminalPlatformError(PlatformError):
    pass


class StorageError(PublisherError):
    pass
