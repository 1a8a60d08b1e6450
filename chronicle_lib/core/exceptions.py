"""Custom exception hierarchy for Chronicle.

Only configuration and quota errors are fatal to an operation. Connection
errors are retried by the text generator before they surface, parse errors
are absorbed by the structured output parser, and consistency findings are
returned as data rather than raised.
"""

# Standard library imports
from typing import Any, Dict, Optional


class ChronicleException(Exception):
    """Base exception for all Chronicle errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}


class ConfigurationError(ChronicleException):
    """Raised when there's an error in configuration.

    This exception is raised when configuration values are invalid
    or required settings are missing.
    """

    pass


class MissingCredentialError(ConfigurationError):
    """Raised when no API key is configured for the selected provider.

    Attributes:
        provider: The provider that has no credential.
    """

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.provider = provider


class InvalidCredentialError(ConfigurationError):
    """Raised when the provider rejects the configured API key."""

    pass


class LLMError(ChronicleException):
    """Base class for LLM-related errors.

    This is the base exception for all errors related to Language Model
    interactions, including connection issues, response errors, and quota limits.
    """

    pass


class LLMConnectionError(LLMError):
    """Raised when the LLM provider cannot be reached.

    This exception is raised once all retry attempts are used up.
    """

    pass


class LLMTimeoutError(LLMConnectionError):
    """Raised when a single request exceeds the configured wall-clock timeout.

    Attributes:
        timeout: The timeout in seconds that was exceeded.
    """

    def __init__(
        self,
        message: str,
        timeout: Optional[float] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.timeout = timeout


class LLMResponseError(LLMError):
    """Raised when LLM returns an error that fits no other category."""

    pass


class LLMQuotaError(LLMError):
    """Raised when LLM quota or rate limit is exceeded.

    This exception indicates that API rate limits have been hit
    or usage quotas have been exhausted. It is never retried.
    """

    pass


class StructuredOutputError(ChronicleException):
    """Raised when a structured LLM response cannot be decoded.

    Attributes:
        raw_text: The beginning of the response that failed to parse.
    """

    def __init__(
        self,
        message: str,
        raw_text: str = "",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.raw_text = raw_text[:200]


class PlotThreadError(ChronicleException):
    """Raised when plot thread management fails.

    Attributes:
        thread_id: The id of the plot thread that caused the error.
    """

    def __init__(
        self,
        message: str,
        thread_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.thread_id = thread_id


class DatabaseError(ChronicleException):
    """Base class for database-related errors."""

    pass


class DatabaseConnectionError(DatabaseError):
    """Raised when unable to open or initialize the database."""

    pass


class DatabaseQueryError(DatabaseError):
    """Raised when a database query fails."""

    pass


class RecordNotFoundError(DatabaseError):
    """Raised when a record lookup by id finds nothing.

    Attributes:
        table: The table that was searched.
        record_id: The id that was not found.
    """

    def __init__(
        self,
        message: str,
        table: str,
        record_id: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.table = table
        self.record_id = record_id


# Messages shown to users for each fatal category
QUOTA_MESSAGE = "⚠️ API 配额已用尽，请稍后重试、更换 API Key 或切换模型"
INVALID_CREDENTIAL_MESSAGE = "❌ API Key 无效，请检查全局设置"
CONNECTION_MESSAGE = (
    "🌐 网络连接失败，请检查：\n"
    "1. 网络是否正常\n"
    "2. 是否需要代理访问模型服务\n"
    "3. 防火墙是否阻止了请求"
)

_QUOTA_MARKERS = ("429", "quota", "rate limit", "resource exhausted", "resource_exhausted")
_CREDENTIAL_MARKERS = ("401", "403", "api key", "api_key", "invalid", "permission", "unauthenticated")
_CONNECTION_MARKERS = ("timeout", "timed out", "connection", "fetch", "network", "unavailable", "503")


# Utility functions for consistent error handling


def classify_llm_error(error: Exception, context: str = "") -> ChronicleException:
    """Convert generic exceptions to the Chronicle error taxonomy.

    Args:
        error: The original exception
        context: Additional context about where the error occurred

    Returns:
        Appropriate exception instance (not raised)
    """
    if isinstance(error, ChronicleException):
        return error

    error_msg = str(error)
    lowered = error_msg.lower()
    details = {"original_error": type(error).__name__, "context": context}

    if isinstance(error, TimeoutError):
        return LLMTimeoutError(f"LLM request timed out: {error_msg}", details=details)
    if any(marker in lowered for marker in _QUOTA_MARKERS):
        return LLMQuotaError(f"{QUOTA_MESSAGE} ({error_msg})", details)
    if any(marker in lowered for marker in _CREDENTIAL_MARKERS):
        return InvalidCredentialError(f"{INVALID_CREDENTIAL_MESSAGE} ({error_msg})", details)
    if isinstance(error, ConnectionError) or any(
        marker in lowered for marker in _CONNECTION_MARKERS
    ):
        return LLMConnectionError(f"LLM connection failed: {error_msg}", details)
    return LLMResponseError(f"LLM error: {error_msg}", details)


def is_retryable(error: ChronicleException) -> bool:
    """Return True for errors worth another attempt."""
    if isinstance(error, (ConfigurationError, LLMQuotaError)):
        return False
    return isinstance(error, (LLMConnectionError, LLMResponseError))
