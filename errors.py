"""
errors.py – Error taxonomy shared by the clients, the pipeline and the API.

Client wrappers classify a failure once, at the point the external call
fails, by raising a :class:`ServiceError` tagged with an :class:`ErrorKind`.
Everything downstream (retry, error log, HTTP status mapping) dispatches on
that tag.  Messages still carry the familiar substrings ("Task not found",
"Rate limit exceeded (429)", "Network", "timeout") so untagged callers and
operators can read them.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    NETWORK = "network"
    SERVER = "server"
    CONFLICT = "conflict"
    VALIDATION = "validation"
    CONFIGURATION = "configuration"
    TIMEOUT = "timeout"
    ASSISTANT = "assistant"
    UNKNOWN = "unknown"


RETRYABLE_KINDS = frozenset(
    {ErrorKind.RATE_LIMIT, ErrorKind.NETWORK, ErrorKind.SERVER, ErrorKind.TIMEOUT}
)


class ServiceError(Exception):
    """A failure classified at the client boundary."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.UNKNOWN,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS


class ConfigurationError(ServiceError):
    """Deployment misconfiguration: missing mapping, unreadable config."""

    def __init__(self, message: str) -> None:
        super().__init__(message, ErrorKind.CONFIGURATION)


class ResponseValidationError(ServiceError):
    """Malformed responder output.  Never retried."""

    def __init__(self, message: str, task_id: str | None = None) -> None:
        super().__init__(message, ErrorKind.VALIDATION)
        self.task_id = task_id


class CheckpointTimeout(ServiceError):
    """The response artifact was not filled in before the deadline."""

    def __init__(self, message: str) -> None:
        super().__init__(message, ErrorKind.TIMEOUT)

    @property
    def retryable(self) -> bool:
        # Waiting on a human is not a transient transport failure.
        return False


class AssistantError(ServiceError):
    """The automated responder could not produce output."""

    def __init__(self, message: str, code: "ErrorCode | None" = None) -> None:
        super().__init__(message, ErrorKind.ASSISTANT)
        self.code = code or ErrorCode.CLAUDE_API_ERROR


def kind_for_status(status: int | None) -> ErrorKind:
    """Map an HTTP status code onto an :class:`ErrorKind`."""
    if status is None:
        return ErrorKind.UNKNOWN
    if status in (401, 403):
        return ErrorKind.AUTH
    if status == 404:
        return ErrorKind.NOT_FOUND
    if status == 409:
        return ErrorKind.CONFLICT
    if status == 429:
        return ErrorKind.RATE_LIMIT
    if status in (400, 422):
        return ErrorKind.VALIDATION
    if status >= 500:
        return ErrorKind.SERVER
    return ErrorKind.UNKNOWN


# ── Stable error codes for the HTTP surface ─────────────────────────────

class ErrorCode(str, Enum):
    TASK_NOT_FOUND = "TASK_NOT_FOUND"
    TASK_INVALID_FORMAT = "TASK_INVALID_FORMAT"
    AUTH_FAILED = "AUTH_FAILED"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    RULE_FILE_NOT_FOUND = "RULE_FILE_NOT_FOUND"
    RESPONSE_FILE_NOT_FOUND = "RESPONSE_FILE_NOT_FOUND"
    BROWSERSTACK_API_ERROR = "BROWSERSTACK_API_ERROR"
    TEST_CASE_CREATION_FAILED = "TEST_CASE_CREATION_FAILED"
    INVALID_REQUEST = "INVALID_REQUEST"
    INVALID_JSON = "INVALID_JSON"
    MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    CLAUDE_API_ERROR = "CLAUDE_API_ERROR"
    CLAUDE_CLI_UNAVAILABLE = "CLAUDE_CLI_UNAVAILABLE"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"


ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.TASK_NOT_FOUND: "Task not found in Jira. Please check the task ID.",
    ErrorCode.TASK_INVALID_FORMAT: "Invalid task ID format. Expected format: PA-12345",
    ErrorCode.AUTH_FAILED: "Authentication failed. Please check your credentials.",
    ErrorCode.RATE_LIMIT_EXCEEDED: "Rate limit exceeded. Please try again later.",
    ErrorCode.RULE_FILE_NOT_FOUND: "Rule file not found. Please contact support.",
    ErrorCode.RESPONSE_FILE_NOT_FOUND: "Response file not found. Please save the response and retry.",
    ErrorCode.BROWSERSTACK_API_ERROR: "BrowserStack API error. Please try again.",
    ErrorCode.TEST_CASE_CREATION_FAILED: "Failed to create test cases in BrowserStack.",
    ErrorCode.INVALID_REQUEST: "Invalid request. Please check your input.",
    ErrorCode.INVALID_JSON: "Invalid JSON format. Please check your response.",
    ErrorCode.MISSING_REQUIRED_FIELD: "Missing required field. Please check your response.",
    ErrorCode.INVALID_RESPONSE: "Invalid response format from the assistant.",
    ErrorCode.CLAUDE_API_ERROR: "Claude error. Please try again or switch to manual mode.",
    ErrorCode.CLAUDE_CLI_UNAVAILABLE: "Claude CLI is not available. Use manual mode or install it.",
    ErrorCode.CONFIGURATION_ERROR: "Server misconfiguration. Please contact support.",
    ErrorCode.INTERNAL_SERVER_ERROR: "Server error occurred. Please try again or contact support.",
}


_STATUS_BY_CODE: dict[ErrorCode, int] = {
    ErrorCode.TASK_NOT_FOUND: 404,
    ErrorCode.RULE_FILE_NOT_FOUND: 404,
    ErrorCode.RESPONSE_FILE_NOT_FOUND: 404,
    ErrorCode.AUTH_FAILED: 401,
    ErrorCode.RATE_LIMIT_EXCEEDED: 429,
    ErrorCode.INVALID_REQUEST: 400,
    ErrorCode.INVALID_JSON: 400,
    ErrorCode.MISSING_REQUIRED_FIELD: 400,
    ErrorCode.TASK_INVALID_FORMAT: 400,
    ErrorCode.INVALID_RESPONSE: 400,
}


def status_for_code(code: ErrorCode) -> int:
    return _STATUS_BY_CODE.get(code, 500)


def error_code_for(exc: BaseException) -> ErrorCode:
    """Pick the stable error code for *exc*."""
    if isinstance(exc, AssistantError):
        return exc.code
    if isinstance(exc, ResponseValidationError):
        text = str(exc)
        if "Invalid JSON" in text:
            return ErrorCode.INVALID_JSON
        if "Missing required" in text:
            return ErrorCode.MISSING_REQUIRED_FIELD
        return ErrorCode.INVALID_RESPONSE
    if isinstance(exc, FileNotFoundError):
        return ErrorCode.RESPONSE_FILE_NOT_FOUND
    if isinstance(exc, ServiceError):
        if exc.kind is ErrorKind.NOT_FOUND:
            if "Rule file" in str(exc):
                return ErrorCode.RULE_FILE_NOT_FOUND
            if "Response file" in str(exc):
                return ErrorCode.RESPONSE_FILE_NOT_FOUND
            return ErrorCode.TASK_NOT_FOUND
        if exc.kind is ErrorKind.AUTH:
            return ErrorCode.AUTH_FAILED
        if exc.kind is ErrorKind.RATE_LIMIT:
            return ErrorCode.RATE_LIMIT_EXCEEDED
        if exc.kind is ErrorKind.VALIDATION:
            return ErrorCode.INVALID_REQUEST
        if exc.kind is ErrorKind.CONFIGURATION:
            return ErrorCode.CONFIGURATION_ERROR
        if exc.kind is ErrorKind.CONFLICT:
            return ErrorCode.TEST_CASE_CREATION_FAILED
        if exc.kind in (ErrorKind.SERVER, ErrorKind.NETWORK, ErrorKind.TIMEOUT):
            return ErrorCode.BROWSERSTACK_API_ERROR
    return ErrorCode.INTERNAL_SERVER_ERROR
