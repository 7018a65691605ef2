"""
Turns generation failures into one human-readable message.
"""

import logging
import re
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from ai.exceptions.generation_exceptions import ErrorKind, GenerationError
from utils.logging_config import get_logger

logger = get_logger(__name__)


class ErrorSeverity(Enum):
    """Error severity levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories."""
    USER_INPUT = "user_input"
    NETWORK = "network"
    API = "api"
    RATE_LIMIT = "rate_limit"
    STORAGE = "storage"
    UNKNOWN = "unknown"


KIND_CATEGORIES = {
    ErrorKind.MISSING_INPUT: ErrorCategory.USER_INPUT,
    ErrorKind.INVALID_IMAGE_ENCODING: ErrorCategory.USER_INPUT,
    ErrorKind.UNSUPPORTED_MODALITY: ErrorCategory.USER_INPUT,
    ErrorKind.UPLOAD_FAILED: ErrorCategory.NETWORK,
    ErrorKind.STREAM_INTERRUPTED: ErrorCategory.NETWORK,
    ErrorKind.GENERATION_FAILED: ErrorCategory.API,
    ErrorKind.REQUEST_REJECTED: ErrorCategory.API,
    ErrorKind.INVALID_RESPONSE_SHAPE: ErrorCategory.API,
    ErrorKind.NO_RESPONSE_BODY: ErrorCategory.API,
}

CATEGORY_MESSAGES = {
    ErrorCategory.USER_INPUT: "Invalid input. Please check the request and try again.",
    ErrorCategory.NETWORK: "Network error. Please check your connection and try again.",
    ErrorCategory.API: "The generation service returned an error. Please try again later.",
    ErrorCategory.RATE_LIMIT: "Rate limit exceeded. Please wait before trying again.",
    ErrorCategory.STORAGE: "Local storage error. Please try again.",
    ErrorCategory.UNKNOWN: "Generation failed, please try again.",
}


class SanitizedError:
    """Sanitized error representation."""

    def __init__(
        self,
        user_message: str,
        category: ErrorCategory,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        kind: Optional[ErrorKind] = None,
        context: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None
    ):
        self.user_message = user_message
        self.category = category
        self.severity = severity
        self.kind = kind
        self.error_id = f"ERR_{datetime.now().strftime('%H%M%S')}"
        self.context = context or {}
        self.original_error = original_error


def sanitize_error_message(error_message: str) -> str:
    """
    Strip credentials and local paths from text that is about to be logged.

    Args:
        error_message: Raw error message

    Returns:
        Sanitized error message
    """
    if not error_message:
        return "An error occurred"

    sanitized = error_message

    # Inline image payloads are huge and useless in logs
    sanitized = re.sub(r'data:[\w/+.-]+;base64,[A-Za-z0-9+/=]+', '[DATA_URL]', sanitized)

    # Bearer tokens and FAL "key:secret" credentials
    sanitized = re.sub(r'Bearer\s+\S+', 'Bearer [KEY]', sanitized)
    sanitized = re.sub(r'\b[0-9a-f]{8}-[0-9a-f-]{27}:[0-9a-f]{32}\b', '[KEY]', sanitized)
    sanitized = re.sub(r'sk-[A-Za-z0-9_-]{20,}', '[KEY]', sanitized)

    # Local file paths
    sanitized = re.sub(r'(?<![\w:/])/(?:[\w.-]+/)+[\w.-]+', '[PATH]', sanitized)

    sanitized = re.sub(r'\s+', ' ', sanitized).strip()
    if len(sanitized) > 300:
        sanitized = sanitized[:297] + "..."

    return sanitized or "Sanitized error message"


def categorize_error(error: Exception) -> ErrorCategory:
    """
    Categorize an error by its generation error kind, or by type for anything else.
    """
    if isinstance(error, GenerationError):
        if error.kind is ErrorKind.REQUEST_REJECTED and error.status_code == 429:
            return ErrorCategory.RATE_LIMIT
        return KIND_CATEGORIES.get(error.kind, ErrorCategory.UNKNOWN)

    if isinstance(error, (ValueError, TypeError)):
        return ErrorCategory.USER_INPUT
    if isinstance(error, (ConnectionError, TimeoutError)):
        return ErrorCategory.NETWORK
    if isinstance(error, OSError):
        return ErrorCategory.STORAGE
    return ErrorCategory.UNKNOWN


def determine_severity(error: Exception, category: ErrorCategory) -> ErrorSeverity:
    if category in (ErrorCategory.USER_INPUT, ErrorCategory.RATE_LIMIT):
        return ErrorSeverity.LOW
    if category is ErrorCategory.UNKNOWN and not isinstance(error, GenerationError):
        return ErrorSeverity.HIGH
    return ErrorSeverity.MEDIUM


def get_user_message(error: Exception, category: ErrorCategory) -> str:
    """Generation errors already carry a readable message; everything else gets the category text"""
    if isinstance(error, GenerationError) and error.message:
        return str(error)
    return CATEGORY_MESSAGES.get(category, CATEGORY_MESSAGES[ErrorCategory.UNKNOWN])


def handle_error(
    error: Exception,
    context: Optional[Dict[str, Any]] = None,
    custom_message: Optional[str] = None,
) -> SanitizedError:
    """
    Handle an error and return a sanitized version.

    Args:
        error: The exception to handle
        context: Additional context information
        custom_message: Optional message to show instead of the derived one

    Returns:
        SanitizedError instance
    """
    category = categorize_error(error)
    severity = determine_severity(error, category)
    user_message = custom_message or get_user_message(error, category)

    sanitized_error = SanitizedError(
        user_message=user_message,
        category=category,
        severity=severity,
        kind=getattr(error, "kind", None),
        context=context,
        original_error=error,
    )

    log_level = {
        ErrorSeverity.LOW: logging.INFO,
        ErrorSeverity.MEDIUM: logging.WARNING,
        ErrorSeverity.HIGH: logging.ERROR,
        ErrorSeverity.CRITICAL: logging.CRITICAL,
    }.get(severity, logging.WARNING)

    logger.log(
        log_level,
        f"Error {sanitized_error.error_id}: {sanitize_error_message(user_message)} | "
        f"Original: {type(error).__name__}: {sanitize_error_message(str(error))} | "
        f"Context: {context}"
    )

    return sanitized_error
