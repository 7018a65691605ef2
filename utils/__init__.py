# utils package initialization

from .error_handler import handle_error, ErrorCategory, ErrorSeverity, SanitizedError

__all__ = ['handle_error', 'ErrorCategory', 'ErrorSeverity', 'SanitizedError']
