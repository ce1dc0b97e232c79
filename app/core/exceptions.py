# app/core/exceptions.py
from typing import Optional, Dict, Any

from fastapi import status


class AppException(Exception):
    """Base class for all application exceptions."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or 'INTERNAL_ERROR'
        self.details = details or {}


class ValidationException(AppException):
    """Raised when request input is rejected before any session exists."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code='VALIDATION_ERROR', details=details)


class UnauthorizedException(AppException):
    """Raised when the caller cannot be identified."""

    def __init__(self, message: str = "Could not validate credentials"):
        super().__init__(message, error_code='UNAUTHORIZED')


class QuotaExceededException(AppException):
    """Raised by the quota gate when the daily generation limit is reached."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code='QUOTA_EXCEEDED', details=details)


class NotFoundException(AppException):
    """Raised for missing resources and for resources owned by another user."""

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, error_code='NOT_FOUND')


class ContentPolicyViolation(AppException):
    """Raised when moderation flags generated content. Never retried."""

    def __init__(self, categories: list[str]):
        self.categories = categories
        label = ", ".join(categories) if categories else "unspecified"
        super().__init__(
            f"Content policy violation: {label}",
            error_code='CONTENT_POLICY_VIOLATION',
            details={"categories": categories},
        )


class UpstreamServiceException(AppException):
    """Base for failures of the text, moderation and image providers."""

    def __init__(self, provider: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.provider = provider
        provider_details = details or {}
        provider_details['provider'] = provider
        super().__init__(
            message=message,
            error_code='UPSTREAM_ERROR',
            details=provider_details,
        )


class TextGenerationError(UpstreamServiceException):
    """Text generation failed or returned output that does not match the schema."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__('text', message, details=details)


class ModerationUnavailableError(UpstreamServiceException):
    """The moderation call itself failed. Distinct from a moderation flag."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__('moderation', message, details=details)


class ImageGenerationError(UpstreamServiceException):
    """A single scene image could not be generated."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__('image', message, details=details)


STATUS_CODE_MAP: Dict[str, int] = {
    'VALIDATION_ERROR': status.HTTP_400_BAD_REQUEST,
    'UNAUTHORIZED': status.HTTP_401_UNAUTHORIZED,
    'QUOTA_EXCEEDED': status.HTTP_429_TOO_MANY_REQUESTS,
    'CONTENT_POLICY_VIOLATION': status.HTTP_400_BAD_REQUEST,
    'NOT_FOUND': status.HTTP_404_NOT_FOUND,
}


def status_code_for(exc: AppException) -> int:
    """Map an application error code to its HTTP status."""
    return STATUS_CODE_MAP.get(exc.error_code, status.HTTP_500_INTERNAL_SERVER_ERROR)


def public_error_code(exc: AppException) -> str:
    """Codes outside the public taxonomy surface as INTERNAL_ERROR."""
    return exc.error_code if exc.error_code in STATUS_CODE_MAP else 'INTERNAL_ERROR'
