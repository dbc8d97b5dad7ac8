from enum import Enum
from typing import Any, Dict, Optional

from pydantic import ValidationError


class AIErrorCode(str, Enum):
    """Error codes surfaced to API clients"""
    # Validation errors
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_IMAGE_FORMAT = "INVALID_IMAGE_FORMAT"
    INVALID_TEXT_CONTENT = "INVALID_TEXT_CONTENT"
    IMAGE_TOO_LARGE = "IMAGE_TOO_LARGE"
    TEXT_TOO_LONG = "TEXT_TOO_LONG"

    # AI processing errors
    AI_MODEL_ERROR = "AI_MODEL_ERROR"
    AI_RESPONSE_INVALID = "AI_RESPONSE_INVALID"
    AI_PARSING_ERROR = "AI_PARSING_ERROR"
    AI_TIMEOUT = "AI_TIMEOUT"

    # Calendar context errors
    CALENDAR_READ_ERROR = "CALENDAR_READ_ERROR"
    CALENDAR_CONTEXT_ERROR = "CALENDAR_CONTEXT_ERROR"

    # Rate limiting
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"

    # General errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"


class AIError(Exception):
    """
    Base error for the calendar AI service.

    Carries both an internal message (logged) and a user-facing message
    (returned to clients), plus the HTTP status and whether the client may
    retry the request.
    """

    def __init__(
        self,
        code: AIErrorCode,
        message: str,
        user_message: str,
        status_code: int = 500,
        retryable: bool = False,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.user_message = user_message
        self.status_code = status_code
        self.retryable = retryable
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the error for an API response body"""
        return {
            "error": {
                "code": self.code.value,
                "message": self.user_message,
                "retryable": self.retryable,
                "hint": get_user_friendly_message(self.code),
                "context": self.context,
            }
        }


class AIValidationError(AIError):
    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(
            code=AIErrorCode.INVALID_INPUT,
            message=f"Validation failed: {message}",
            user_message=f"Invalid input: {message}",
            status_code=400,
            retryable=False,
            context=context,
        )


class AIProcessingError(AIError):
    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(
            code=AIErrorCode.AI_MODEL_ERROR,
            message=f"AI processing failed: {message}",
            user_message="Failed to process your request with AI. Please try again.",
            status_code=500,
            retryable=True,
            context=context,
        )


class CalendarContextError(AIError):
    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(
            code=AIErrorCode.CALENDAR_CONTEXT_ERROR,
            message=f"Calendar context error: {message}",
            user_message="Failed to read calendar context. Using AI without existing events.",
            status_code=500,
            retryable=True,
            context=context,
        )


class ImageProcessingError(AIError):
    def __init__(self, reason: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(
            code=AIErrorCode.INVALID_IMAGE_FORMAT,
            message=f"Image processing failed: {reason}",
            user_message=f"Image processing failed: {reason}",
            status_code=400,
            retryable=False,
            context=context,
        )


def create_validation_error(field: str, issue: str) -> AIValidationError:
    return AIValidationError(f"{field}: {issue}", {"field": field, "issue": issue})


def create_image_error(issue: str, image_size: Optional[int] = None) -> ImageProcessingError:
    return ImageProcessingError(issue, {"image_size": image_size})


def create_ai_error(original_error: BaseException) -> AIProcessingError:
    """Wrap an unexpected failure of the AI pipeline"""
    message = str(original_error) or type(original_error).__name__
    return AIProcessingError(message, {"original_error": repr(original_error)})


def create_calendar_error(operation: str, original_error: BaseException) -> CalendarContextError:
    """
    Wrap a failure of a calendar operation, tagging the operation name.

    Args:
        operation: Name of the failing operation (e.g. "detectSchedulingConflicts")
        original_error: The exception that was raised

    Returns:
        CalendarContextError whose message starts with the operation name
    """
    message = str(original_error) or type(original_error).__name__
    return CalendarContextError(
        f"{operation}: {message}",
        {"operation": operation, "original_error": repr(original_error)},
    )


def map_validation_error(error: ValidationError) -> AIValidationError:
    """Turn the first pydantic validation issue into an AIValidationError"""
    issues = error.errors()
    if issues:
        first = issues[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or "unknown"
        message = first.get("msg") or "Validation failed"
        return create_validation_error(field, message)
    return AIValidationError("Invalid input format")


ERROR_MESSAGES: Dict[AIErrorCode, str] = {
    AIErrorCode.INVALID_INPUT: "Please check your input and try again.",
    AIErrorCode.INVALID_IMAGE_FORMAT: "Please upload a valid image file (JPEG, PNG, GIF, or WebP).",
    AIErrorCode.INVALID_TEXT_CONTENT: "Please provide valid text content.",
    AIErrorCode.IMAGE_TOO_LARGE: "Image file is too large. Please upload an image smaller than 5MB.",
    AIErrorCode.TEXT_TOO_LONG: "Text content is too long. Please limit to 10,000 characters.",
    AIErrorCode.AI_MODEL_ERROR: "AI service is temporarily unavailable. Please try again later.",
    AIErrorCode.AI_RESPONSE_INVALID: "AI generated an invalid response. Please try again.",
    AIErrorCode.AI_PARSING_ERROR: "Failed to understand AI response. Please try again.",
    AIErrorCode.AI_TIMEOUT: "AI request timed out. Please try again.",
    AIErrorCode.CALENDAR_READ_ERROR: "Failed to read calendar events.",
    AIErrorCode.CALENDAR_CONTEXT_ERROR: "Calendar context temporarily unavailable.",
    AIErrorCode.RATE_LIMIT_EXCEEDED: "Too many requests. Please wait a moment before trying again.",
    AIErrorCode.INTERNAL_ERROR: "An unexpected error occurred. Please try again.",
    AIErrorCode.NETWORK_ERROR: "Network connection issue. Please check your connection and try again.",
    AIErrorCode.CONFIGURATION_ERROR: "Service configuration error. Please contact support.",
}


def get_user_friendly_message(code: AIErrorCode) -> str:
    return ERROR_MESSAGES.get(code, ERROR_MESSAGES[AIErrorCode.INTERNAL_ERROR])
