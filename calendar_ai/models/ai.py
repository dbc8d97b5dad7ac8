import base64
import binascii
import re
from datetime import datetime
from typing import List, Optional

from pydantic import Field, field_validator, model_validator

from calendar_ai.core.config import settings
from calendar_ai.core.errors import create_image_error, create_validation_error
from calendar_ai.models.calendar import CalendarEvent, CamelModel, ParsingMethod, Severity
from calendar_ai.utils.date_utils import ensure_aware, is_valid_timezone


_DATA_URL = re.compile(r"^data:image/(jpeg|jpg|png|gif|webp);base64,")
_BASE64_BODY = re.compile(r"^[A-Za-z0-9+/]+=*$")
_SPECIAL_CHARS = re.compile(r"[^a-zA-Z0-9\s.,!?;:()\-'\"]")
MAX_SPECIAL_CHAR_RATIO = 0.3


def preprocess_image_data(image: str) -> str:
    """Ensure the image is a data URL"""
    if not image.startswith("data:"):
        return f"data:image/jpeg;base64,{image}"
    return image


def preprocess_text_content(text: str) -> str:
    """Collapse runs of whitespace"""
    return re.sub(r"\s+", " ", text).strip()


def validate_image_data(image: str) -> str:
    """
    Check an uploaded image.

    Raises:
        ImageProcessingError: If it is not base64 image data or is too large
    """
    if not image:
        raise create_image_error("Image data cannot be empty")

    body = _DATA_URL.sub("", image, count=1)
    if body == image and not _BASE64_BODY.match(image):
        raise create_image_error("Invalid image format. Must be base64 encoded image data")
    try:
        base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError):
        raise create_image_error("Invalid image format. Must be base64 encoded image data")

    size = len(body) * 3 // 4
    if size > settings.MAX_IMAGE_BYTES:
        raise create_image_error("Image size must be less than 5MB", image_size=size)
    return image


def validate_text_content(text: str) -> str:
    """
    Check user-provided text.

    Raises:
        AIValidationError: If it is empty, too long or mostly special characters
    """
    if not text:
        raise create_validation_error("text", "Text content cannot be empty")
    if len(text) > settings.MAX_TEXT_LENGTH:
        raise create_validation_error("text", f"Text content must be less than {settings.MAX_TEXT_LENGTH} characters")
    if len(_SPECIAL_CHARS.findall(text)) / len(text) >= MAX_SPECIAL_CHAR_RATIO:
        raise create_validation_error("text", "Text contains too many special characters")
    return text


class DateRange(CamelModel):
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    timezone: Optional[str] = None

    @field_validator("start_date", "end_date")
    @classmethod
    def _make_aware(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_aware(v) if v is not None else None

    @model_validator(mode="after")
    def _check_order(self) -> "DateRange":
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("Start date must be before end date")
        return self


class AIRequest(CamelModel):
    """Request to turn text and/or an image into calendar events"""
    image: Optional[str] = None
    text: Optional[str] = None
    language: str = Field(default_factory=lambda: settings.DEFAULT_LANGUAGE)
    include_context: bool = True
    context_range: Optional[DateRange] = None
    timezone: str = Field(default_factory=lambda: settings.DEFAULT_TIMEZONE)

    @field_validator("language")
    @classmethod
    def _supported_language(cls, v: str) -> str:
        if v not in settings.SUPPORTED_LANGUAGES:
            raise ValueError(f"Unsupported language '{v}'")
        return v

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, v: str) -> str:
        if not is_valid_timezone(v):
            raise ValueError(f"Unknown timezone '{v}'")
        return v

    @model_validator(mode="after")
    def _require_content(self) -> "AIRequest":
        if not self.image and not self.text:
            raise ValueError("Either image or text must be provided")
        return self

    def normalized(self) -> "AIRequest":
        """
        Run content checks and return a copy with preprocessed content.

        Raises:
            AIValidationError, ImageProcessingError
        """
        image = preprocess_image_data(validate_image_data(self.image)) if self.image else None
        text = preprocess_text_content(validate_text_content(self.text)) if self.text else None
        return self.model_copy(update={"image": image, "text": text})


class AIConflictInfo(CamelModel):
    event_title: str
    conflict_count: int
    severity: Severity
    suggestion: str


class AICalendarContext(CamelModel):
    existing_events: int
    context_included: bool


class AIResponseMetadata(CamelModel):
    request_id: str
    parsing_method: ParsingMethod
    warnings: List[str] = Field(default_factory=list)
    conflicts: List[AIConflictInfo] = Field(default_factory=list)
    calendar_context: AICalendarContext
    processing_time: float  # in milliseconds


class EnhancedAIResponse(CamelModel):
    events: List[CalendarEvent] = Field(default_factory=list)
    metadata: AIResponseMetadata


class ParseRequest(CamelModel):
    """Raw model output to parse without calling the model"""
    raw_response: str = Field(..., max_length=settings.MAX_RAW_RESPONSE_LENGTH)
    timezone: Optional[str] = None
    include_context: bool = True
    context_range: Optional[DateRange] = None


class ConflictCheckRequest(CamelModel):
    new_events: List[CalendarEvent]
    existing_events: List[CalendarEvent] = Field(default_factory=list)
    buffer_minutes: Optional[int] = Field(None, ge=0)
    working_hours_start: Optional[int] = Field(None, ge=0, le=24)
    working_hours_end: Optional[int] = Field(None, ge=0, le=24)
    timezone: Optional[str] = None
