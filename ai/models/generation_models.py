"""Pydantic models and value types for generation requests and results"""
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field


class BackendFamily(str, Enum):
    """Generation protocol a model speaks"""
    FAL = "fal"
    CHAT_COMPATIBLE = "openai"


class ModelTag(str, Enum):
    """Modality a model is registered for"""
    TEXT_TO_IMAGE = "text_to_image"
    IMAGE_TO_IMAGE = "image_to_image"
    TEXT_TO_VIDEO = "text_to_video"
    IMAGE_TO_VIDEO = "image_to_video"

    @property
    def accepts_images(self) -> bool:
        return self in (ModelTag.IMAGE_TO_IMAGE, ModelTag.IMAGE_TO_VIDEO)

    @property
    def is_video(self) -> bool:
        return self in (ModelTag.TEXT_TO_VIDEO, ModelTag.IMAGE_TO_VIDEO)


class AspectRatio(str, Enum):
    ORIGINAL = "original"
    SQUARE = "1:1"
    WIDE_16_9 = "16:9"
    TALL_9_16 = "9:16"
    PORTRAIT_2_3 = "2:3"
    LANDSCAPE_3_2 = "3:2"
    PORTRAIT_4_5 = "4:5"
    LANDSCAPE_5_4 = "5:4"
    PORTRAIT_3_4 = "3:4"
    LANDSCAPE_4_3 = "4:3"
    ULTRAWIDE_21_9 = "21:9"
    ULTRATALL_9_21 = "9:21"


Quality = Literal["auto", "high", "medium", "low", "hd", "standard"]
ImageSize = Literal["1024x1024", "1536x1024", "1024x1536", "1792x1024", "auto"]
SafetyTolerance = Literal["1", "2", "3", "4", "5", "6"]


class GenerationRequest(BaseModel):
    """One image/video generation request, backend-agnostic.

    ``source_images`` and ``mask`` are inline data URLs
    (``data:image/png;base64,...``). ``image_conditioned`` is the caller's
    image-to-X intent; ``model_tag`` says whether the model accepts images.
    """
    model_config = ConfigDict(frozen=True)

    prompt: str
    family: BackendFamily
    model: str
    model_tag: Optional[ModelTag] = None
    image_conditioned: bool = False
    source_images: Tuple[str, ...] = Field(default_factory=tuple, max_length=4)
    mask: Optional[str] = None
    aspect_ratio: AspectRatio = AspectRatio.SQUARE
    n: int = Field(default=1, ge=1, le=4)
    quality: Optional[Quality] = None
    size: Optional[ImageSize] = None
    enable_safety_checker: bool = True
    safety_tolerance: SafetyTolerance = "2"
    duration: Optional[Literal[5, 10]] = None

    @property
    def accepts_images(self) -> bool:
        return self.model_tag is not None and self.model_tag.accepts_images

    @property
    def is_video_model(self) -> bool:
        return self.model_tag is not None and self.model_tag.is_video


@dataclass(frozen=True)
class InlineImage:
    """Image carried in the request as its original data URL"""
    data_url: str

    @property
    def url(self) -> str:
        return self.data_url


@dataclass(frozen=True)
class RemoteImage:
    """Image uploaded to object storage, referenced by URL"""
    remote_url: str

    @property
    def url(self) -> str:
        return self.remote_url


ImageRepresentation = Union[InlineImage, RemoteImage]


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class TerminalSignal:
    url: str


StreamEvent = Union[TextDelta, TerminalSignal]


@dataclass
class StreamCallbacks:
    """Callbacks driven by the streaming chat path"""
    on_message: Callable[[str], Any]
    on_complete: Callable[[str], Any]
    on_error: Callable[[Exception], Any]


@dataclass(frozen=True)
class FalJobPayload:
    """Job submission for the FAL family"""
    model: str
    arguments: Dict[str, Any]


@dataclass(frozen=True)
class ChatPayload:
    """Request body for the chat-completions family"""
    body: Dict[str, Any]


@dataclass(frozen=True)
class ImageEditPayload:
    """Multipart form for the images/edits endpoint"""
    data: Dict[str, str]
    files: Dict[str, tuple]


WirePayload = Union[FalJobPayload, ChatPayload]


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class HistoryRecord(BaseModel):
    """A finished generation, as kept in local history"""
    id: str
    prompt: str
    url: str
    model: str
    created_at: str = Field(default_factory=_utc_now_iso)
    aspect_ratio: str


class ApiConfig(BaseModel):
    """Stored API credential"""
    key: str
    base_url: str = ""
    created_at: str = Field(default_factory=_utc_now_iso)
    last_used: Optional[str] = None


class CustomModel(BaseModel):
    """Entry of the model catalog"""
    id: str
    name: str
    value: str
    type: BackendFamily
    tag: Optional[ModelTag] = None
    created_at: str = Field(default_factory=_utc_now_iso)
    is_default: bool = False


class GenerationResult(BaseModel):
    """What a generate call produced"""
    family: BackendFamily
    urls: List[str] = Field(default_factory=list)
    record: Optional[HistoryRecord] = None

    @property
    def succeeded(self) -> bool:
        return bool(self.urls)
