"""Custom exceptions for the generation pipeline"""
from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Every failure the generation pipeline can report"""
    MISSING_INPUT = "missing_input"
    INVALID_IMAGE_ENCODING = "invalid_image_encoding"
    UPLOAD_FAILED = "upload_failed"
    UNSUPPORTED_MODALITY = "unsupported_modality"
    INVALID_RESPONSE_SHAPE = "invalid_response_shape"
    GENERATION_FAILED = "generation_failed"
    REQUEST_REJECTED = "request_rejected"
    STREAM_INTERRUPTED = "stream_interrupted"
    NO_RESPONSE_BODY = "no_response_body"


class GenerationError(Exception):
    """Base exception for generation errors"""
    kind: ErrorKind = ErrorKind.GENERATION_FAILED

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None):
        self.message = message
        self.status_code = status_code
        self.code = code
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.code:
            return f"{self.message}\nError code: {self.code}"
        return self.message


class MissingInputError(GenerationError):
    """Prompt, source image or API configuration is missing"""
    kind = ErrorKind.MISSING_INPUT


class InvalidImageEncodingError(GenerationError):
    """Source image is not a well-formed base64 data URL"""
    kind = ErrorKind.INVALID_IMAGE_ENCODING


class UploadFailedError(GenerationError):
    """Remote storage upload of an oversized image failed"""
    kind = ErrorKind.UPLOAD_FAILED


class UnsupportedModalityError(GenerationError):
    """Image-conditioned request on a model that does not accept images"""
    kind = ErrorKind.UNSUPPORTED_MODALITY


class InvalidResponseShapeError(GenerationError):
    """Backend answered, but no asset URL could be found in the answer"""
    kind = ErrorKind.INVALID_RESPONSE_SHAPE


class GenerationFailedError(GenerationError):
    """Network or remote-side failure of a generation job"""
    kind = ErrorKind.GENERATION_FAILED


class RequestRejectedError(GenerationError):
    """Non-success HTTP status before any output was produced"""
    kind = ErrorKind.REQUEST_REJECTED


class StreamInterruptedError(GenerationError):
    """Transport failure while reading a streamed response"""
    kind = ErrorKind.STREAM_INTERRUPTED


class NoResponseBodyError(GenerationError):
    """Successful status but nothing readable in the body"""
    kind = ErrorKind.NO_RESPONSE_BODY
