import base64
import binascii
import re
from typing import Optional, Protocol, Tuple

import fal_client

from ai.exceptions.generation_exceptions import InvalidImageEncodingError, UploadFailedError
from ai.fal import resolve_fal_credentials
from ai.models.generation_models import ImageRepresentation, InlineImage, RemoteImage
from config import FILE_SIZE_THRESHOLD
from utils.logging_config import get_logger

logger = get_logger(__name__)

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)(?P<params>(?:;[^,;]*)*);base64,(?P<payload>.*)$", re.DOTALL)

_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
    "image/gif": "gif",
}


class ImageUploader(Protocol):
    async def upload(self, data: bytes, content_type: str) -> str:
        ...


def parse_data_url(data_url: str) -> Tuple[str, bytes]:
    """Split a base64 data URL into (media type, decoded bytes)."""
    if not isinstance(data_url, str):
        raise InvalidImageEncodingError("Image must be a base64 data URL")

    match = _DATA_URL_RE.match(data_url.strip())
    if not match:
        raise InvalidImageEncodingError("Image is not a base64 data URL")

    try:
        data = base64.b64decode(match.group("payload"), validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidImageEncodingError(f"Image payload is not valid base64: {e}") from e

    return match.group("mime"), data


def decoded_size(data_url: str) -> int:
    """Byte length of the image a data URL carries"""
    return len(parse_data_url(data_url)[1])


class FalStorageUploader:
    """Uploads raw image bytes to FAL object storage"""

    def __init__(self, credentials: Optional[str] = None):
        self.credentials = resolve_fal_credentials(credentials)

    async def upload(self, data: bytes, content_type: str) -> str:
        extension = _EXTENSIONS.get(content_type, "bin")
        client = fal_client.AsyncClient(key=self.credentials)
        return await client.upload(data, content_type, file_name=f"image.{extension}")


class ImagePayloadEncoder:
    """
    Decides per image whether it travels inline or as an uploaded URL.

    The decision depends on the decoded byte size only: anything above
    ``threshold`` is uploaded, everything else is passed through untouched.
    """

    def __init__(self, uploader: Optional[ImageUploader] = None, threshold: int = FILE_SIZE_THRESHOLD):
        self.uploader = uploader if uploader is not None else FalStorageUploader()
        self.threshold = threshold

    async def encode(self, data_url: str) -> ImageRepresentation:
        content_type, data = parse_data_url(data_url)
        size = len(data)
        logger.info(f"Image size: {size / 1024 / 1024:.2f}MB")

        if size <= self.threshold:
            logger.debug("Image within threshold, sending inline")
            return InlineImage(data_url)

        logger.info("Image above threshold, uploading to remote storage")
        try:
            url = await self.uploader.upload(data, content_type)
        except Exception as e:
            logger.error(f"Image upload failed: {e}")
            raise UploadFailedError(f"Failed to upload image to remote storage: {e}") from e

        if not url:
            raise UploadFailedError("Remote storage returned no URL for the uploaded image")

        return RemoteImage(url)
