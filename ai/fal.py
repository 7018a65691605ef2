from typing import Any, Callable, Dict, List, Optional, Tuple

import fal_client
import httpx
from fal_client.client import FalClientHTTPError

from ai.exceptions.generation_exceptions import GenerationFailedError, InvalidResponseShapeError
from ai.models.generation_models import FalJobPayload
from config import FAL_DEFAULT_CREDENTIALS, FAL_KEY
from utils.logging_config import get_logger

logger = get_logger(__name__)


def resolve_fal_credentials(credentials: Optional[str] = None) -> str:
    """Explicit credential, then FAL_KEY, then the shared public default"""
    if credentials:
        return credentials
    if FAL_KEY:
        return FAL_KEY
    return FAL_DEFAULT_CREDENTIALS


def _match_images(data: Dict[str, Any]) -> Optional[List[str]]:
    images = data.get("images")
    if not isinstance(images, list):
        return None
    urls = [image.get("url") for image in images if isinstance(image, dict) and image.get("url")]
    return urls or None


def _match_video(data: Dict[str, Any]) -> Optional[List[str]]:
    video = data.get("video")
    if isinstance(video, dict) and video.get("url"):
        return [video["url"]]
    return None


def _match_url(data: Dict[str, Any]) -> Optional[List[str]]:
    url = data.get("url")
    if isinstance(url, str) and url:
        return [url]
    return None


# Tried in order, first match wins
RESULT_SHAPES: List[Tuple[str, Callable[[Dict[str, Any]], Optional[List[str]]]]] = [
    ("images", _match_images),
    ("video", _match_video),
    ("url", _match_url),
]


def extract_asset_urls(data: Any) -> List[str]:
    """Pull the asset URL(s) out of a finished job's result payload"""
    if isinstance(data, dict):
        for shape, matcher in RESULT_SHAPES:
            urls = matcher(data)
            if urls:
                logger.debug(f"FAL result matched '{shape}' shape")
                return urls

    logger.error(f"FAL response data: {data}")
    raise InvalidResponseShapeError("Generation failed: invalid response data")


class FalJobClient:
    """Submits FAL jobs and waits for their result"""

    def __init__(self, credentials: Optional[str] = None, client: Optional[Any] = None):
        self.credentials = resolve_fal_credentials(credentials)
        self._client = client

    def _get_client(self):
        if self._client is None:
            self._client = fal_client.AsyncClient(key=self.credentials)
        return self._client

    def _on_queue_update(self, update) -> None:
        if isinstance(update, fal_client.Queued):
            logger.info(f"FAL job queued at position {update.position}")
        elif isinstance(update, fal_client.InProgress):
            logger.info("FAL generation status: IN_PROGRESS")
            for log in update.logs or []:
                logger.debug(f"FAL: {log.get('message', log)}")

    async def submit(self, payload: FalJobPayload) -> List[str]:
        """
        Run a job to completion and return its asset URL(s).

        Raises GenerationFailedError when the job cannot be run and
        InvalidResponseShapeError when it finished without a usable asset.
        """
        logger.debug(f"FAL: submitting job to {payload.model}")
        try:
            result = await self._get_client().subscribe(
                payload.model,
                arguments=payload.arguments,
                with_logs=True,
                on_queue_update=self._on_queue_update,
            )
        except FalClientHTTPError as e:
            message = getattr(e, "message", None) or str(e)
            status_code = getattr(e, "status_code", None)
            logger.error(f"FAL: job failed with HTTP {status_code}: {message}")
            raise GenerationFailedError(message, status_code=status_code,
                                        code=str(status_code) if status_code else None) from e
        except httpx.HTTPError as e:
            logger.error(f"FAL: request error: {e}")
            raise GenerationFailedError(f"FAL request failed: {e}") from e
        except Exception as e:
            logger.error(f"FAL: unexpected error: {e}")
            raise GenerationFailedError(str(e) or "Failed to generate image") from e

        return extract_asset_urls(result)
