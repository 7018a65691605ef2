from typing import Any, List, Optional

import httpx

from ai.chat_stream import build_request_url, rejection_from_response
from ai.exceptions.generation_exceptions import GenerationFailedError, InvalidResponseShapeError
from ai.models.generation_models import ImageEditPayload
from config import HTTP_CONNECT_TIMEOUT, IMAGE_EDITS_ENDPOINT, IMAGE_EDIT_TIMEOUT
from utils.logging_config import get_logger

logger = get_logger(__name__)


def _entry_url(entry: Any) -> Optional[str]:
    if not isinstance(entry, dict):
        return None
    if entry.get("url"):
        return entry["url"]
    if entry.get("b64_json"):
        return f"data:image/png;base64,{entry['b64_json']}"
    return None


class ImageEditClient:
    """Masked image edits through an OpenAI-compatible images/edits endpoint"""

    def __init__(self, base_url: str, api_key: str, http_client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url
        self.api_key = api_key
        self._http_client = http_client

    async def edit(self, payload: ImageEditPayload) -> List[str]:
        url = build_request_url(self.base_url, IMAGE_EDITS_ENDPOINT)
        client = self._http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(IMAGE_EDIT_TIMEOUT, connect=HTTP_CONNECT_TIMEOUT)
        )

        try:
            logger.debug(f"Image edit request to {url} with model {payload.data.get('model')}")
            response = await client.post(
                url,
                headers={"Authorization": f"Bearer {self.api_key}"},
                data=payload.data,
                files=payload.files,
            )
        except httpx.HTTPError as e:
            logger.error(f"Image edit request error: {e}")
            raise GenerationFailedError(f"Failed to edit image: {e}") from e
        finally:
            if self._http_client is None:
                await client.aclose()

        if not response.is_success:
            logger.error(f"Image edit rejected with HTTP {response.status_code}")
            raise rejection_from_response(response, "Failed to edit image")

        try:
            data = response.json()
        except ValueError as e:
            raise InvalidResponseShapeError("Image edit returned a non-JSON response") from e

        entries = data.get("data") if isinstance(data, dict) else None
        urls = [url for url in (_entry_url(entry) for entry in entries or []) if url]
        if not urls:
            raise InvalidResponseShapeError("Image edit returned no images")

        logger.info(f"Image edit produced {len(urls)} image(s)")
        return urls
