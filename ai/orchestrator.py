"""
Top-level entry point for image/video generation.

Validates the request, routes it to the FAL job path or the streaming chat
path, and records successful generations in local history.
"""
import asyncio
import uuid
from typing import Optional

import httpx

from ai.chat_stream import StreamingChatClient
from ai.exceptions.generation_exceptions import GenerationError, MissingInputError, UnsupportedModalityError
from ai.fal import FalJobClient
from ai.image_edits import ImageEditClient
from ai.models.generation_models import (
    ApiConfig,
    BackendFamily,
    GenerationRequest,
    GenerationResult,
    HistoryRecord,
    StreamCallbacks,
)
from ai.normalizer import RequestNormalizer
from data.storage import AppStorage
from media.image_encoder import FalStorageUploader, ImagePayloadEncoder, ImageUploader
from utils.logging_config import get_logger

logger = get_logger(__name__)


def _noop(*_args) -> None:
    return None


class GenerationOrchestrator:
    """Runs one GenerationRequest end to end"""

    def __init__(
        self,
        storage: AppStorage,
        uploader: Optional[ImageUploader] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        fal_client: Optional[FalJobClient] = None,
    ):
        self.storage = storage
        self.uploader = uploader
        self.http_client = http_client
        self.fal_client = fal_client
        self._handlers = {
            BackendFamily.FAL: self._generate_fal,
            BackendFamily.CHAT_COMPATIBLE: self._generate_chat,
        }

    def validate(self, request: GenerationRequest) -> Optional[ApiConfig]:
        """Checks that need no network; returns the stored API config"""
        if request.image_conditioned and not request.source_images:
            raise MissingInputError("Please upload or select an image first")
        if not request.prompt.strip():
            raise MissingInputError("Please enter a prompt")
        if request.image_conditioned and not request.accepts_images:
            raise UnsupportedModalityError(f"Model '{request.model}' does not accept source images")

        api_config = self.storage.get_api_config()
        if request.family is BackendFamily.CHAT_COMPATIBLE:
            if api_config is None:
                raise MissingInputError("Please set up the API configuration first")
            if not api_config.key or not api_config.base_url:
                raise MissingInputError("API configuration is incomplete, check the API key and base URL")
        return api_config

    async def generate(
        self,
        request: GenerationRequest,
        callbacks: Optional[StreamCallbacks] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> GenerationResult:
        """
        Generate images or video for ``request``.

        FAL requests return their URLs (errors are raised). Chat-compatible
        requests report progress and failures through ``callbacks``; the
        returned result carries the final URL when the stream completed.
        Validation problems are raised before any network call for both.
        """
        api_config = self.validate(request)
        logger.info(f"Generating with {request.family.value} model {request.model}")

        urls = await self._handlers[request.family](request, api_config, callbacks, cancel_event)
        if not urls:
            return GenerationResult(family=request.family)

        record = HistoryRecord(
            id=str(uuid.uuid4()),
            prompt=request.prompt.strip(),
            url=urls[0],
            model=request.model,
            aspect_ratio=request.aspect_ratio.value,
        )
        self.storage.add_to_history(record)
        return GenerationResult(family=request.family, urls=urls, record=record)

    def _encoder(self, credentials: Optional[str] = None) -> ImagePayloadEncoder:
        return ImagePayloadEncoder(self.uploader or FalStorageUploader(credentials))

    async def _generate_fal(self, request, api_config, callbacks, cancel_event):
        credentials = api_config.key if api_config else None
        normalizer = RequestNormalizer(self._encoder(credentials))
        payload = await normalizer.normalize(request)

        client = self.fal_client or FalJobClient(credentials)
        urls = await client.submit(payload)
        logger.info(f"FAL generation finished with {len(urls)} asset(s)")
        return urls

    async def _generate_chat(self, request, api_config, callbacks, cancel_event):
        normalizer = RequestNormalizer(self._encoder())

        if request.image_conditioned and request.mask:
            client = ImageEditClient(api_config.base_url, api_config.key, http_client=self.http_client)
            return await client.edit(normalizer.normalize_edit(request))

        callbacks = callbacks or StreamCallbacks(on_message=_noop, on_complete=_noop, on_error=_noop)
        try:
            payload = await normalizer.normalize(request)
        except UnsupportedModalityError:
            raise
        except GenerationError as e:
            # Encoding/upload failures belong to the callback channel on this path
            logger.error(f"Failed to prepare chat request: {e}")
            callbacks.on_error(e)
            return []

        client = StreamingChatClient(api_config.base_url, api_config.key, http_client=self.http_client)
        url = await client.stream(payload, callbacks, cancel_event=cancel_event)
        return [url] if url else []
