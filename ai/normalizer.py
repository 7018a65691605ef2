from typing import Any, Awaitable, Callable, Dict, List

from ai.exceptions.generation_exceptions import MissingInputError, UnsupportedModalityError
from ai.models.generation_models import (
    AspectRatio,
    BackendFamily,
    ChatPayload,
    FalJobPayload,
    GenerationRequest,
    ImageEditPayload,
    WirePayload,
)
from config import FAL_DEFAULT_SAFETY_TOLERANCE, FAL_OUTPUT_FORMAT, REFERENCE_IMAGES_ANNOTATION
from media.image_encoder import ImagePayloadEncoder, parse_data_url
from utils.logging_config import get_logger

logger = get_logger(__name__)


def annotate_reference_count(prompt: str, image_count: int) -> str:
    """FAL takes a single reference image; mention the others in the prompt"""
    if image_count > 1:
        return prompt + REFERENCE_IMAGES_ANNOTATION.format(count=image_count)
    return prompt


class RequestNormalizer:
    """Maps a GenerationRequest onto the wire payload of its backend family"""

    def __init__(self, encoder: ImagePayloadEncoder):
        self.encoder = encoder
        self._handlers: Dict[BackendFamily, Callable[[GenerationRequest], Awaitable[WirePayload]]] = {
            BackendFamily.FAL: self._normalize_fal,
            BackendFamily.CHAT_COMPATIBLE: self._normalize_chat,
        }

    async def normalize(self, request: GenerationRequest) -> WirePayload:
        if request.image_conditioned and not request.accepts_images:
            raise UnsupportedModalityError(
                f"Model '{request.model}' does not accept source images"
            )
        return await self._handlers[request.family](request)

    async def _normalize_fal(self, request: GenerationRequest) -> FalJobPayload:
        images = request.source_images

        # Only FAL prompts carry the image count; chat sends every image as its own part
        arguments: Dict[str, Any] = {
            "prompt": annotate_reference_count(request.prompt, len(images)),
        }
        if images:
            representation = await self.encoder.encode(images[0])
            arguments["image_url"] = representation.url

        arguments["num_images"] = request.n
        if request.aspect_ratio is not AspectRatio.ORIGINAL:
            arguments["aspect_ratio"] = request.aspect_ratio.value
        if request.is_video_model and request.duration is not None:
            arguments["duration"] = request.duration
        arguments["output_format"] = FAL_OUTPUT_FORMAT
        arguments["enable_safety_checker"] = request.enable_safety_checker
        arguments["safety_tolerance"] = request.safety_tolerance or FAL_DEFAULT_SAFETY_TOLERANCE

        return FalJobPayload(model=request.model, arguments=arguments)

    async def _normalize_chat(self, request: GenerationRequest) -> ChatPayload:
        if request.image_conditioned:
            content: List[Dict[str, Any]] = [{"type": "text", "text": request.prompt}]
            for image in request.source_images:
                representation = await self.encoder.encode(image)
                content.append({"type": "image_url", "image_url": {"url": representation.url}})
            message = {"role": "user", "content": content}
        else:
            message = {"role": "user", "content": request.prompt}

        return ChatPayload(body={
            "model": request.model,
            "messages": [message],
            "stream": True,
        })

    def normalize_edit(self, request: GenerationRequest) -> ImageEditPayload:
        """Multipart form for the images/edits endpoint (first image plus optional mask)"""
        if not request.source_images:
            raise MissingInputError("Please upload an image first")

        content_type, image_bytes = parse_data_url(request.source_images[0])
        files = {"image": ("image.png", image_bytes, content_type)}
        if request.mask:
            mask_type, mask_bytes = parse_data_url(request.mask)
            files["mask"] = ("mask.png", mask_bytes, mask_type)

        data = {"prompt": request.prompt, "model": request.model}
        if request.size:
            data["size"] = request.size
        if request.n:
            data["n"] = str(request.n)
        if request.quality:
            data["quality"] = request.quality

        return ImageEditPayload(data=data, files=files)
