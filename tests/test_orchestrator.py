"""Tests for the generation orchestrator end to end, with mocked transports"""
import asyncio
import base64
import json
import os
import sys
import unittest
from unittest.mock import AsyncMock, Mock

import httpx

# Add the project root to the Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from ai.exceptions.generation_exceptions import (
    GenerationFailedError,
    MissingInputError,
    RequestRejectedError,
    UnsupportedModalityError,
    UploadFailedError,
)
from ai.fal import FalJobClient
from ai.models.generation_models import (
    AspectRatio,
    BackendFamily,
    GenerationRequest,
    ModelTag,
    StreamCallbacks,
)
from ai.orchestrator import GenerationOrchestrator
from data.storage import AppStorage, InMemoryKeyValueStore

MIB = 1024 * 1024


def make_data_url(size: int) -> str:
    return "data:image/png;base64," + base64.b64encode(bytes(size)).decode("ascii")


def delta_line(content: str) -> bytes:
    return f"data: {json.dumps({'choices': [{'delta': {'content': content}}]})}\n".encode("utf-8")


def make_callbacks():
    return StreamCallbacks(on_message=Mock(), on_complete=Mock(), on_error=Mock())


class OrchestratorTestCase(unittest.TestCase):

    def setUp(self):
        self.storage = AppStorage(InMemoryKeyValueStore())
        self.uploader = Mock()
        self.uploader.upload = AsyncMock(return_value="https://fal.media/files/uploaded.png")
        self.fal = Mock()
        self.fal.subscribe = AsyncMock(return_value={"images": [{"url": "https://fal.media/out.png"}]})
        self.requests = []
        self.response_factory = lambda request: httpx.Response(200, content=(
            delta_line("here: ") + delta_line("[img](https://x/y.png)") + b"data: [DONE]\n"
        ))

    def handler(self, request):
        self.requests.append(request)
        return self.response_factory(request)

    def run_generate(self, request, callbacks=None):
        async def go():
            async with httpx.AsyncClient(transport=httpx.MockTransport(self.handler)) as http_client:
                orchestrator = GenerationOrchestrator(
                    self.storage,
                    uploader=self.uploader,
                    http_client=http_client,
                    fal_client=FalJobClient("key-id:key-secret", client=self.fal),
                )
                return await orchestrator.generate(request, callbacks)
        return asyncio.run(go())


class TestValidation(OrchestratorTestCase):
    """Validation happens before any network call"""

    def test_empty_prompt_fails_for_every_family(self):
        self.storage.set_api_config("sk-test", "https://api.example.com")
        for family in BackendFamily:
            for prompt in ("", "   "):
                with self.subTest(family=family, prompt=prompt):
                    request = GenerationRequest(prompt=prompt, family=family, model="some-model")
                    with self.assertRaises(MissingInputError):
                        self.run_generate(request, make_callbacks())

        self.assertEqual(len(self.requests), 0)
        self.fal.subscribe.assert_not_called()
        self.uploader.upload.assert_not_called()

    def test_image_conditioned_without_images(self):
        request = GenerationRequest(prompt="a cat", family=BackendFamily.FAL, model="fal-ai/flux-pro/kontext",
                                    model_tag=ModelTag.IMAGE_TO_IMAGE, image_conditioned=True)
        with self.assertRaises(MissingInputError):
            self.run_generate(request)
        self.fal.subscribe.assert_not_called()

    def test_image_conditioned_on_text_model(self):
        request = GenerationRequest(prompt="a cat", family=BackendFamily.FAL, model="fal-ai/flux-pro",
                                    model_tag=ModelTag.TEXT_TO_IMAGE, image_conditioned=True,
                                    source_images=[make_data_url(8)])
        with self.assertRaises(UnsupportedModalityError):
            self.run_generate(request)
        self.fal.subscribe.assert_not_called()

    def test_chat_requires_api_config(self):
        request = GenerationRequest(prompt="a cat", family=BackendFamily.CHAT_COMPATIBLE, model="gpt-4o-image")
        with self.assertRaises(MissingInputError):
            self.run_generate(request, make_callbacks())
        self.assertEqual(len(self.requests), 0)

    def test_chat_requires_base_url(self):
        self.storage.set_api_config("sk-test")
        request = GenerationRequest(prompt="a cat", family=BackendFamily.CHAT_COMPATIBLE, model="gpt-4o-image")
        with self.assertRaises(MissingInputError):
            self.run_generate(request, make_callbacks())
        self.assertEqual(len(self.requests), 0)

    def test_fal_does_not_require_api_config(self):
        request = GenerationRequest(prompt="a cat", family=BackendFamily.FAL, model="fal-ai/flux-pro")
        result = self.run_generate(request)
        self.assertTrue(result.succeeded)


class TestFalGeneration(OrchestratorTestCase):
    """Test cases for the FAL route"""

    def test_generation_is_recorded_in_history(self):
        request = GenerationRequest(prompt="  a cat  ", family=BackendFamily.FAL, model="fal-ai/flux-pro",
                                    aspect_ratio=AspectRatio.PORTRAIT_3_4)

        result = self.run_generate(request)

        self.assertEqual(result.family, BackendFamily.FAL)
        self.assertEqual(result.urls, ["https://fal.media/out.png"])
        history = self.storage.get_history()
        self.assertEqual(len(history), 1)
        self.assertEqual(history[0].prompt, "a cat")
        self.assertEqual(history[0].url, "https://fal.media/out.png")
        self.assertEqual(history[0].model, "fal-ai/flux-pro")
        self.assertEqual(history[0].aspect_ratio, "3:4")
        self.assertEqual(result.record, history[0])

    def test_newest_generation_first(self):
        for prompt in ("first", "second"):
            self.run_generate(GenerationRequest(prompt=prompt, family=BackendFamily.FAL, model="fal-ai/flux-pro"))
        self.assertEqual([r.prompt for r in self.storage.get_history()], ["second", "first"])

    def test_failure_is_raised_and_not_recorded(self):
        self.fal.subscribe.side_effect = RuntimeError("job crashed")
        request = GenerationRequest(prompt="a cat", family=BackendFamily.FAL, model="fal-ai/flux-pro")

        with self.assertRaises(GenerationFailedError):
            self.run_generate(request)
        self.assertEqual(self.storage.get_history(), [])

    def test_video_result(self):
        self.fal.subscribe.return_value = {"video": {"url": "https://fal.media/clip.mp4"}}
        request = GenerationRequest(prompt="waves", family=BackendFamily.FAL, model="fal-ai/kling-video",
                                    model_tag=ModelTag.TEXT_TO_VIDEO, duration=5)

        result = self.run_generate(request)

        self.assertEqual(result.urls, ["https://fal.media/clip.mp4"])
        self.assertEqual(self.fal.subscribe.await_args.kwargs["arguments"]["duration"], 5)


class TestChatGeneration(OrchestratorTestCase):
    """Test cases for the chat-completions route"""

    def setUp(self):
        super().setUp()
        self.storage.set_api_config("sk-test", "https://api.example.com")

    def test_example_stream(self):
        callbacks = make_callbacks()
        request = GenerationRequest(prompt="a cat", family=BackendFamily.CHAT_COMPATIBLE, model="gpt-4o-image")

        result = self.run_generate(request, callbacks)

        self.assertEqual(
            [c.args for c in callbacks.on_message.call_args_list],
            [("here: ",), ("[img](https://x/y.png)",)],
        )
        callbacks.on_complete.assert_called_once_with("https://x/y.png")
        callbacks.on_error.assert_not_called()
        self.assertEqual(result.urls, ["https://x/y.png"])
        self.assertEqual(self.storage.get_history()[0].url, "https://x/y.png")
        self.assertEqual(str(self.requests[0].url), "https://api.example.com/v1/chat/completions")

    def test_large_image_is_uploaded_small_image_is_inline(self):
        large = make_data_url(2 * MIB)
        small = make_data_url(MIB // 2)
        request = GenerationRequest(prompt="combine", family=BackendFamily.CHAT_COMPATIBLE,
                                    model="gpt-4o-image", model_tag=ModelTag.IMAGE_TO_IMAGE,
                                    image_conditioned=True, source_images=[large, small])

        self.run_generate(request, make_callbacks())

        self.uploader.upload.assert_awaited_once()
        self.assertEqual(len(self.uploader.upload.await_args.args[0]), 2 * MIB)

        content = json.loads(self.requests[0].content)["messages"][0]["content"]
        self.assertEqual(content[1]["image_url"]["url"], "https://fal.media/files/uploaded.png")
        self.assertEqual(content[2]["image_url"]["url"], small)

    def test_upload_failure_goes_to_on_error(self):
        self.uploader.upload.side_effect = RuntimeError("storage unavailable")
        callbacks = make_callbacks()
        request = GenerationRequest(prompt="edit", family=BackendFamily.CHAT_COMPATIBLE,
                                    model="gpt-4o-image", model_tag=ModelTag.IMAGE_TO_IMAGE,
                                    image_conditioned=True, source_images=[make_data_url(2 * MIB)])

        result = self.run_generate(request, callbacks)

        self.assertFalse(result.succeeded)
        self.assertIsInstance(callbacks.on_error.call_args.args[0], UploadFailedError)
        callbacks.on_complete.assert_not_called()
        self.assertEqual(len(self.requests), 0)
        self.assertEqual(self.storage.get_history(), [])

    def test_rejected_stream_is_not_recorded(self):
        self.response_factory = lambda request: httpx.Response(401, json={"message": "Invalid token"})
        callbacks = make_callbacks()
        request = GenerationRequest(prompt="a cat", family=BackendFamily.CHAT_COMPATIBLE, model="gpt-4o-image")

        result = self.run_generate(request, callbacks)

        self.assertFalse(result.succeeded)
        self.assertIsInstance(callbacks.on_error.call_args.args[0], RequestRejectedError)
        self.assertEqual(self.storage.get_history(), [])

    def test_without_callbacks(self):
        request = GenerationRequest(prompt="a cat", family=BackendFamily.CHAT_COMPATIBLE, model="gpt-4o-image")
        result = self.run_generate(request)
        self.assertEqual(result.urls, ["https://x/y.png"])

    def test_task_cancel_during_stalled_stream(self):
        body_closed = []

        async def stalled_body():
            try:
                yield delta_line("thinking ")
                await asyncio.sleep(3600)
                yield delta_line("[img](https://x/y.png)")
            finally:
                body_closed.append(True)

        self.response_factory = lambda request: httpx.Response(200, content=stalled_body())
        callbacks = make_callbacks()
        request = GenerationRequest(prompt="a cat", family=BackendFamily.CHAT_COMPATIBLE, model="gpt-4o-image")

        async def go():
            async with httpx.AsyncClient(transport=httpx.MockTransport(self.handler)) as http_client:
                orchestrator = GenerationOrchestrator(self.storage, uploader=self.uploader, http_client=http_client)
                task = asyncio.ensure_future(orchestrator.generate(request, callbacks))
                await asyncio.sleep(0.1)
                task.cancel()
                await asyncio.wait({task}, timeout=1)
                return task

        task = asyncio.run(go())

        self.assertTrue(task.cancelled())
        self.assertEqual(body_closed, [True])
        callbacks.on_message.assert_called_once_with("thinking ")
        callbacks.on_complete.assert_not_called()
        callbacks.on_error.assert_not_called()
        self.assertEqual(self.storage.get_history(), [])

    def test_cancel_event_during_stalled_stream(self):
        async def stalled_body():
            yield delta_line("thinking ")
            await asyncio.sleep(3600)
            yield delta_line("[img](https://x/y.png)")

        self.response_factory = lambda request: httpx.Response(200, content=stalled_body())
        callbacks = make_callbacks()
        request = GenerationRequest(prompt="a cat", family=BackendFamily.CHAT_COMPATIBLE, model="gpt-4o-image")

        async def go():
            cancel_event = asyncio.Event()
            async with httpx.AsyncClient(transport=httpx.MockTransport(self.handler)) as http_client:
                orchestrator = GenerationOrchestrator(self.storage, uploader=self.uploader, http_client=http_client)
                task = asyncio.ensure_future(orchestrator.generate(request, callbacks, cancel_event=cancel_event))
                await asyncio.sleep(0.1)
                cancel_event.set()
                return await asyncio.wait_for(task, timeout=1)

        result = asyncio.run(go())

        self.assertFalse(result.succeeded)
        callbacks.on_complete.assert_not_called()
        callbacks.on_error.assert_not_called()
        self.assertEqual(self.storage.get_history(), [])

    def test_masked_edit_uses_images_edits(self):
        self.response_factory = lambda request: httpx.Response(
            200, json={"data": [{"url": "https://cdn.example.com/edited.png"}]}
        )
        mask = make_data_url(8)
        request = GenerationRequest(prompt="remove the hat", family=BackendFamily.CHAT_COMPATIBLE,
                                    model="gpt-image-1", model_tag=ModelTag.IMAGE_TO_IMAGE,
                                    image_conditioned=True, source_images=[make_data_url(8)], mask=mask)

        result = self.run_generate(request, make_callbacks())

        self.assertEqual(result.urls, ["https://cdn.example.com/edited.png"])
        self.assertEqual(str(self.requests[0].url), "https://api.example.com/v1/images/edits")
        self.assertEqual(self.storage.get_history()[0].url, "https://cdn.example.com/edited.png")


if __name__ == '__main__':
    unittest.main()
