"""Tests for the images/edits client"""
import asyncio
import os
import sys
import unittest

import httpx

# Add the project root to the Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from ai.exceptions.generation_exceptions import (
    GenerationFailedError,
    InvalidResponseShapeError,
    RequestRejectedError,
)
from ai.image_edits import ImageEditClient
from ai.models.generation_models import ImageEditPayload

PAYLOAD = ImageEditPayload(
    data={"prompt": "remove the hat", "model": "gpt-image-1", "n": "1"},
    files={
        "image": ("image.png", b"\x89PNG-image", "image/png"),
        "mask": ("mask.png", b"\x89PNG-mask", "image/png"),
    },
)


def run_edit(handler, base_url="https://api.example.com"):
    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            return await ImageEditClient(base_url, "sk-test", http_client=http_client).edit(PAYLOAD)
    return asyncio.run(go())


class TestImageEditClient(unittest.TestCase):
    """Test cases for ImageEditClient"""

    def test_multipart_request(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["content_type"] = request.headers["Content-Type"]
            seen["body"] = request.content
            return httpx.Response(200, json={"data": [{"url": "https://cdn.example.com/edited.png"}]})

        urls = run_edit(handler)

        self.assertEqual(urls, ["https://cdn.example.com/edited.png"])
        self.assertEqual(seen["url"], "https://api.example.com/v1/images/edits")
        self.assertEqual(seen["auth"], "Bearer sk-test")
        self.assertTrue(seen["content_type"].startswith("multipart/form-data"))
        self.assertIn(b'name="prompt"', seen["body"])
        self.assertIn(b'name="mask"; filename="mask.png"', seen["body"])
        self.assertIn(b"\x89PNG-image", seen["body"])

    def test_hash_base_url(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            return httpx.Response(200, json={"data": [{"url": "https://cdn.example.com/edited.png"}]})

        run_edit(handler, base_url="https://proxy.example.com/edit#")
        self.assertEqual(seen["url"], "https://proxy.example.com/edit")

    def test_b64_result_becomes_data_url(self):
        def handler(request):
            return httpx.Response(200, json={"data": [{"b64_json": "aGVsbG8="}]})

        self.assertEqual(run_edit(handler), ["data:image/png;base64,aGVsbG8="])

    def test_rejected(self):
        def handler(request):
            return httpx.Response(400, json={"error": {"message": "Mask size mismatch", "code": "invalid_mask"}})

        with self.assertRaises(RequestRejectedError) as ctx:
            run_edit(handler)
        self.assertEqual(ctx.exception.message, "Mask size mismatch")
        self.assertEqual(ctx.exception.code, "invalid_mask")
        self.assertEqual(ctx.exception.status_code, 400)

    def test_transport_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        with self.assertRaises(GenerationFailedError):
            run_edit(handler)

    def test_empty_result(self):
        def handler(request):
            return httpx.Response(200, json={"data": []})

        with self.assertRaises(InvalidResponseShapeError):
            run_edit(handler)

    def test_non_json_result(self):
        def handler(request):
            return httpx.Response(200, text="<html>oops</html>")

        with self.assertRaises(InvalidResponseShapeError):
            run_edit(handler)


if __name__ == '__main__':
    unittest.main()
