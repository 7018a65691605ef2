"""
Streaming chat-completions client.

The response body is an SSE-like stream of ``data: <json>`` lines ending
with ``data: [DONE]``. Network chunks do not line up with lines (or even
with UTF-8 characters), so bytes go through ``LineAccumulator`` first and
only complete lines reach ``parse_stream_line``. The image arrives as a
markdown link inside one of the text deltas; the first link found ends the
stream.
"""
import asyncio
import codecs
import json
import re
from enum import Enum
from typing import AsyncIterator, Iterable, Iterator, List, Optional, Union

import httpx

from ai.exceptions.generation_exceptions import (
    GenerationError,
    InvalidResponseShapeError,
    NoResponseBodyError,
    RequestRejectedError,
    StreamInterruptedError,
)
from ai.models.generation_models import ChatPayload, StreamCallbacks, StreamEvent, TerminalSignal, TextDelta
from config import CHAT_COMPLETIONS_ENDPOINT, HTTP_CONNECT_TIMEOUT
from utils.logging_config import get_logger

logger = get_logger(__name__)

ASSET_LINK_RE = re.compile(r"\[.*?\]\((.*?)\)")
DONE_LINE = "data: [DONE]"
DATA_PREFIX_RE = re.compile(r"^data:\s?")


def build_request_url(base_url: str, endpoint: str) -> str:
    """Join base URL and endpoint; a trailing '#' means use the base URL as-is"""
    if base_url.endswith("#"):
        return base_url[:-1]
    return f"{base_url}{endpoint}"


def extract_asset_url(text: str) -> Optional[str]:
    """First ``[label](url)`` link in a single delta, if any"""
    match = ASSET_LINK_RE.search(text)
    if match and match.group(1):
        return match.group(1)
    return None


def parse_stream_line(line: str) -> Optional[TextDelta]:
    """Turn one complete stream line into a text delta, or None to skip it"""
    line = line.strip()
    if not line or line == DONE_LINE:
        return None

    json_str = DATA_PREFIX_RE.sub("", line, count=1)
    try:
        data = json.loads(json_str)
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse stream line: {e}")
        return None

    try:
        content = data["choices"][0]["delta"]["content"]
    except (KeyError, IndexError, TypeError):
        if isinstance(data, dict) and data.get("error"):
            logger.warning(f"Stream carried an error event: {data['error']}")
        return None

    if isinstance(content, str) and content:
        return TextDelta(content)
    return None


class LineAccumulator:
    """Buffers decoded text and hands out complete lines only"""

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: Union[bytes, str]) -> List[str]:
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        self._buffer += chunk

        lines = self._buffer.split("\n")
        # Last segment may be an unfinished line
        self._buffer = lines.pop()
        return lines

    def flush(self) -> List[str]:
        self._buffer += self._decoder.decode(b"", final=True)
        remainder, self._buffer = self._buffer, ""
        if not remainder.strip():
            return []
        return remainder.split("\n")


class ParserState(Enum):
    READING = "reading"
    FLUSH = "flush"
    DONE = "done"


class StreamParser:
    """
    Incremental parser over raw stream chunks.

    ``feed`` handles everything that became a complete line, ``finish``
    handles what is left once the transport reports the end. Nothing is
    parsed after the terminal signal.
    """

    def __init__(self):
        self.state = ParserState.READING
        self._lines = LineAccumulator()

    @property
    def done(self) -> bool:
        return self.state is ParserState.DONE

    def feed(self, chunk: Union[bytes, str]) -> List[StreamEvent]:
        if self.state is not ParserState.READING:
            return []
        return self._process(self._lines.feed(chunk))

    def finish(self) -> List[StreamEvent]:
        if self.state is not ParserState.READING:
            return []
        self.state = ParserState.FLUSH
        events = self._process(self._lines.flush())
        self.state = ParserState.DONE
        return events

    def _process(self, lines: List[str]) -> List[StreamEvent]:
        events: List[StreamEvent] = []
        for line in lines:
            delta = parse_stream_line(line)
            if delta is None:
                continue

            events.append(delta)
            url = extract_asset_url(delta.text)
            if url:
                events.append(TerminalSignal(url))
                self.state = ParserState.DONE
                break
        return events


def iter_stream_events(chunks: Iterable[Union[bytes, str]]) -> Iterator[StreamEvent]:
    """Run a whole chunk sequence through a fresh parser"""
    parser = StreamParser()
    for chunk in chunks:
        yield from parser.feed(chunk)
        if parser.done:
            return
    yield from parser.finish()


def rejection_from_response(response: httpx.Response, default_message: str) -> RequestRejectedError:
    """Build the error for a non-success response, preferring the server's own message"""
    try:
        data = response.json()
    except (ValueError, httpx.ResponseNotRead):
        data = None

    if isinstance(data, dict):
        error = data.get("error") if isinstance(data.get("error"), dict) else {}
        message = data.get("message") or error.get("message") or default_message
        code = data.get("code") or error.get("code")
        return RequestRejectedError(str(message), status_code=response.status_code,
                                    code=str(code) if code else None)

    return RequestRejectedError(default_message, status_code=response.status_code)


class _CallbackGuard:
    """Delivers at most one of complete/error, and nothing after it or after cancellation"""

    def __init__(self, callbacks: StreamCallbacks, cancel_event: Optional[asyncio.Event]):
        self.callbacks = callbacks
        self.cancel_event = cancel_event
        self.finished = False

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def message(self, text: str) -> None:
        if not self.finished and not self.cancelled:
            self.callbacks.on_message(text)

    def complete(self, url: str) -> None:
        if self.finished or self.cancelled:
            return
        self.finished = True
        self.callbacks.on_complete(url)

    def error(self, error: GenerationError) -> None:
        if self.finished or self.cancelled:
            return
        self.finished = True
        logger.error(f"Stream generation failed: {error}")
        self.callbacks.on_error(error)


class StreamingChatClient:
    """OpenAI-compatible chat-completions client used in streaming mode"""

    def __init__(self, base_url: str, api_key: str, http_client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url
        self.api_key = api_key
        self._http_client = http_client

    def _get_headers(self):
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    async def stream(self, payload: ChatPayload, callbacks: StreamCallbacks,
                     cancel_event: Optional[asyncio.Event] = None) -> Optional[str]:
        """
        Send the request and drive ``callbacks`` from the streamed answer.

        Failures are reported through ``callbacks.on_error`` and never
        raised. Returns the asset URL when the stream completed, None
        otherwise (error or cancellation).
        """
        guard = _CallbackGuard(callbacks, cancel_event)
        url = build_request_url(self.base_url, CHAT_COMPLETIONS_ENDPOINT)
        client = self._http_client or httpx.AsyncClient(timeout=httpx.Timeout(None, connect=HTTP_CONNECT_TIMEOUT))

        logger.debug(f"Streaming chat request to {url} with model {payload.body.get('model')}")
        try:
            async with client.stream("POST", url, headers=self._get_headers(), json=payload.body) as response:
                if not response.is_success:
                    await response.aread()
                    logger.error(f"Chat request rejected with HTTP {response.status_code}")
                    guard.error(rejection_from_response(response, "Image generation failed"))
                    return None
                return await self._consume(response, guard)
        except httpx.HTTPError as e:
            guard.error(StreamInterruptedError(f"Failed to process response data: {e}"))
            return None
        finally:
            if self._http_client is None:
                await client.aclose()

    @staticmethod
    async def _read_chunk(chunks: AsyncIterator[bytes]) -> Optional[bytes]:
        try:
            return await chunks.__anext__()
        except StopAsyncIteration:
            return None

    async def _next_chunk(self, chunks: AsyncIterator[bytes],
                          cancel_event: Optional[asyncio.Event]) -> Optional[bytes]:
        """Next body chunk, or None once the body ends or the caller cancels"""
        if cancel_event is None:
            return await self._read_chunk(chunks)

        read = asyncio.ensure_future(self._read_chunk(chunks))
        cancelled = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({read, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancelled.cancel()
            if not read.done():
                # A stalled read must finish unwinding before the response is closed
                read.cancel()
                await asyncio.wait({read})

        if read.cancelled():
            return None
        return read.result()

    async def _consume(self, response: httpx.Response, guard: _CallbackGuard) -> Optional[str]:
        parser = StreamParser()
        received = False
        chunks = response.aiter_bytes()

        while True:
            chunk = await self._next_chunk(chunks, guard.cancel_event)
            if guard.cancelled:
                logger.info("Stream abandoned by caller, closing connection")
                return None
            if chunk is None:
                break
            if not chunk:
                continue
            received = True

            for event in parser.feed(chunk):
                if guard.cancelled:
                    return None
                url = self._dispatch(event, guard)
                if url:
                    return url

        if guard.cancelled:
            return None

        if not received:
            guard.error(NoResponseBodyError("Failed to read response"))
            return None

        for event in parser.finish():
            if guard.cancelled:
                return None
            url = self._dispatch(event, guard)
            if url:
                return url

        guard.error(InvalidResponseShapeError("Stream ended without an image link"))
        return None

    @staticmethod
    def _dispatch(event: StreamEvent, guard: _CallbackGuard) -> Optional[str]:
        if isinstance(event, TerminalSignal):
            guard.complete(event.url)
            return event.url
        guard.message(event.text)
        return None
