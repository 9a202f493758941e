from __future__ import annotations

import codecs
import json
import logging
from enum import Enum
from typing import AsyncIterable, AsyncIterator, Callable, List, Optional, Tuple, Union

from ..types import DeltaCallback, JSONDict, ProgressCallback, StreamError, StreamResult

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
FRAME_DELIMITER = "\n\n"

# Fields of a terminal frame that describe the stream itself rather than its result.
TERMINAL_CONTROL_FIELDS = ("done", "content", "full_response")

Chunk = Union[bytes, str]


class StreamState(Enum):
    READING = "reading"
    PARSING = "parsing"
    TERMINAL = "terminal"
    ERROR = "error"


def split_frames(buffer: str) -> Tuple[List[str], str]:
    parts = buffer.split(FRAME_DELIMITER)
    return parts[:-1], parts[-1]


def parse_data_line(line: str) -> Optional[JSONDict]:
    if not line.startswith(DATA_PREFIX):
        return None
    raw = line[len(DATA_PREFIX) :]
    if raw.startswith(" "):
        raw = raw[1:]
    try:
        payload = json.loads(raw)
    except ValueError as e:
        logger.warning("Skipping malformed SSE data line %r: %s", raw[:200], e)
        return None
    if not isinstance(payload, dict):
        logger.warning("Skipping non-object SSE payload: %r", raw[:200])
        return None
    return payload


def iter_frame_payloads(frame: str) -> List[JSONDict]:
    payloads: List[JSONDict] = []
    for line in frame.split("\n"):
        payload = parse_data_line(line)
        if payload is not None:
            payloads.append(payload)
    return payloads


async def iter_sse_payloads(chunks: AsyncIterable[Chunk]) -> AsyncIterator[JSONDict]:
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""

    async for chunk in chunks:
        part = chunk if isinstance(chunk, str) else decoder.decode(chunk)
        if not part:
            continue
        buffer = (buffer + part).replace("\r\n", "\n")
        frames, buffer = split_frames(buffer)
        for frame in frames:
            for payload in iter_frame_payloads(frame):
                yield payload

    buffer = (buffer + decoder.decode(b"", final=True)).replace("\r\n", "\n")
    if buffer.strip():
        for payload in iter_frame_payloads(buffer):
            yield payload


def _error_message(payload: JSONDict) -> str:
    message = payload.get("message")
    if isinstance(message, str) and message:
        return message
    error = payload.get("error")
    if isinstance(error, str) and error:
        return error
    return "Stream reported an error"


def _content_delta(payload: JSONDict) -> str:
    content = payload.get("content")
    if content is None:
        return ""
    return content if isinstance(content, str) else str(content)


def build_terminal_result(payload: JSONDict, aggregate: str) -> StreamResult:
    full_response = payload.get("full_response")
    metadata = {k: v for k, v in payload.items() if k not in TERMINAL_CONTROL_FIELDS}
    return StreamResult(
        full_text=full_response if isinstance(full_response, str) else aggregate,
        metadata=metadata,
        completed=True,
    )


class TextDeltaStream:
    """Text deltas of one SSE body. Iterate once; ``result`` is set when it ends."""

    def __init__(
        self,
        chunks: AsyncIterable[Chunk],
        *,
        on_progress: Optional[ProgressCallback] = None,
        on_close: Optional[Callable[[], object]] = None,
    ):
        self._chunks = chunks
        self._on_progress = on_progress
        self._on_close = on_close
        self._started = False
        self.aggregate = ""
        self.state = StreamState.READING
        self.result = StreamResult()

    def __aiter__(self) -> AsyncIterator[str]:
        if self._started:
            raise RuntimeError("TextDeltaStream can only be iterated once")
        self._started = True
        return self._deltas()

    async def _deltas(self) -> AsyncIterator[str]:
        payloads = iter_sse_payloads(self._chunks)
        try:
            async for payload in payloads:
                self.state = StreamState.PARSING

                if payload.get("error"):
                    self.state = StreamState.ERROR
                    raise StreamError(_error_message(payload), payload=payload)

                if payload.get("done"):
                    delta = _content_delta(payload)
                    self.aggregate += delta
                    self.result = build_terminal_result(payload, self.aggregate)
                    self.state = StreamState.TERMINAL
                    if delta:
                        yield delta
                    return

                if "content" in payload:
                    delta = _content_delta(payload)
                    self.aggregate += delta
                    if delta:
                        yield delta
                elif self._on_progress is not None:
                    self._on_progress(payload)

                self.state = StreamState.READING

            logger.info("Stream closed before a terminal frame; returning partial result")
            self.result = StreamResult(full_text=self.aggregate, completed=False)
            self.state = StreamState.TERMINAL
        finally:
            await payloads.aclose()
            if self._on_close is not None:
                self._on_close()


async def read_text_stream(
    chunks: AsyncIterable[Chunk],
    *,
    on_delta: Optional[DeltaCallback] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> StreamResult:
    stream = TextDeltaStream(chunks, on_progress=on_progress)
    async for delta in stream:
        if on_delta is not None:
            on_delta(delta)
    return stream.result
