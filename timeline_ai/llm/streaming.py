"""Incremental stream decoding for provider responses.

Two framings:
- NDJSON: one JSON object per line, `{"message": {"content": ...}, "done": bool}`
  (local inference server)
- Event stream: `data: <json>` lines terminated by `data: [DONE]`
  (cloud completion APIs)

Both read raw bytes as they arrive, split on newlines, skip blank lines and
log-and-skip lines that do not parse. The reader is released exactly once,
whatever happens.
"""

import codecs
import json
import logging
from typing import Callable, Iterable, Optional, Protocol

import httpx

from timeline_ai.llm.errors import StreamCancelledError, StreamDecodeError
from timeline_ai.llm.schemas import StreamCallbacks

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"

# (delta, done) for a recognised frame, None for a line to ignore
ParsedFrame = Optional[tuple[str, bool]]


class StreamReader(Protocol):
    """Byte source for a decoder."""

    def iter_chunks(self) -> Iterable[bytes]: ...

    def release(self) -> None: ...


class HttpxStreamReader:
    """Adapts an open httpx streaming response to StreamReader."""

    def __init__(self, response: httpx.Response):
        self._response = response

    def iter_chunks(self) -> Iterable[bytes]:
        return self._response.iter_bytes()

    def release(self) -> None:
        self._response.close()


def _content_of(payload: dict) -> str:
    content = payload.get("content")
    if content is None:
        return ""
    if not isinstance(content, str):
        raise StreamDecodeError(f"Expected string content, got {type(content).__name__}")
    return content


def parse_ndjson_line(line: str) -> ParsedFrame:
    try:
        data = json.loads(line)
    except json.JSONDecodeError as e:
        raise StreamDecodeError(f"Invalid NDJSON frame: {e}") from e
    if not isinstance(data, dict):
        raise StreamDecodeError(f"Expected a JSON object, got {type(data).__name__}")

    message = data.get("message")
    if message is None:
        return "", bool(data.get("done"))
    if not isinstance(message, dict):
        raise StreamDecodeError(
            f"Expected \"message\" to be an object, got {type(message).__name__}"
        )
    return _content_of(message), bool(data.get("done"))


def parse_event_stream_line(line: str) -> ParsedFrame:
    # event:, id: and ":" comment lines carry nothing we use
    if not line.startswith("data:"):
        return None

    payload = line[len("data:"):].strip()
    if payload == DONE_SENTINEL:
        return "", True

    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise StreamDecodeError(f"Invalid event-stream payload: {e}") from e
    if not isinstance(data, dict):
        raise StreamDecodeError(f"Expected a JSON object, got {type(data).__name__}")

    choices = data.get("choices")
    if choices is None:
        return "", False
    if not isinstance(choices, list):
        raise StreamDecodeError(
            f"Expected \"choices\" to be a list, got {type(choices).__name__}"
        )
    if not choices:
        return "", False

    choice = choices[0]
    delta = choice.get("delta") if isinstance(choice, dict) else None
    if delta is None:
        return "", False
    if not isinstance(delta, dict):
        raise StreamDecodeError(
            f"Expected \"delta\" to be an object, got {type(delta).__name__}"
        )
    return _content_of(delta), False


def decode_ndjson_stream(
    reader: StreamReader, callbacks: StreamCallbacks, label: str = ""
) -> str:
    """Decode an NDJSON stream. Returns the full content."""
    return _decode_lines(reader, callbacks, parse_ndjson_line, label)


def decode_event_stream(
    reader: StreamReader, callbacks: StreamCallbacks, label: str = ""
) -> str:
    """Decode a `data:` event stream. Returns the full content."""
    return _decode_lines(reader, callbacks, parse_event_stream_line, label)


def _decode_lines(
    reader: StreamReader,
    callbacks: StreamCallbacks,
    parse_line: Callable[[str], ParsedFrame],
    label: str,
) -> str:
    # Multi-byte characters may straddle chunk boundaries
    text_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""
    parts: list[str] = []
    skipped = 0

    def handle(raw_line: str) -> bool:
        """Process one line; True once the terminal marker is seen."""
        nonlocal skipped
        line = raw_line.strip()
        if not line:
            return False
        try:
            frame = parse_line(line)
        except StreamDecodeError as e:
            skipped += 1
            logger.warning(f"[{label}] Skipping malformed stream line: {e}")
            return False
        if frame is None:
            return False
        delta, done = frame
        if delta:
            parts.append(delta)
            callbacks.emit_content(delta)
        return done

    try:
        for chunk in reader.iter_chunks():
            if callbacks.is_cancelled():
                raise StreamCancelledError(f"[{label}] Stream cancelled by caller")
            buffer += text_decoder.decode(chunk)
            while "\n" in buffer:
                line, buffer = buffer.split("\n", 1)
                if handle(line):
                    full = "".join(parts)
                    callbacks.emit_complete(full)
                    return full

        buffer += text_decoder.decode(b"", final=True)
        if buffer and handle(buffer):
            full = "".join(parts)
            callbacks.emit_complete(full)
            return full

        # Stream closed without a terminal marker: deliver what arrived
        full = "".join(parts)
        logger.debug(
            f"[{label}] Stream ended without terminal marker "
            f"({len(full)} chars, {skipped} skipped lines)"
        )
        callbacks.emit_complete(full)
        return full
    finally:
        reader.release()
