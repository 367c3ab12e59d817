"""
Unified stream normalizer.

Turns a provider's raw byte stream (OpenAI-style chat-completion chunks or
already-canonical ``{token, reasoning}`` records, both framed as SSE) into a
single SSE stream of ``{token, reasoning}`` events ending with exactly one
``data: [DONE]`` line.
"""
import codecs
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Union

from .errors import MalformedUpstreamData
from .types import StreamEvent

logger = logging.getLogger(__name__)

DONE_MARKER = "[DONE]"
DONE_LINE = f"data: {DONE_MARKER}\n\n"

THINK_OPEN = "<think>"
THINK_CLOSE = "</think>"


def make_event(token: str = "", reasoning: str = "") -> StreamEvent:
    return {"token": token, "reasoning": reasoning}


def sse_pack(event: StreamEvent) -> str:
    """Encode one event as an SSE record."""
    return f"data: {json.dumps(event, ensure_ascii=False)}\n\n"


def parse_record(payload: str) -> Dict[str, Any]:
    """
    Decode the JSON payload of one SSE data line.

    Raises:
        MalformedUpstreamData: If the payload is not a JSON object.
    """
    try:
        obj = json.loads(payload)
    except json.JSONDecodeError as e:
        raise MalformedUpstreamData(f"Invalid JSON in SSE data: {payload[:80]!r}") from e
    if not isinstance(obj, dict):
        raise MalformedUpstreamData(f"Unexpected SSE payload: {payload[:80]!r}")
    return obj


# =============================================================================
# SSE Framing
# =============================================================================

class SSEBuffer:
    """
    Accumulates text across network reads and returns the ``data`` payloads
    of complete (blank-line terminated) records. Incomplete trailing data is
    held until the next feed.
    """

    def __init__(self):
        self._buffer = ""

    @property
    def pending(self) -> str:
        return self._buffer

    def feed(self, text: str) -> List[str]:
        buffer = self._buffer + text
        # A "\r" at the end of one read may pair with the "\n" of the next
        held = ""
        if buffer.endswith("\r"):
            buffer, held = buffer[:-1], "\r"
        records = self._normalize(buffer).split("\n\n")
        self._buffer = records.pop() + held
        payloads = []
        for record in records:
            payload = self._record_data(record)
            if payload is not None:
                payloads.append(payload)
        return payloads

    def flush(self) -> List[str]:
        """Treat whatever is left as a final record."""
        record, self._buffer = self._normalize(self._buffer), ""
        payload = self._record_data(record)
        return [payload] if payload is not None else []

    @staticmethod
    def _normalize(text: str) -> str:
        # SSE lines may end with "\r\n", "\n" or a bare "\r"
        return text.replace("\r\n", "\n").replace("\r", "\n")

    @staticmethod
    def _record_data(record: str) -> Optional[str]:
        data_lines = []
        for line in record.split("\n"):
            # Comments (": keep-alive") and other fields are ignored
            if not line.startswith("data:"):
                continue
            value = line[len("data:"):]
            if value.startswith(" "):
                value = value[1:]
            data_lines.append(value)
        if not data_lines:
            return None
        return "\n".join(data_lines)


# =============================================================================
# Inline <think> Tags
# =============================================================================

def _partial_tag_suffix(text: str, tag: str) -> int:
    """Length of the longest suffix of ``text`` that is a proper prefix of ``tag``."""
    for size in range(min(len(text), len(tag) - 1), 0, -1):
        if text.endswith(tag[:size]):
            return size
    return 0


class ThinkTagParser:
    """
    Incremental splitter for reasoning inlined as ``<think>...</think>``.

    Tracks whether the stream is inside a think block across feeds and
    holds back any trailing text that could be the start of a tag.
    """

    def __init__(self):
        self.inside_think = False
        self._pending = ""

    def feed(self, text: str) -> List[StreamEvent]:
        events: List[StreamEvent] = []
        self._pending += text
        while self._pending:
            tag = THINK_CLOSE if self.inside_think else THINK_OPEN
            index = self._pending.find(tag)
            if index != -1:
                self._emit(events, self._pending[:index])
                self._pending = self._pending[index + len(tag):]
                self.inside_think = not self.inside_think
                continue
            keep = len(self._pending) - _partial_tag_suffix(self._pending, tag)
            self._emit(events, self._pending[:keep])
            self._pending = self._pending[keep:]
            break
        return events

    def flush(self) -> List[StreamEvent]:
        events: List[StreamEvent] = []
        self._emit(events, self._pending)
        self._pending = ""
        return events

    def _emit(self, events: List[StreamEvent], text: str) -> None:
        if not text:
            return
        if self.inside_think:
            events.append(make_event(reasoning=text))
        else:
            events.append(make_event(token=text))


# =============================================================================
# Normalizer
# =============================================================================

class StreamNormalizer:
    """
    Per-stream state machine: STREAMING until a done marker, the end of the
    upstream, or a read error moves it to CLOSED (exactly once).
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._sse = SSEBuffer()
        self._think = ThinkTagParser()
        self.closed = False

    @property
    def inside_think(self) -> bool:
        return self._think.inside_think

    def feed(self, chunk: Union[bytes, str]) -> List[StreamEvent]:
        """
        Process one network read. Returns the events it completes.
        """
        if self.closed:
            return []
        text = self._decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
        events: List[StreamEvent] = []
        for payload in self._sse.feed(text):
            if payload.strip() == DONE_MARKER:
                events.extend(self._think.flush())
                self.closed = True
                return events
            events.extend(self._handle_payload(payload))
        return events

    def close(self) -> List[StreamEvent]:
        """
        Flush buffered data after the upstream ended. Idempotent.
        """
        if self.closed:
            return []
        events: List[StreamEvent] = []
        payloads = self._sse.feed(self._decoder.decode(b"", final=True))
        payloads.extend(self._sse.flush())
        for payload in payloads:
            if payload.strip() == DONE_MARKER:
                break
            events.extend(self._handle_payload(payload))
        events.extend(self._think.flush())
        self.closed = True
        return events

    def _handle_payload(self, payload: str) -> List[StreamEvent]:
        try:
            record = parse_record(payload)
        except MalformedUpstreamData as e:
            logger.warning("Skipping malformed upstream data: %s", e)
            return []

        if "error" in record:
            logger.warning("Upstream reported an error mid-stream: %s", record["error"])
            return []

        if "choices" in record:
            return self._handle_completion_chunk(record)

        if "token" in record or "reasoning" in record:
            return self._handle_canonical(record)

        return []

    def _handle_completion_chunk(self, record: Dict[str, Any]) -> List[StreamEvent]:
        choices = record.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            return []
        delta = choices[0].get("delta") or choices[0].get("message") or {}

        events: List[StreamEvent] = []
        reasoning = delta.get("reasoning") or delta.get("reasoning_content")
        if isinstance(reasoning, str) and reasoning:
            events.append(make_event(reasoning=reasoning))

        content = delta.get("content")
        # Handle both list and string content
        if isinstance(content, list):
            content = "".join(p.get("text", "") for p in content if isinstance(p, dict))
        if isinstance(content, str) and content:
            events.extend(self._think.feed(content))
        return events

    @staticmethod
    def _handle_canonical(record: Dict[str, Any]) -> List[StreamEvent]:
        token = record.get("token") or ""
        reasoning = record.get("reasoning") or ""
        if not isinstance(token, str) or not isinstance(reasoning, str):
            logger.warning("Skipping canonical record with non-string fields")
            return []
        if not token and not reasoning:
            # End-of-reasoning delimiter
            return [make_event()]
        events = []
        if reasoning:
            events.append(make_event(reasoning=reasoning))
        if token:
            events.append(make_event(token=token))
        return events


async def normalize_stream(
    raw: AsyncIterator[bytes],
    normalizer: Optional[StreamNormalizer] = None,
) -> AsyncIterator[str]:
    """
    Re-emit a provider's raw stream as canonical SSE lines.

    The terminal ``[DONE]`` line is always last and emitted once. The
    upstream iterator is closed on every exit path, including client
    disconnects.
    """
    normalizer = normalizer or StreamNormalizer()
    try:
        async for chunk in raw:
            for event in normalizer.feed(chunk):
                yield sse_pack(event)
            if normalizer.closed:
                break
    except Exception:
        logger.exception("Upstream stream failed, closing")
    finally:
        aclose = getattr(raw, "aclose", None)
        if aclose is not None:
            await aclose()

    for event in normalizer.close():
        yield sse_pack(event)
    yield DONE_LINE


async def iter_events(chunks: AsyncIterator[Union[bytes, str]]) -> AsyncIterator[StreamEvent]:
    """
    Decode a canonical SSE stream (as produced by ``normalize_stream``)
    back into events, stopping at ``[DONE]``.
    """
    normalizer = StreamNormalizer()
    async for chunk in chunks:
        for event in normalizer.feed(chunk):
            yield event
        if normalizer.closed:
            return
    for event in normalizer.close():
        yield event
