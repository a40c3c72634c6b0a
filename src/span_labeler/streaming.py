"""Incremental span extraction from a streamed NDJSON response.

A provider's streaming call runs as a background task and pushes text chunks
into a ``ChunkChannel`` through plain synchronous callbacks. The foreground
async generator drains the channel in order, splits the accumulated text on
newlines, cleans each complete line and yields the spans that parse.

Everything runs on one event loop. The only suspension point on the consumer
side is ``ChunkChannel.receive`` waiting for the next message, so spans come
out strictly in the order their lines completed.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
import json
import logging
import re

from span_labeler.constants import STREAM_COMPACTION_THRESHOLD
from span_labeler.core.types import Span
from span_labeler.recovery.scanner import coerce_span

logger = logging.getLogger(__name__)

_FENCE_PREFIX_RE = re.compile(r"^```(?:json)?", re.IGNORECASE)
_FENCE_SUFFIX_RE = re.compile(r"```$")

# Producer tasks outlive an abandoned consumer; hold references until they end
_BACKGROUND_TASKS: set[asyncio.Task[None]] = set()


# --- Channel messages ---


@dataclass(frozen=True, slots=True)
class Data:
    """A text fragment delivered by the provider."""

    chunk: str


@dataclass(frozen=True, slots=True)
class End:
    """The provider finished streaming."""


@dataclass(frozen=True, slots=True)
class Failed:
    """The provider's streaming call raised."""

    error: BaseException


type StreamMessage = Data | End | Failed


class ChunkChannel:
    """Single-producer, single-consumer channel for streamed text.

    ``push``, ``finish`` and ``fail`` are synchronous so they can be handed to
    a provider as its chunk callback. Messages after ``finish`` or ``fail``
    are dropped.

    Consumed messages are released lazily: once the read index passes
    ``compaction_threshold`` and covers at least half of the backing list,
    the list is re-sliced and the index reset.
    """

    def __init__(self, *, compaction_threshold: int = STREAM_COMPACTION_THRESHOLD):
        self._messages: list[StreamMessage] = []
        self._head = 0
        self._closed = False
        self._waiter: asyncio.Future[None] | None = None
        self._compaction_threshold = compaction_threshold

    @property
    def closed(self) -> bool:
        """True once ``finish`` or ``fail`` has been called."""
        return self._closed

    @property
    def pending(self) -> int:
        """Messages written but not yet received."""
        return len(self._messages) - self._head

    @property
    def buffered(self) -> int:
        """Size of the backing list, consumed prefix included."""
        return len(self._messages)

    def push(self, chunk: str) -> None:
        """Deliver a text fragment."""
        if self._closed:
            logger.debug("Dropping chunk pushed after stream end")
            return
        if chunk:
            self._send(Data(chunk))

    def finish(self) -> None:
        """Signal normal end of stream."""
        if not self._closed:
            self._closed = True
            self._send(End())

    def fail(self, error: BaseException) -> None:
        """Signal that the producer failed."""
        if not self._closed:
            self._closed = True
            self._send(Failed(error))

    async def receive(self) -> StreamMessage:
        """Return the next message, waiting for the producer when empty."""
        while self._head >= len(self._messages):
            self._waiter = asyncio.get_running_loop().create_future()
            await self._waiter
        message = self._messages[self._head]
        self._head += 1
        self._compact()
        return message

    def _send(self, message: StreamMessage) -> None:
        self._messages.append(message)
        waiter, self._waiter = self._waiter, None
        if waiter is not None and not waiter.done():
            waiter.set_result(None)

    def _compact(self) -> None:
        if (
            self._head > self._compaction_threshold
            and self._head * 2 >= len(self._messages)
        ):
            self._messages = self._messages[self._head :]
            self._head = 0


# --- Line handling ---


def clean_ndjson_line(line: str) -> str | None:
    """Strip vendor wrapping from one NDJSON line.

    Returns None for lines with no content: blanks, bare fences, and the
    bare ``[`` / ``]`` some vendors wrap NDJSON in.
    """
    cleaned = line.strip()
    cleaned = _FENCE_PREFIX_RE.sub("", cleaned)
    cleaned = _FENCE_SUFFIX_RE.sub("", cleaned).strip()
    if cleaned in ("", "[", "]"):
        return None
    if cleaned.startswith("["):
        cleaned = cleaned[1:].lstrip()
    if cleaned.endswith(","):
        cleaned = cleaned[:-1].rstrip()
    elif cleaned.endswith("]"):
        cleaned = cleaned[:-1].rstrip()
    return cleaned or None


def parse_ndjson_line(line: str) -> Span | None:
    """Parse one line into a span, or None when it is noise."""
    cleaned = clean_ndjson_line(line)
    if cleaned is None:
        return None
    try:
        parsed = json.loads(cleaned)
    except ValueError:
        logger.debug("Skipping unparseable stream line: %.100s", cleaned)
        return None
    return coerce_span(parsed)


async def iter_ndjson_spans(channel: ChunkChannel) -> AsyncIterator[Span]:
    """Yield spans from the channel until the producer ends.

    A producer failure is raised only after every line buffered before it
    has been yielded.
    """
    buffer = ""
    while True:
        message = await channel.receive()
        if isinstance(message, Data):
            buffer += message.chunk
            *lines, buffer = buffer.split("\n")
            for line in lines:
                span = parse_ndjson_line(line)
                if span is not None:
                    yield span
            continue

        # End or Failed: the last line may lack its newline
        span = parse_ndjson_line(buffer)
        if span is not None:
            yield span
        if isinstance(message, Failed):
            raise message.error
        return


async def stream_spans_from(
    produce: Callable[[ChunkChannel], Awaitable[None]],
) -> AsyncIterator[Span]:
    """Run ``produce`` in the background and yield the spans it streams.

    ``produce`` receives the channel and should push chunks into it (usually
    by passing ``channel.push`` as the provider's chunk callback). Completion
    and failure are signalled automatically.

    Abandoning the iterator does not cancel the producer; it runs to
    completion and its output is discarded.
    """
    channel = ChunkChannel()

    async def _run() -> None:
        try:
            await produce(channel)
        except Exception as e:
            channel.fail(e)
        else:
            channel.finish()

    task = asyncio.create_task(_run())
    try:
        async for span in iter_ndjson_spans(channel):
            yield span
        await task
    finally:
        if not task.done():
            _BACKGROUND_TASKS.add(task)
            task.add_done_callback(_BACKGROUND_TASKS.discard)
