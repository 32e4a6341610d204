"""
Output accumulator for streamed agent replies.

Wraps the agent's chunk iterator. Every chunk is recorded and then handed
to the consumer straight away; once the producer is exhausted the joined
buffer becomes the final text and completion callbacks run (the
orchestrator uses one to write the turn to history).

The wrapper is pull-based: nothing is read from the producer until the
consumer asks for the next chunk, so a paused consumer pauses the stream
without losing or repeating anything.
"""

from enum import Enum
from typing import Any, Callable, Iterable, Iterator, List, Optional

from agents.errors import StreamIntegrityError
from infrastructure.log import NULL_LOGGER


class StreamState(str, Enum):
    PENDING = "pending"
    STREAMING = "streaming"
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELLED = "cancelled"


def _chunk_text(chunk: Any) -> str:
    """Accept plain strings and LangChain message chunks."""
    if isinstance(chunk, str):
        return chunk
    content = getattr(chunk, "content", None)
    if isinstance(content, str):
        return content
    raise TypeError(f"Stream produced a non-text chunk: {type(chunk).__name__}")


class OutputAccumulator:
    """
    Single-pass, forwarding buffer around a chunk iterator.

    Iterate it exactly once. After iteration:
      - ``state == COMPLETE``: ``text`` holds the full reply
      - ``state == FAILED``: the producer raised; ``error`` explains why
      - ``state == CANCELLED``: the consumer closed the iterator early
    Only ``COMPLETE`` fires the completion callbacks.
    """

    def __init__(
        self,
        source: Iterable[Any],
        on_complete: Optional[Callable[[str], None]] = None,
        logger: Any = None,
    ) -> None:
        self._source = source
        self._chunks: List[str] = []
        self._callbacks: List[Callable[[str], None]] = []
        self._state = StreamState.PENDING
        self._error: Optional[StreamIntegrityError] = None
        self._iterated = False
        self.logger = logger if logger is not None else NULL_LOGGER
        if on_complete is not None:
            self._callbacks.append(on_complete)

    # state

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def is_complete(self) -> bool:
        return self._state is StreamState.COMPLETE

    @property
    def error(self) -> Optional[StreamIntegrityError]:
        return self._error

    @property
    def chunks(self) -> List[str]:
        """Chunks received so far, in order."""
        return list(self._chunks)

    @property
    def partial_text(self) -> str:
        """Whatever has been received so far, complete or not."""
        return "".join(self._chunks)

    @property
    def text(self) -> str:
        """The final reply. Only valid once the stream completed."""
        if self._state is not StreamState.COMPLETE:
            raise StreamIntegrityError(
                f"Stream is {self._state.value}; final text is not available",
                details={"received_chunks": len(self._chunks)},
            )
        return "".join(self._chunks)

    def add_done_callback(self, callback: Callable[[str], None]) -> None:
        """Run ``callback(final_text)`` once the stream completes."""
        self._callbacks.append(callback)

    # iteration

    def __iter__(self) -> Iterator[str]:
        if self._iterated:
            raise RuntimeError("OutputAccumulator can only be iterated once")
        self._iterated = True
        return self._forward()

    def _forward(self) -> Iterator[str]:
        self._state = StreamState.STREAMING
        source = iter(self._source)
        try:
            for raw in source:
                chunk = _chunk_text(raw)
                self._chunks.append(chunk)
                yield chunk
        except GeneratorExit:
            self._state = StreamState.CANCELLED
            self.logger.warning(
                "Stream cancelled by consumer after {} chunks", len(self._chunks))
            close = getattr(source, "close", None)
            if close is not None:
                close()
            raise
        except Exception as exc:
            self._state = StreamState.FAILED
            self._error = StreamIntegrityError(
                f"Stream ended abnormally: {exc}",
                details={"received_chunks": len(self._chunks)},
            )
            self._error.__cause__ = exc
            self.logger.error(
                "Stream failed after {} chunks: {}", len(self._chunks), exc)
            return

        self._state = StreamState.COMPLETE
        final_text = "".join(self._chunks)
        for callback in self._callbacks:
            try:
                callback(final_text)
            except Exception as exc:
                self.logger.exception("Stream completion callback failed: {}", exc)

    def read_all(self) -> str:
        """Drain the stream and return the final text (raises if it failed)."""
        for _ in self:
            pass
        return self.text

    def __repr__(self) -> str:
        return f"OutputAccumulator(state={self._state.value}, chunks={len(self._chunks)})"
