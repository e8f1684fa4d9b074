from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import AsyncIterator, Callable, Optional

from persona_chat.utils.time_utils import utc_now

logger = logging.getLogger(__name__)


class StreamStatus(str, Enum):
    """Lifecycle states of a streamed reply."""

    PENDING = "pending"
    STREAMING = "streaming"
    FINISHED = "finished"
    CANCELED = "canceled"
    TIMED_OUT = "timed_out"


TERMINAL_STATUSES = frozenset(
    {StreamStatus.FINISHED, StreamStatus.CANCELED, StreamStatus.TIMED_OUT}
)


class StreamResponse:
    """Cancellable, observable buffer for one in-flight generation.

    The backend is the only producer (``add_response`` / ``finish``) and the
    caller the only canceller. Every transition is a check-then-set on
    ``status`` executed on the event loop thread, so whichever terminal
    transition lands first wins and later ones are dropped silently.

    Must be created while an event loop is running: the first-token deadline
    is armed with ``loop.call_later`` and moves the stream to ``timed_out``
    if nothing arrives while it is still pending.
    """

    def __init__(
        self,
        request_id: str,
        first_token_timeout: float,
        on_cancel: Optional[Callable[[], None]] = None,
    ) -> None:
        self.request_id = request_id
        self.status = StreamStatus.PENDING
        self.buffered_text = ""
        self.first_token_deadline: datetime = utc_now() + timedelta(seconds=first_token_timeout)
        self._on_cancel = on_cancel
        self._changed = asyncio.Event()
        loop = asyncio.get_running_loop()
        self._timer: Optional[asyncio.TimerHandle] = loop.call_later(
            first_token_timeout, self._on_first_token_timeout
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def add_response(self, text: str) -> None:
        """Append a streamed delta; the first one disarms the deadline."""

        if self.is_terminal:
            logger.debug("Dropped late delta for %s (%s)", self.request_id, self.status.value)
            return
        if self.status is StreamStatus.PENDING:
            self._clear_timer()
            self.status = StreamStatus.STREAMING
        self.buffered_text += text
        self._notify()

    def finish(self, final_text: str) -> None:
        """Freeze the buffer with the backend's final answer."""

        if self.is_terminal:
            return
        self.buffered_text = final_text
        self._set_terminal(StreamStatus.FINISHED)

    def cancel(self) -> None:
        """Stop the stream on behalf of the consumer and tell the owner."""

        if self.is_terminal:
            return
        self._set_terminal(StreamStatus.CANCELED)
        if self._on_cancel is not None:
            self._on_cancel()

    def _on_first_token_timeout(self) -> None:
        self._timer = None
        if self.status is not StreamStatus.PENDING:
            return
        logger.info("No token for %s before the first-token deadline", self.request_id)
        self._set_terminal(StreamStatus.TIMED_OUT)

    async def wait(self, timeout: Optional[float] = None) -> StreamStatus:
        """Wait until the stream reaches a terminal state and return it."""

        async def _until_terminal() -> StreamStatus:
            while not self.is_terminal:
                await self._changed.wait()
            return self.status

        if timeout is None:
            return await _until_terminal()
        return await asyncio.wait_for(_until_terminal(), timeout)

    async def iter_deltas(self) -> AsyncIterator[str]:
        """Yield text as it is buffered, ending once the stream is terminal.

        A ``finish`` that rewrites the buffer is reported as the tail past
        what was already yielded.
        """

        cursor = 0
        while True:
            changed = self._changed
            text = self.buffered_text
            if len(text) > cursor:
                yield text[cursor:]
                cursor = len(text)
                continue
            if self.is_terminal:
                return
            await changed.wait()

    def _set_terminal(self, status: StreamStatus) -> None:
        self._clear_timer()
        self.status = status
        logger.debug("Stream %s is %s", self.request_id, status.value)
        self._notify()

    def _clear_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _notify(self) -> None:
        # Waiters hold the previous event; swapping it keeps each wake-up one-shot.
        changed = self._changed
        self._changed = asyncio.Event()
        changed.set()
