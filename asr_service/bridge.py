from __future__ import annotations

import asyncio
import logging
from collections import deque

logger = logging.getLogger(__name__)


class _EndOfStream:
    def __repr__(self) -> str:
        return "END_OF_STREAM"


END_OF_STREAM = _EndOfStream()


class AudioStreamBridge:
    """Adapts pushed audio chunks into a pulled, ordered stream.

    The platform pushes PCM chunks with ``send_audio``; the ASR transport pulls
    them with ``next_chunk``. When the consumer is waiting on an empty queue it
    parks a single future, and the next pushed chunk is handed to it directly.

    One producer and one consumer per instance, both on the same event loop.
    """

    def __init__(self) -> None:
        self._queue: deque[bytes] = deque()
        self._waiter: asyncio.Future | None = None
        self._stopped = False
        self.dropped_chunks = 0

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def exhausted(self) -> bool:
        """True once stopped and every queued chunk has been pulled."""
        return self._stopped and not self._queue

    @property
    def pending(self) -> int:
        return len(self._queue)

    def send_audio(self, chunk: bytes) -> bool:
        """Push a chunk. Returns False if the bridge was already stopped."""
        if self._stopped:
            self.dropped_chunks += 1
            return False
        waiter = self._waiter
        if waiter is not None and not waiter.done():
            self._waiter = None
            waiter.set_result(chunk)
        else:
            self._queue.append(chunk)
        return True

    async def next_chunk(self) -> bytes | _EndOfStream:
        """Pull the next chunk, waiting if none is queued.

        Resolves with ``END_OF_STREAM`` once stopped and drained.
        """
        if self._queue:
            return self._queue.popleft()
        if self._stopped:
            return END_OF_STREAM
        if self._waiter is not None:
            raise RuntimeError("next_chunk() is already awaiting a chunk")

        waiter = asyncio.get_running_loop().create_future()
        self._waiter = waiter
        try:
            return await waiter
        except (asyncio.CancelledError, GeneratorExit):
            # handed a chunk but cancelled before resuming: keep it for the next pull
            if waiter.done() and not waiter.cancelled():
                chunk = waiter.result()
                if chunk is not END_OF_STREAM:
                    self._queue.appendleft(chunk)
            raise
        finally:
            if self._waiter is waiter:
                self._waiter = None

    def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        logger.info("Audio bridge stopped (%d chunks still queued)", len(self._queue))
        waiter = self._waiter
        if waiter is not None and not waiter.done():
            self._waiter = None
            waiter.set_result(END_OF_STREAM)

    def __aiter__(self):
        return self

    async def __anext__(self) -> bytes:
        chunk = await self.next_chunk()
        if chunk is END_OF_STREAM:
            raise StopAsyncIteration
        return chunk
