"""
Streaming executor.

`Pipeline.stream` and `Pipeline.astream` return cursors that pull the
output of the last stage of the pipeline in fragments ('partial
outputs'). The stages before the last one are run to completion when
the first fragment is pulled; nothing runs before.

A cursor goes through the states of `StreamState`:

    IDLE -> RUNNING -> COMPLETED | FAILED | CANCELLED

- COMPLETED: the last stage produced all its fragments; pulls return
    `END_OF_STREAM`.
- FAILED: a stage raised. The exception is raised by the pull that
    observed it; later pulls return `END_OF_STREAM`.
- CANCELLED: the cursor or its cancellation token was cancelled. The
    fragment producer is closed, and every later pull raises
    `CancellationError`.

Cursors may be pulled explicitly, or iterated:

    ```python
    cursor = pipeline.stream({'question': "What is a cell?"})
    chunk = cursor.next()
    while chunk is not END_OF_STREAM:
        print(chunk, end="")
        chunk = cursor.next()

    # or
    for chunk in pipeline.stream({'question': "What is a cell?"}):
        print(chunk, end="")

    # asynchronously
    async for chunk in pipeline.astream({'question': "..."}):
        print(chunk, end="")
    ```

The fragments, concatenated in the order they were delivered, give
the output that `invoke` returns for the same input.
"""

import asyncio
import threading
from collections.abc import AsyncIterator, Callable, Iterator
from enum import Enum
from typing import Any
from uuid import UUID

from .context import CancellationToken, RunContext
from .errors import CancellationError
from .stages import add_chunks, concat_chunks


class EndOfStream:
    """Sentinel returned by cursor pulls after the last fragment."""

    _instance: 'EndOfStream | None' = None

    def __new__(cls) -> 'EndOfStream':
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "END_OF_STREAM"

    def __bool__(self) -> bool:
        return False


END_OF_STREAM = EndOfStream()


class StreamState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


_FINAL_STATES = (
    StreamState.COMPLETED,
    StreamState.FAILED,
    StreamState.CANCELLED,
)


class _CursorBase:
    def __init__(self, context: RunContext, empty: Any = None) -> None:
        self._context = context
        self._empty = empty
        self.state = StreamState.IDLE
        self.delivered = 0

    @property
    def run_id(self) -> UUID:
        return self._context.run_id

    @property
    def cancel_token(self) -> CancellationToken:
        return self._context.cancel_token

    @property
    def done(self) -> bool:
        return self.state in _FINAL_STATES

    def _cancellation(self) -> CancellationError:
        return CancellationError(
            f"Stream {self.run_id} cancelled after "
            + f"{self.delivered} partial outputs"
        )

    def _log_cancelled(self) -> None:
        self._context.logger.debug(
            f"Stream {self.run_id} cancelled after "
            + f"{self.delivered} partial outputs"
        )


class StreamCursor(_CursorBase):
    """Pull cursor over the fragments of a synchronous stream.

    The cursor may be cancelled from another thread, through `cancel`
    or through the cancellation token; the fragment being pulled at
    that moment is not delivered.
    """

    def __init__(
        self,
        producer_factory: Callable[[], Iterator[Any]],
        context: RunContext,
        empty: Any = None,
    ) -> None:
        super().__init__(context, empty)
        self._factory = producer_factory
        self._producer: Iterator[Any] | None = None
        self._lock = threading.Lock()

    def _release(self) -> None:
        producer, self._producer = self._producer, None
        close = getattr(producer, 'close', None)
        if close is not None:
            close()

    def _settle_cancelled(self) -> None:
        self._release()
        self.state = StreamState.CANCELLED
        self._log_cancelled()

    def next(self) -> Any:
        """Pull the next fragment, or END_OF_STREAM.

        Raises:
            CancellationError: the stream was cancelled
            StageExecutionError: a stage failed
        """
        with self._lock:
            return self._pull()

    def _pull(self) -> Any:
        if self.state is StreamState.CANCELLED:
            raise self._cancellation()
        if self.done:
            return END_OF_STREAM
        if self.cancel_token.cancelled:
            self._settle_cancelled()
            raise self._cancellation()

        if self._producer is None:
            self._producer = self._factory()
            self.state = StreamState.RUNNING
        try:
            chunk = next(self._producer)
        except StopIteration:
            self._release()
            self.state = StreamState.COMPLETED
            return END_OF_STREAM
        except CancellationError:
            self._settle_cancelled()
            raise
        except Exception:
            self._release()
            self.state = StreamState.FAILED
            raise

        # cancelled while the fragment was being produced
        if self.cancel_token.cancelled:
            self._settle_cancelled()
            raise self._cancellation()
        self.delivered += 1
        return chunk

    def cancel(self) -> None:
        """Withdraw interest in the stream. If a pull is in progress
        in another thread, the pull settles the cancellation."""
        self.cancel_token.cancel()
        if self._lock.acquire(blocking=False):
            try:
                if not self.done:
                    self._settle_cancelled()
            finally:
                self._lock.release()

    def close(self) -> None:
        if not self.done:
            self.cancel()

    def collect(self) -> Any:
        """Concatenate the remaining fragments. If no fragment is
        left, returns an empty string when the last stage declares a
        str output, None otherwise.

        Raises:
            TypeError: the fragments cannot be concatenated
        """
        return concat_chunks(self, self._empty)

    def __iter__(self) -> 'StreamCursor':
        return self

    def __next__(self) -> Any:
        chunk = self.next()
        if chunk is END_OF_STREAM:
            raise StopIteration
        return chunk

    def __enter__(self) -> 'StreamCursor':
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class AsyncStreamCursor(_CursorBase):
    """Pull cursor over the fragments of an asynchronous stream.

    Cancelling the task that awaits a pull closes the fragment
    producer and leaves the cursor in the CANCELLED state.
    """

    def __init__(
        self,
        producer_factory: Callable[[], AsyncIterator[Any]],
        context: RunContext,
        empty: Any = None,
    ) -> None:
        super().__init__(context, empty)
        self._factory = producer_factory
        self._producer: AsyncIterator[Any] | None = None
        self._pulling = False
        self._closing: asyncio.Task[None] | None = None

    async def _release(self) -> None:
        producer, self._producer = self._producer, None
        aclose = getattr(producer, 'aclose', None)
        if aclose is not None:
            await aclose()

    async def _settle_cancelled(self) -> None:
        self.state = StreamState.CANCELLED
        await self._release()
        self._log_cancelled()

    async def anext(self) -> Any:
        """Pull the next fragment, or END_OF_STREAM.

        Raises:
            CancellationError: the stream was cancelled
            StageExecutionError: a stage failed
        """
        if self._pulling:
            raise RuntimeError(
                "Another pull of this stream is in progress"
            )
        if self.state is StreamState.CANCELLED:
            # a cancel() call may have left the producer open
            await self._release()
            raise self._cancellation()
        if self.done:
            return END_OF_STREAM
        if self.cancel_token.cancelled:
            await self._settle_cancelled()
            raise self._cancellation()

        if self._producer is None:
            self._producer = self._factory()
            self.state = StreamState.RUNNING
        self._pulling = True
        try:
            chunk = await self._producer.__anext__()
        except StopAsyncIteration:
            await self._release()
            self.state = StreamState.COMPLETED
            return END_OF_STREAM
        except (CancellationError, asyncio.CancelledError):
            await self._settle_cancelled()
            raise
        except Exception:
            await self._release()
            self.state = StreamState.FAILED
            raise
        finally:
            self._pulling = False

        if self.cancel_token.cancelled:
            await self._settle_cancelled()
            raise self._cancellation()
        self.delivered += 1
        return chunk

    def cancel(self) -> None:
        """Withdraw interest in the stream. When called within a
        running event loop, the closing of the producer is scheduled
        at once; otherwise it is left to the next pull or to
        aclose(). A pull in progress settles the cancellation itself.
        """
        self.cancel_token.cancel()
        if self._pulling or self.done:
            return
        self.state = StreamState.CANCELLED
        self._log_cancelled()
        if self._producer is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._closing = loop.create_task(self._release())

    async def aclose(self) -> None:
        if not self.done:
            self.cancel_token.cancel()
            if not self._pulling:
                await self._settle_cancelled()
        else:
            await self._release()
        if self._closing is not None:
            await self._closing

    async def collect(self) -> Any:
        result: Any = self._empty
        async for chunk in self:
            result = add_chunks(result, chunk)
        return result

    def __aiter__(self) -> 'AsyncStreamCursor':
        return self

    async def __anext__(self) -> Any:
        chunk = await self.anext()
        if chunk is END_OF_STREAM:
            raise StopAsyncIteration
        return chunk

    async def __aenter__(self) -> 'AsyncStreamCursor':
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
