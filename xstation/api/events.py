"""
Reply correlation for xAPI connections.

Every request carries a caller-chosen ``customTag`` which the broker echoes in
its reply. The EventCorrelator turns parsed frames into named events and hands
them to whoever is waiting on that name:

- one-shot waiters (``once``) for request/reply calls
- queue-backed EventStreams (``subscribe``) for streaming subscriptions
- plain callbacks (``on`` / ``off``)

Failures are published as ``ERROR_<tag>`` events and also reject the pending
call or subscription registered for ``<tag>``.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from xstation.api.exceptions import XApiOperationError
from xstation.lib.constants import ERROR_PREFIX, LOGIN

logger = logging.getLogger(__name__)

EventHandler = Callable[[Any], Any]

# Queue marker for a stream that was unsubscribed
_END = object()


class EventStream:
    """Async iterator over the payloads dispatched for one tag.

    Items are yielded in dispatch order. Iteration ends after ``close()``; an
    error delivered to the stream is raised once, ends iteration and runs the
    close hook. A stream stops being ``active`` as soon as it has been ended
    or failed, even while queued items remain.

    Example:
        stream = correlator.subscribe("streamBalance")
        async for balance in stream:
            print(balance["equity"])
    """

    def __init__(
        self,
        tag: str,
        on_close: Optional[Callable[[], Awaitable[Any]]] = None,
    ):
        """Initialize stream.

        Args:
            tag: Event name the stream is fed from
            on_close: Coroutine function run by close() (e.g. transport teardown)
        """
        self.tag = tag
        self._queue: asyncio.Queue = asyncio.Queue()
        self._on_close = on_close
        self._finished = False
        self._accepting = True

    @property
    def active(self) -> bool:
        """Whether the stream is still fed by its subscription."""
        return self._accepting and not self._finished

    def put(self, item: Any) -> None:
        """Feed one payload (or an exception to raise) into the stream."""
        if self._finished or not self._accepting:
            return
        if isinstance(item, BaseException):
            # Nothing after an error is delivered
            self._accepting = False
        self._queue.put_nowait(item)

    def end(self) -> None:
        """Finish iteration once queued items are consumed."""
        self._accepting = False
        self._queue.put_nowait(_END)

    async def close(self) -> Any:
        """Stop the stream and run its close hook.

        Returns:
            Result of the close hook (None when there is none)
        """
        self.end()
        return await self._run_close_hook()

    async def _run_close_hook(self) -> Any:
        if self._on_close is None:
            return None
        on_close, self._on_close = self._on_close, None
        return await on_close()

    def __aiter__(self) -> "EventStream":
        return self

    async def __anext__(self) -> Any:
        if self._finished:
            raise StopAsyncIteration

        item = await self._queue.get()

        if item is _END:
            self._finished = True
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            self._finished = True
            try:
                await self._run_close_hook()
            except Exception as e:
                logger.warning(f"Releasing stream {self.tag} failed: {e}")
            raise item
        return item


class EventCorrelator:
    """Publish/subscribe hub keyed by custom tag.

    One instance is shared by every connection of a client, so a reply is
    delivered regardless of which socket it arrived on.
    """

    def __init__(self):
        self._handlers: dict[str, list[EventHandler]] = {}
        self._pending: dict[str, list[asyncio.Future]] = {}
        self._streams: dict[str, EventStream] = {}
        self._handler_tasks: set[asyncio.Task] = set()

    def on(self, event: str, handler: EventHandler) -> None:
        """Register handler for an event.

        Args:
            event: Event name (a custom tag, or ERROR_<tag>)
            handler: Callback receiving the event payload; coroutine
                functions are scheduled on the running loop
        """
        if event not in self._handlers:
            self._handlers[event] = []
        self._handlers[event].append(handler)

    def off(self, event: str, handler: Optional[EventHandler] = None) -> None:
        """Unregister handler for an event.

        Args:
            event: Event name
            handler: Specific handler to remove, or None to remove all
        """
        if event in self._handlers:
            if handler is None:
                del self._handlers[event]
            else:
                self._handlers[event] = [
                    h for h in self._handlers[event] if h != handler
                ]

    def once(self, event: str) -> asyncio.Future:
        """Create a future resolved by the next event named ``event``.

        If ``event`` is a plain tag, an error reported for that tag rejects
        the future with XApiOperationError.
        """
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending.setdefault(event, []).append(future)
        return future

    def discard(self, event: str, future: asyncio.Future) -> None:
        """Withdraw a waiter created by once() and cancel it."""
        waiters = self._pending.get(event, [])
        if future in waiters:
            waiters.remove(future)
            if not waiters:
                del self._pending[event]
        if not future.done():
            future.cancel()

    def has_pending(self, tag: str) -> bool:
        """Check whether a one-shot call is waiting on ``tag``."""
        return any(not f.done() for f in self._pending.get(tag, []))

    def subscribe(
        self,
        tag: str,
        on_close: Optional[Callable[[], Awaitable[Any]]] = None,
    ) -> EventStream:
        """Open an EventStream for ``tag``, or return the active one."""
        stream = self._streams.get(tag)
        if stream is not None and stream.active:
            return stream

        stream = EventStream(tag, on_close=on_close)
        self._streams[tag] = stream
        return stream

    def unsubscribe(self, tag: str) -> bool:
        """Detach the stream and handlers registered for ``tag``.

        Returns:
            True if a stream was registered
        """
        self.off(tag)
        stream = self._streams.pop(tag, None)
        if stream is None:
            return False
        stream.end()
        return True

    def emit(self, event: str, payload: Any) -> int:
        """Deliver ``payload`` to everything waiting on ``event``.

        Returns:
            Number of receivers the event reached
        """
        delivered = 0

        for future in self._pending.pop(event, []):
            if not future.done():
                future.set_result(payload)
                delivered += 1

        stream = self._streams.get(event)
        if stream is not None:
            stream.put(payload)
            delivered += 1

        for handler in list(self._handlers.get(event, [])):
            try:
                result = handler(payload)
                if asyncio.iscoroutine(result):
                    self._schedule_handler(event, result)
            except Exception as e:
                logger.error(f"Handler error for {event}: {e}")
            delivered += 1

        return delivered

    def _schedule_handler(self, event: str, coro: Awaitable[Any]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._handler_tasks.add(task)

        def _done(finished: asyncio.Task) -> None:
            self._handler_tasks.discard(finished)
            if not finished.cancelled() and finished.exception() is not None:
                logger.error(f"Handler error for {event}: {finished.exception()}")

        task.add_done_callback(_done)

    def fail(self, tag: str, error: BaseException) -> int:
        """Reject the pending calls and the stream registered for ``tag``.

        Returns:
            Number of receivers rejected
        """
        rejected = 0

        for future in self._pending.pop(tag, []):
            if not future.done():
                future.set_exception(error)
                rejected += 1

        stream = self._streams.get(tag)
        if stream is not None:
            stream.put(error)
            rejected += 1

        return rejected

    def fail_pending(self, error: BaseException) -> int:
        """Reject every pending one-shot call, leaving streams untouched."""
        rejected = 0
        for event in list(self._pending):
            for future in self._pending.pop(event):
                if not future.done():
                    future.set_exception(error)
                    rejected += 1
        return rejected

    def dispatch(self, response: dict, default_tag: Optional[str] = None) -> None:
        """Route one parsed broker frame.

        Args:
            response: Parsed frame
            default_tag: Tag of the connection the frame arrived on; used for
                streaming records, which carry ``data`` but no ``customTag``
        """
        tag = response.get("customTag") or default_tag

        if response.get("status") is True:
            if tag == LOGIN:
                payload = response.get("streamSessionId")
            else:
                payload = response.get("returnData")
            self._emit_reply(tag, payload)
            return

        if "status" not in response and "data" in response:
            self._emit_reply(tag, response["data"])
            return

        code = response.get("errorCode")
        description = response.get("errorDescr", "Unknown error")
        logger.warning(
            f"Call with customTag {tag} failed: {description} (code: {code})",
            extra={"tag": tag, "error_code": code},
        )

        self.emit(ERROR_PREFIX + str(tag), response)
        self.fail(tag, XApiOperationError(tag, code, description, response=response))

    def _emit_reply(self, tag: Optional[str], payload: Any) -> None:
        if tag is None:
            logger.warning("Dropping untagged frame")
            return
        if self.emit(tag, payload) == 0:
            logger.debug(f"No receiver for {tag}")
