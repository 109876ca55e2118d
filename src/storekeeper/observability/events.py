"""Per-manager event bus: sync and async subscribers, replay buffer, captured failures."""

from __future__ import annotations

import asyncio
import inspect
import threading
from collections import deque
from collections.abc import Awaitable, Callable, Coroutine, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Final, cast

from storekeeper.constants import DEFAULT_EVENT_BUFFER_SIZE
from storekeeper.domain.events import StoreEvent, StoreEventType, as_event_type, build_event

Subscriber = Callable[[StoreEvent], object]

_DEFAULT_ERROR_BUFFER: Final[int] = 256


@dataclass(frozen=True, slots=True)
class DispatchError:
    """Subscriber failure captured without interrupting the publisher."""

    event_id: str
    target: str
    error_type: str
    message: str


@dataclass(frozen=True, slots=True)
class _Subscription:
    token: int
    event_type: StoreEventType | None
    callback: Subscriber


class EventBus:
    """Event fan-out owned by one ``StoreManager``.

    Subscribers never influence the outcome of the operation that emitted the
    event: exceptions are recorded as ``DispatchError`` and coroutine
    subscribers run as tasks on the running loop.
    """

    def __init__(self, *, buffer_size: int = DEFAULT_EVENT_BUFFER_SIZE) -> None:
        if not isinstance(buffer_size, int) or isinstance(buffer_size, bool):
            raise ValueError(f"buffer_size must be an integer, got {type(buffer_size).__name__}")
        if buffer_size <= 0:
            raise ValueError("buffer_size must be > 0")

        self._buffer = deque[StoreEvent](maxlen=buffer_size)
        self._subscriptions: dict[int, _Subscription] = {}
        self._pending_async_tasks: set[asyncio.Task[None]] = set()
        self._dispatch_errors = deque[DispatchError](maxlen=_DEFAULT_ERROR_BUFFER)
        self._next_token = 1
        self._lock = threading.RLock()

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def subscribe(self, event_type: str | StoreEventType | None, callback: Subscriber) -> int:
        """Subscribe to one event type, or to every event when ``event_type`` is ``None``."""

        if not callable(callback):
            raise ValueError("callback must be callable")
        normalized = None if event_type is None else as_event_type(event_type)

        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._subscriptions[token] = _Subscription(
                token=token, event_type=normalized, callback=callback
            )
        return token

    def unsubscribe(self, token: int) -> bool:
        """Returns ``True`` when the token was registered."""

        if not isinstance(token, int):
            raise ValueError(f"token must be an integer, got {type(token).__name__}")
        with self._lock:
            return self._subscriptions.pop(token, None) is not None

    def clear(self) -> None:
        """Drop every subscriber and the replay buffer."""

        with self._lock:
            self._subscriptions.clear()
            self._buffer.clear()

    def publish(self, event: StoreEvent) -> tuple[DispatchError, ...]:
        if not isinstance(event, StoreEvent):
            raise ValueError(f"event must be StoreEvent, got {type(event).__name__}")
        with self._lock:
            self._buffer.append(event)
            subscriptions = tuple(self._subscriptions.values())

        errors: list[DispatchError] = []
        running_loop = _current_running_loop()
        for subscription in subscriptions:
            if subscription.event_type is not None and subscription.event_type != event.event_type:
                continue
            error = self._invoke(subscription.callback, event, running_loop)
            if error is not None:
                errors.append(error)

        if errors:
            with self._lock:
                self._dispatch_errors.extend(errors)
        return tuple(errors)

    def emit(
        self, event_type: str | StoreEventType, payload: Mapping[str, object]
    ) -> tuple[StoreEvent, tuple[DispatchError, ...]]:
        """Build and publish an event."""

        event = build_event(event_type, payload)
        return event, self.publish(event)

    async def drain_async(self) -> tuple[DispatchError, ...]:
        """Await coroutine subscribers scheduled by ``publish``."""

        with self._lock:
            pending = tuple(self._pending_async_tasks)
            self._pending_async_tasks.clear()

        if not pending:
            return ()

        await asyncio.gather(*pending, return_exceptions=True)

        with self._lock:
            return tuple(self._dispatch_errors)

    def replay(
        self,
        *,
        since: datetime | None = None,
        event_type: str | StoreEventType | None = None,
        limit: int | None = None,
    ) -> tuple[StoreEvent, ...]:
        """Buffered events in publish order."""

        if since is not None and (since.tzinfo is None or since.utcoffset() is None):
            raise ValueError("since datetime must be timezone-aware")
        since_utc = None if since is None else since.astimezone(UTC)
        type_filter = None if event_type is None else as_event_type(event_type)

        with self._lock:
            events = tuple(self._buffer)

        filtered = [
            event
            for event in events
            if not (
                (since_utc is not None and event.timestamp <= since_utc)
                or (type_filter is not None and event.event_type != type_filter)
            )
        ]
        if limit is not None:
            if limit <= 0:
                return ()
            filtered = filtered[-limit:]
        return tuple(filtered)

    def dispatch_errors(self) -> tuple[DispatchError, ...]:
        with self._lock:
            return tuple(self._dispatch_errors)

    def _invoke(
        self,
        callback: Subscriber,
        event: StoreEvent,
        running_loop: asyncio.AbstractEventLoop | None,
    ) -> DispatchError | None:
        target = _callback_name(callback)
        try:
            result = callback(event)
            if inspect.isawaitable(result):
                coroutine = _as_coroutine(result)
                if running_loop is None:
                    asyncio.run(coroutine)
                    return None
                task = running_loop.create_task(coroutine)
                with self._lock:
                    self._pending_async_tasks.add(task)
                task.add_done_callback(
                    lambda done: self._on_async_callback_done(done, target=target, event=event)
                )
            return None
        except Exception as exc:  # noqa: BLE001
            return _dispatch_error(event=event, target=target, exc=exc)

    def _on_async_callback_done(
        self, task: asyncio.Task[None], *, target: str, event: StoreEvent
    ) -> None:
        with self._lock:
            self._pending_async_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if isinstance(exc, Exception):
            with self._lock:
                self._dispatch_errors.append(_dispatch_error(event=event, target=target, exc=exc))


def _callback_name(callback: object) -> str:
    name = getattr(callback, "__name__", None)
    if isinstance(name, str) and name:
        return name
    return callback.__class__.__name__


def _current_running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


def _as_coroutine(value: object) -> Coroutine[Any, Any, None]:
    if inspect.iscoroutine(value):
        return cast("Coroutine[Any, Any, None]", value)
    return _await_awaitable(cast("Awaitable[None]", value))


async def _await_awaitable(awaitable: Awaitable[None]) -> None:
    await awaitable


def _dispatch_error(*, event: StoreEvent, target: str, exc: Exception) -> DispatchError:
    return DispatchError(
        event_id=event.event_id,
        target=target,
        error_type=exc.__class__.__name__,
        message=str(exc),
    )


__all__ = ["DispatchError", "EventBus", "Subscriber"]
