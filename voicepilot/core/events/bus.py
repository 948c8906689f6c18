from __future__ import annotations

import asyncio
import collections
import inspect
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from voicepilot.core.events.models import BaseEvent, EventSeverity, SourceSubsystem
from voicepilot.core.events.stats import StatsCounter


Handler = Callable[[BaseEvent], Union[None, Awaitable[None]]]

HANDLER_ERROR_EVENT = "bus.handler_error"


class OverflowPolicy(str, Enum):
    DROP_OLDEST = "DROP_OLDEST"
    DROP_NEWEST = "DROP_NEWEST"


class EventBusConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    max_queue_size: int = Field(default=1000, ge=10, le=100_000)
    overflow_policy: OverflowPolicy = OverflowPolicy.DROP_OLDEST
    shutdown_grace_seconds: float = Field(default=5.0, ge=0.1, le=60.0)
    log_dropped_events: bool = True
    keep_recent: int = 500


@dataclass
class _Sub:
    event_type: str
    handler: Handler
    priority: int
    name: str
    queue: "asyncio.Queue[BaseEvent]"
    task: Optional["asyncio.Task[None]"] = None


class EventBus:
    """
    In-process event bus running on one asyncio loop.

    - publish is non-blocking (drop on overflow per policy)
    - ordering guarantee: each subscriber processes events sequentially in its own task
    - handler failures are isolated (caught) and emitted as `bus.handler_error` events
    - publish_threadsafe lets capture/wake-word threads hand events to the loop
    """

    def __init__(self, *, cfg: Optional[EventBusConfig] = None, logger=None, error_reporter=None):
        self.cfg = cfg or EventBusConfig()
        self.logger = logger
        self.error_reporter = error_reporter

        self._subs: List[_Sub] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._running = False
        self._accepting = True
        self._pending = 0
        self._idle = asyncio.Event()
        self._idle.set()
        self._stats = StatsCounter()
        self._dropped_tail: Deque[Dict[str, Any]] = collections.deque(maxlen=200)
        self._recent_events: Deque[Dict[str, Any]] = collections.deque(maxlen=max(100, int(self.cfg.keep_recent)))

    async def start(self) -> None:
        if self._running:
            return
        self._loop = asyncio.get_running_loop()
        self._running = True
        self._accepting = True
        for s in self._subs:
            self._spawn_worker(s)

    def enabled(self) -> bool:
        return bool(self.cfg.enabled) and self._running

    def subscribe(self, event_type: Any, handler: Handler, priority: int = 50) -> None:
        """
        event_type supports:
        - exact match ("nlu.completed")
        - prefix match ("capture.*")
        - wildcard all ("*")
        """
        if not callable(handler):
            raise ValueError("handler must be callable")
        if isinstance(event_type, Enum):
            event_type = event_type.value
        sub = _Sub(
            event_type=str(event_type),
            handler=handler,
            priority=int(priority),
            name=f"eventbus-sub-{len(self._subs) + 1}",
            queue=asyncio.Queue(maxsize=int(self.cfg.max_queue_size)),
        )
        self._subs.append(sub)
        self._subs.sort(key=lambda s: int(s.priority))
        self._track_backlog()
        if self._running:
            self._spawn_worker(sub)

    def unsubscribe(self, handler: Handler) -> int:
        keep: List[_Sub] = []
        removed = 0
        for s in self._subs:
            if s.handler is handler:
                removed += 1
                self._discard(s)
            else:
                keep.append(s)
        self._subs = keep
        self._track_backlog()
        return removed

    def publish(self, ev: BaseEvent) -> bool:
        if not self._accepting or not self.cfg.enabled:
            return False
        self._stats.published(ev.event_type)
        self._recent_events.appendleft(ev.model_dump(mode="json"))
        delivered = 0
        for s in self._subs:
            if _match(s.event_type, ev.event_type) and self._enqueue(s, ev):
                delivered += 1
        if delivered:
            self._stats.delivered(delivered)
        self._track_backlog()
        return True

    def publish_threadsafe(self, ev: BaseEvent) -> bool:
        loop = self._loop
        if loop is None or loop.is_closed():
            return self.publish(ev)
        try:
            if asyncio.get_running_loop() is loop:
                return self.publish(ev)
        except RuntimeError:
            pass
        loop.call_soon_threadsafe(self.publish, ev)
        return True

    async def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait until every delivered event has been handled, including events published by handlers."""
        try:
            await asyncio.wait_for(self._idle.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    def get_stats(self) -> Dict[str, Any]:
        st = self._stats.snapshot()
        return {
            "enabled": self.enabled(),
            "published_total": st.published_total,
            "dropped_total": st.dropped_total,
            "delivered_total": st.delivered_total,
            "handler_errors_total": st.handler_errors_total,
            "queue_depth": st.queue_depth,
            "subscribers": st.subscribers,
            "per_type_published": st.per_type_published,
            "per_type_dropped": st.per_type_dropped,
            "backlog": st.backlog,
            "recent": list(self._recent_events)[:50],
        }

    def list_subscribers(self) -> List[Dict[str, Any]]:
        return [
            {"event_type": s.event_type, "priority": s.priority, "handler": getattr(s.handler, "__name__", "handler")}
            for s in self._subs
        ]

    def dump_recent(self, n: int = 200) -> List[Dict[str, Any]]:
        return list(self._recent_events)[: max(1, int(n))]

    async def shutdown(self, grace_seconds: Optional[float] = None) -> None:
        self._accepting = False
        if grace_seconds is None:
            grace_seconds = float(self.cfg.shutdown_grace_seconds)
        await self.drain(timeout=float(grace_seconds))
        subs = list(self._subs)
        self._subs = []
        self._track_backlog()
        tasks = [s.task for s in subs if s.task is not None]
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._running = False
        self._pending = 0
        self._idle.set()

    # ---- internals ----
    def _spawn_worker(self, sub: _Sub) -> None:
        if sub.task is None and self._loop is not None:
            sub.task = self._loop.create_task(self._worker(sub), name=sub.name)

    def _discard(self, sub: _Sub) -> None:
        while not sub.queue.empty():
            sub.queue.get_nowait()
            sub.queue.task_done()
            self._done(1)
        if sub.task is not None:
            sub.task.cancel()

    def _enqueue(self, sub: _Sub, ev: BaseEvent) -> bool:
        if sub.queue.full():
            if self.cfg.overflow_policy == OverflowPolicy.DROP_NEWEST:
                self._note_drop(ev, "drop_newest")
                return False
            dropped = sub.queue.get_nowait()
            sub.queue.task_done()
            self._done(1)
            self._note_drop(dropped, "drop_oldest")
        sub.queue.put_nowait(ev)
        self._pending += 1
        self._idle.clear()
        return True

    def _note_drop(self, ev: BaseEvent, reason: str) -> None:
        self._stats.dropped(ev.event_type)
        if self.cfg.log_dropped_events:
            self._dropped_tail.appendleft({"event_type": ev.event_type, "trace_id": ev.trace_id, "reason": reason})

    def _track_backlog(self) -> None:
        self._stats.track_backlog((s.name, s.queue.qsize()) for s in self._subs)

    def _done(self, n: int) -> None:
        self._pending = max(0, self._pending - n)
        if self._pending == 0:
            self._idle.set()

    async def _worker(self, sub: _Sub) -> None:
        while True:
            ev = await sub.queue.get()
            try:
                await self._safe_handle(sub.handler, ev)
            finally:
                sub.queue.task_done()
                self._done(1)
                self._track_backlog()

    async def _safe_handle(self, handler: Handler, ev: BaseEvent) -> None:
        t0 = time.time()
        try:
            result = handler(ev)
            if inspect.isawaitable(result):
                await result
        except Exception as e:  # noqa: BLE001
            self._stats.handler_failed()
            if self.logger is not None:
                self.logger.error(f"eventbus handler {getattr(handler, '__name__', 'handler')} failed on {ev.event_type}: {e}")
            if self.error_reporter is not None:
                try:
                    self.error_reporter.report_exception(e, trace_id=ev.trace_id or "eventbus", subsystem="events", context={"event_type": ev.event_type})
                except Exception:  # noqa: BLE001
                    pass
            # no error events about error events
            if ev.event_type != HANDLER_ERROR_EVENT:
                err_ev = BaseEvent(
                    event_type=HANDLER_ERROR_EVENT,
                    trace_id=ev.trace_id,
                    source_subsystem=SourceSubsystem.events,
                    severity=EventSeverity.ERROR,
                    payload={"handler": getattr(handler, "__name__", "handler"), "event_type": ev.event_type, "error": str(e)[:500]},
                )
                self.publish(err_ev)
        finally:
            elapsed_ms = (time.time() - t0) * 1000.0
            if self.logger is not None and elapsed_ms > 1000.0:
                self.logger.warning(f"eventbus slow handler on {ev.event_type}: {elapsed_ms:.0f}ms")


def _match(subscribed: str, event_type: str) -> bool:
    subscribed = str(subscribed)
    if subscribed == "*":
        return True
    if subscribed.endswith(".*"):
        return str(event_type).startswith(subscribed[:-2])
    return subscribed == event_type
