"""Live progress channel for the intake pipeline.

A single broadcaster instance is created by the application factory and shared
by every request. Each publish measures the time since the previous publish,
whichever request produced it, and hands the event to the observers that are
connected at that moment. Sends run as background tasks chained per observer,
so a slow client never holds up a publish and still sees its events in order.
Nothing is replayed to late observers.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import asdict, dataclass
from typing import Callable, Literal, Protocol

from starlette.websockets import WebSocket, WebSocketState

logger = logging.getLogger(__name__)

ProgressStep = Literal["upload", "extract", "ocr", "llm", "process", "done", "error"]


@dataclass(frozen=True)
class ProgressEvent:
    step: str
    message: str
    elapsed: float

    def to_dict(self) -> dict:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)


class ProgressObserver(Protocol):
    def is_ready(self) -> bool:
        ...

    async def send_event(self, event: ProgressEvent) -> None:
        ...

    async def close(self) -> None:
        ...


class WebSocketObserver:
    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    def is_ready(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def send_event(self, event: ProgressEvent) -> None:
        await self.websocket.send_text(event.to_json())

    async def close(self) -> None:
        if self.is_ready():
            await self.websocket.close()


class ProgressPublisher(Protocol):
    async def publish(self, step: ProgressStep, message: str) -> ProgressEvent:
        ...


class ProgressBroadcaster:
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._last_publish = clock()
        self._observers: list[ProgressObserver] = []
        self._tails: dict[ProgressObserver, asyncio.Task] = {}
        self._pending: set[asyncio.Task] = set()

    @property
    def observers(self) -> list[ProgressObserver]:
        return list(self._observers)

    def attach(self, observer: ProgressObserver | WebSocket) -> ProgressObserver:
        if isinstance(observer, WebSocket):
            observer = WebSocketObserver(observer)
        self._observers.append(observer)
        return observer

    def detach(self, observer: ProgressObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)
        self._tails.pop(observer, None)

    async def publish(self, step: ProgressStep, message: str) -> ProgressEvent:
        now = self._clock()
        event = ProgressEvent(step=step, message=message, elapsed=round(now - self._last_publish, 2))
        self._last_publish = now

        logger.info("[ws] %s: %s (%.2fs)", event.step, event.message, event.elapsed)
        for observer in list(self._observers):
            if not observer.is_ready():
                continue
            task = asyncio.create_task(self._deliver(observer, event, self._tails.get(observer)))
            self._tails[observer] = task
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        return event

    async def _deliver(
        self, observer: ProgressObserver, event: ProgressEvent, previous: asyncio.Task | None
    ) -> None:
        if previous is not None:
            await asyncio.wait([previous])
        if observer not in self._observers or not observer.is_ready():
            return
        try:
            await observer.send_event(event)
        except Exception as exc:  # noqa: BLE001
            logger.debug("Dropping progress observer after send failure: %s", exc)
            self.detach(observer)

    async def drain(self) -> None:
        """Wait until every send handed off so far has finished."""
        while True:
            pending = [task for task in self._pending if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def close(self) -> None:
        pending = list(self._pending)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._tails.clear()
        observers, self._observers = self._observers, []
        for observer in observers:
            try:
                await observer.close()
            except Exception as exc:  # noqa: BLE001
                logger.debug("Progress observer did not close cleanly: %s", exc)
