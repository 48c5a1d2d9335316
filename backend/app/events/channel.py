from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List

from tenacity import AsyncRetrying, RetryError, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter


logger = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any]], Awaitable[Any]]


@dataclass
class Subscription:
    topic: str
    handler: Handler
    max_messages: int
    attempts: int
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)
    workers: List[asyncio.Task] = field(default_factory=list)
    delivered: int = 0
    dead_lettered: int = 0


class EventChannel:
    """In-process topic channel with bounded in-flight delivery per subscription.

    Each subscription drains its own queue with ``max_messages`` workers, so at
    most that many handler calls are in flight at once. Handlers that raise are
    redelivered with exponential jitter backoff; after ``attempts`` failures
    the message is logged and dropped.
    """

    def __init__(self, attempts: int = 5, initial_backoff: float = 1.0, max_backoff: float = 30.0) -> None:
        self._attempts = attempts
        self._initial_backoff = initial_backoff
        self._max_backoff = max_backoff
        self._subscriptions: Dict[str, List[Subscription]] = {}
        self._started = False

    def subscribe(self, topic: str, handler: Handler, max_messages: int = 3) -> Subscription:
        sub = Subscription(topic=topic, handler=handler, max_messages=max(1, max_messages), attempts=self._attempts)
        self._subscriptions.setdefault(topic, []).append(sub)
        if self._started:
            self._spawn_workers(sub)
        return sub

    async def publish(self, topic: str, payload: Dict[str, Any]) -> int:
        subs = self._subscriptions.get(topic, [])
        if not subs:
            logger.warning("No subscribers for topic %s; dropping message", topic)
        for sub in subs:
            await sub.queue.put(payload)
        return len(subs)

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        for subs in self._subscriptions.values():
            for sub in subs:
                self._spawn_workers(sub)

    async def drain(self) -> None:
        """Wait until every queued message has been handled or dropped."""
        for subs in self._subscriptions.values():
            for sub in subs:
                await sub.queue.join()

    async def stop(self) -> None:
        tasks = [t for subs in self._subscriptions.values() for sub in subs for t in sub.workers]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        for subs in self._subscriptions.values():
            for sub in subs:
                sub.workers.clear()
        self._started = False

    def _spawn_workers(self, sub: Subscription) -> None:
        for i in range(sub.max_messages):
            sub.workers.append(asyncio.create_task(self._worker(sub), name=f"{sub.topic}-worker-{i}"))

    async def _worker(self, sub: Subscription) -> None:
        while True:
            payload = await sub.queue.get()
            try:
                await self._deliver(sub, payload)
            finally:
                sub.queue.task_done()

    async def _deliver(self, sub: Subscription, payload: Dict[str, Any]) -> None:
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(sub.attempts),
                wait=wait_exponential_jitter(initial=self._initial_backoff, max=self._max_backoff),
                retry=retry_if_exception_type(Exception),
                reraise=False,
            ):
                with attempt:
                    await sub.handler(payload)
            sub.delivered += 1
        except RetryError as exc:
            sub.dead_lettered += 1
            last = exc.last_attempt.exception()
            logger.error(
                "Giving up on %s message after %d attempts: %r",
                sub.topic,
                sub.attempts,
                payload,
                exc_info=last,
            )
