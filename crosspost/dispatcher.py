"""Per-user routing of inbound messages to flow schedulers.

Every user gets a FlowScheduler of their own, built on first contact by
the scheduler factory. A FlowScheduler must never see two messages of the
same user at once, so each user also gets an asyncio.Lock; asyncio locks
wake waiters in FIFO order, which keeps each user's messages in arrival
order. Different users are handled concurrently. Once a user has no
active flow and nothing queued, their lock and scheduler are dropped.

Usage:
    dispatcher = Dispatcher(build_scheduler, turn_timeout=120)
    consumer = asyncio.create_task(run_consumer(bus, dispatcher, messenger))
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

from loguru import logger

from crosspost.bus import MessageBus
from crosspost.errors import CrosspostError
from crosspost.im.flow import FlowScheduler
from crosspost.im.messages import Message, Messenger

SchedulerFactory = Callable[[str], FlowScheduler]


class Dispatcher:
    """Owns the user id -> FlowScheduler map and serializes per-user work."""

    def __init__(self, scheduler_factory: SchedulerFactory, *, turn_timeout: float = 0) -> None:
        self._factory = scheduler_factory
        self._turn_timeout = turn_timeout
        self._schedulers: dict[str, FlowScheduler] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._queued: dict[str, int] = {}

    @property
    def user_count(self) -> int:
        return len(self._schedulers)

    def scheduler_for(self, user_id: str) -> FlowScheduler:
        """Return the user's scheduler, creating it on first contact."""
        scheduler = self._schedulers.get(user_id)
        if scheduler is None:
            scheduler = self._factory(user_id)
            self._schedulers[user_id] = scheduler
            logger.debug("Created flow scheduler for user {}", user_id)
        return scheduler

    async def dispatch(self, message: Message, messenger: Messenger) -> None:
        """Run one message through its user's scheduler.

        Errors are logged and never propagate: one user's failure must not
        stop the consumer. A turn that exceeds the timeout is cancelled.
        """
        user_id = message.user_id
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        self._queued[user_id] = self._queued.get(user_id, 0) + 1
        try:
            async with lock:
                scheduler = self.scheduler_for(user_id)
                try:
                    if self._turn_timeout > 0:
                        async with asyncio.timeout(self._turn_timeout):
                            await scheduler.handle_message(message, messenger)
                    else:
                        await scheduler.handle_message(message, messenger)
                except TimeoutError:
                    logger.warning(
                        "Turn for user {} timed out after {}s (flow '{}')",
                        message.user_id,
                        self._turn_timeout,
                        scheduler.current_flow,
                    )
                except CrosspostError as exc:
                    logger.error("Error handling message from user {}: {}", message.user_id, exc)
                except Exception as exc:
                    logger.exception(
                        "Unexpected error handling message from user {}: {}", message.user_id, exc
                    )
        finally:
            self._queued[user_id] -= 1
            self._forget_if_idle(user_id)

    def _forget_if_idle(self, user_id: str) -> None:
        """Drop the user's lock and scheduler once nothing is queued and no flow is active."""
        if self._queued.get(user_id):
            return
        scheduler = self._schedulers.get(user_id)
        if scheduler is not None and not scheduler.is_idle:
            return
        self._queued.pop(user_id, None)
        self._locks.pop(user_id, None)
        self._schedulers.pop(user_id, None)


async def run_consumer(bus: MessageBus, dispatcher: Dispatcher, messenger: Messenger) -> None:
    """Pop inbound messages forever, dispatching each in its own task.

    Cancelling the consumer cancels every in-flight dispatch.
    """
    in_flight: set[asyncio.Task[None]] = set()
    try:
        while True:
            message = await bus.pop_inbound()
            task = asyncio.create_task(
                dispatcher.dispatch(message, messenger),
                name=f"dispatch-{message.transport}-{message.user_id}",
            )
            in_flight.add(task)
            task.add_done_callback(in_flight.discard)
    finally:
        for task in in_flight:
            task.cancel()
        if in_flight:
            await asyncio.gather(*in_flight, return_exceptions=True)
