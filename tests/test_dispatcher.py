"""Tests for crosspost.dispatcher: per-user schedulers, ordering, error isolation."""

from __future__ import annotations

import asyncio

import pytest

from crosspost.bus import MessageBus
from crosspost.dispatcher import Dispatcher, run_consumer
from crosspost.im.flow import Flow, FlowScheduler, FlowStatus
from crosspost.im.messages import Message, Messenger


class EchoFlow(Flow):
    """Echoes every message; /stop finishes the flow, /boom raises, /slow hangs."""

    def __init__(self, seen: list[str]) -> None:
        super().__init__()
        self.seen = seen

    async def start(self, message: Message, messenger: Messenger) -> FlowStatus:
        return await self.handle_message(message, messenger)

    async def handle_message(self, message: Message, messenger: Messenger) -> FlowStatus:
        if message.text == "/boom":
            raise ValueError("boom")
        if message.text == "/slow":
            await asyncio.sleep(10)
        self.seen.append(f"{message.user_id}:{message.text}")
        await messenger.send_message(message.reply(message.text))
        return FlowStatus.FINISHED if message.text == "/stop" else FlowStatus.CONTINUE


class YieldingMessenger:
    """Messenger whose sends suspend, so other tasks get to run meanwhile."""

    name = "yielding"

    def __init__(self) -> None:
        self.sent: list[Message] = []

    async def send_message(self, message: Message) -> None:
        await asyncio.sleep(0)
        self.sent.append(message)


class Factory:
    def __init__(self) -> None:
        self.calls: list[str] = []
        self.seen: list[str] = []

    def __call__(self, user_id: str) -> FlowScheduler:
        self.calls.append(user_id)
        scheduler = FlowScheduler()
        scheduler.register_flow(EchoFlow(self.seen), "echo", ["/echo", "/boom", "/slow"])
        return scheduler


@pytest.fixture
def factory() -> Factory:
    return Factory()


class TestDispatch:
    @pytest.mark.asyncio
    async def test_scheduler_created_once_per_user(self, factory, make_message, messenger):
        dispatcher = Dispatcher(factory)
        await dispatcher.dispatch(make_message("/echo", user_id="1"), messenger)
        await dispatcher.dispatch(make_message("more", user_id="1"), messenger)
        await dispatcher.dispatch(make_message("/echo", user_id="2"), messenger)
        assert factory.calls == ["1", "2"]
        assert dispatcher.user_count == 2
        assert dispatcher.scheduler_for("1").current_flow == "echo"

    @pytest.mark.asyncio
    async def test_users_do_not_share_flow_state(self, factory, make_message, messenger):
        dispatcher = Dispatcher(factory)
        await dispatcher.dispatch(make_message("/echo", user_id="1"), messenger)
        await dispatcher.dispatch(make_message("plain text", user_id="2"), messenger)
        assert factory.seen == ["1:/echo"]
        assert dispatcher.scheduler_for("2").is_idle

    @pytest.mark.asyncio
    async def test_messages_of_one_user_keep_order(self, factory, make_message, messenger):
        dispatcher = Dispatcher(factory)
        texts = ["/echo", "a", "b", "c", "/stop"]
        await asyncio.gather(
            *(dispatcher.dispatch(make_message(t, user_id="1"), messenger) for t in texts)
        )
        assert factory.seen == [f"1:{t}" for t in texts]
        assert dispatcher.scheduler_for("1").is_idle

    @pytest.mark.asyncio
    async def test_idle_users_are_forgotten(self, factory, make_message, messenger):
        dispatcher = Dispatcher(factory)
        await dispatcher.dispatch(make_message("plain text", user_id="9"), messenger)
        assert dispatcher.user_count == 0

        await dispatcher.dispatch(make_message("/echo", user_id="1"), messenger)
        assert dispatcher.user_count == 1
        await dispatcher.dispatch(make_message("/stop", user_id="1"), messenger)
        assert dispatcher.user_count == 0
        assert dispatcher._locks == {}

    @pytest.mark.asyncio
    async def test_queued_user_is_kept_until_drained(self, factory, make_message):
        messenger = YieldingMessenger()
        dispatcher = Dispatcher(factory)
        await dispatcher.dispatch(make_message("/echo", user_id="1"), messenger)
        # "/stop" idles the scheduler while "/echo" is still waiting for the lock.
        await asyncio.gather(
            dispatcher.dispatch(make_message("/stop", user_id="1"), messenger),
            dispatcher.dispatch(make_message("/echo", user_id="1"), messenger),
        )
        assert factory.calls == ["1"]
        assert dispatcher.scheduler_for("1").current_flow == "echo"

    @pytest.mark.asyncio
    async def test_errors_are_logged_not_raised(self, factory, make_message, messenger):
        dispatcher = Dispatcher(factory)
        await dispatcher.dispatch(make_message("/boom"), messenger)
        # The failed start leaves the flow active; the next message reaches it.
        await dispatcher.dispatch(make_message("after"), messenger)
        assert factory.seen == ["42:after"]

    @pytest.mark.asyncio
    async def test_messenger_failure_is_contained(self, factory, make_message, failing_messenger):
        dispatcher = Dispatcher(factory)
        await dispatcher.dispatch(make_message("/echo"), failing_messenger)
        assert factory.seen == ["42:/echo"]

    @pytest.mark.asyncio
    async def test_turn_timeout_cancels_the_turn(self, factory, make_message, messenger):
        dispatcher = Dispatcher(factory, turn_timeout=0.05)
        await dispatcher.dispatch(make_message("/slow"), messenger)
        assert messenger.sent == []
        assert dispatcher.scheduler_for("42").current_flow == "echo"

        await dispatcher.dispatch(make_message("/stop"), messenger)
        assert dispatcher.scheduler_for("42").is_idle


class TestRunConsumer:
    @pytest.mark.asyncio
    async def test_dispatches_bus_messages_until_cancelled(
        self, factory, make_message, messenger
    ):
        bus = MessageBus()
        dispatcher = Dispatcher(factory)
        consumer = asyncio.create_task(run_consumer(bus, dispatcher, messenger))

        await bus.push_inbound(make_message("/echo", user_id="1"))
        await bus.push_inbound(make_message("/echo", user_id="2"))
        for _ in range(50):
            if len(messenger.sent) == 2:
                break
            await asyncio.sleep(0.01)
        assert sorted(messenger.texts) == ["/echo", "/echo"]

        consumer.cancel()
        with pytest.raises(asyncio.CancelledError):
            await consumer

    @pytest.mark.asyncio
    async def test_cancel_stops_in_flight_turns(self, factory, make_message, messenger):
        bus = MessageBus()
        dispatcher = Dispatcher(factory)
        consumer = asyncio.create_task(run_consumer(bus, dispatcher, messenger))

        await bus.push_inbound(make_message("/slow"))
        for _ in range(50):
            if dispatcher.user_count:
                break
            await asyncio.sleep(0.01)

        consumer.cancel()
        with pytest.raises(asyncio.CancelledError):
            await consumer
        assert factory.seen == []
        assert messenger.sent == []
