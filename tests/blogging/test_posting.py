"""Tests for crosspost.blogging.posting: drafting and cross-posting."""

from __future__ import annotations

import asyncio

import pytest

from crosspost.blogging.auth import AuthorizationChannel
from crosspost.blogging.micro import BlogImage, MicroblogPost
from crosspost.blogging.posting import DraftStore, PostingFlow, parse_langs
from crosspost.dispatcher import Dispatcher
from crosspost.errors import DeliveryError, PlatformError
from crosspost.im.flow import FlowScheduler, FlowStatus
from crosspost.im.messages import Image


class FakePlatform:
    def __init__(self, url: str = "", error: Exception | None = None, authorized: bool = True):
        self.url = url
        self.error = error
        self.authorized = authorized
        self.posted: list[tuple[str, MicroblogPost]] = []

    def is_authorized(self, user_id: str) -> bool:
        return self.authorized

    def start_authorization(self, user_id: str) -> AuthorizationChannel:
        raise NotImplementedError

    async def post(self, user_id: str, draft: MicroblogPost) -> str:
        self.posted.append((user_id, draft))
        if self.error is not None:
            raise self.error
        return self.url


class TestParseLangs:
    @pytest.mark.parametrize(
        ("args", "expected"),
        [
            ((), []),
            (("langs=en,es",), ["en", "es"]),
            (("lang=pt",), ["pt"]),
            (("en,fr",), ["en", "fr"]),
            (("langs=de", "en"), ["de"]),
            (("langs=en,,es ",), ["en", "es"]),
        ],
    )
    def test_parse(self, args, expected):
        assert parse_langs(args) == expected


class TestDraftStore:
    def test_one_draft_per_user(self):
        store = DraftStore()
        assert store.create("u1", ["en"]) is not None
        assert store.create("u1") is None
        assert store.get("u1").langs == ["en"]
        assert len(store) == 1

    def test_append_joins_text_with_newlines(self):
        store = DraftStore()
        store.create("u1")
        assert store.append("u1", "a", []) == 1
        assert store.append("u1", "b", [BlogImage(data=b"x")]) == 2
        draft = store.get("u1")
        assert draft.text == "a\nb"
        assert len(draft.images) == 1

    def test_append_without_draft(self):
        assert DraftStore().append("u1", "a", []) is None

    def test_restore_only_when_no_new_draft(self):
        store = DraftStore()
        store.create("u1")
        draft = store.pop("u1")
        assert store.restore("u1", draft) is True
        assert store.get("u1") is draft

        popped = store.pop("u1")
        store.create("u1")
        assert store.restore("u1", popped) is False
        assert store.get("u1") is not popped

    def test_pop_removes(self):
        store = DraftStore()
        store.create("u1")
        assert store.pop("u1") is not None
        assert store.pop("u1") is None
        assert "u1" not in store


class TestDrafting:
    @pytest.mark.asyncio
    async def test_new_creates_draft(self, make_message, messenger):
        flow = PostingFlow({})
        status = await flow.start(make_message("/new langs=en"), messenger)
        assert status is FlowStatus.CONTINUE
        assert flow.drafts.get("42").langs == ["en"]
        assert messenger.texts[0].startswith("Started a new post.")

    @pytest.mark.asyncio
    async def test_second_new_keeps_draft(self, make_message, messenger):
        flow = PostingFlow({})
        await flow.start(make_message("/new"), messenger)
        await flow.handle_message(make_message("hello"), messenger)
        status = await flow.handle_message(make_message("/new es"), messenger)
        assert status is FlowStatus.CONTINUE
        assert flow.drafts.get("42").text == "hello"
        assert flow.drafts.get("42").langs == []
        assert messenger.texts[-1].startswith("You already have an active post.")

    @pytest.mark.asyncio
    async def test_text_and_images_accumulate(self, make_message, messenger):
        flow = PostingFlow({})
        await flow.start(make_message("/new"), messenger)
        await flow.handle_message(make_message("a"), messenger)
        await flow.handle_message(make_message("b"), messenger)
        photo = make_message("", images=[Image(data=b"img", caption="a cat")])
        await flow.handle_message(photo, messenger)

        draft = flow.drafts.get("42")
        assert draft.text == "a\nb"
        assert draft.images == [BlogImage(data=b"img", alt_text="a cat")]
        assert messenger.texts[1:] == ["Content added to your post."] * 3

    @pytest.mark.asyncio
    async def test_empty_message_adds_nothing(self, make_message, messenger):
        flow = PostingFlow({})
        await flow.start(make_message("/new"), messenger)
        assert await flow.handle_message(make_message(""), messenger) is FlowStatus.CONTINUE
        assert messenger.texts[-1] == "Received message, but no content was added."

    @pytest.mark.asyncio
    async def test_text_without_draft_finishes(self, make_message, messenger):
        flow = PostingFlow({})
        assert await flow.handle_message(make_message("orphan"), messenger) is FlowStatus.FINISHED
        assert messenger.texts == ["No active post. Use /new to start writing a new post."]

    @pytest.mark.asyncio
    async def test_unknown_command_keeps_drafting(self, make_message, messenger):
        flow = PostingFlow({})
        await flow.start(make_message("/new"), messenger)
        assert await flow.handle_message(make_message("/help"), messenger) is FlowStatus.CONTINUE
        assert "Unknown command /help" in messenger.texts[-1]
        assert flow.drafts.get("42") is not None


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_discards_draft(self, make_message, messenger):
        flow = PostingFlow({})
        await flow.start(make_message("/new"), messenger)
        assert await flow.handle_message(make_message("/cancel"), messenger) is FlowStatus.FINISHED
        assert flow.drafts.get("42") is None
        assert messenger.texts[-1] == "Post canceled."

    @pytest.mark.asyncio
    async def test_cancel_without_draft(self, make_message, messenger):
        drafts = DraftStore()
        drafts.create("someone-else")
        flow = PostingFlow({}, drafts)
        assert await flow.start(make_message("/cancel"), messenger) is FlowStatus.FINISHED
        assert messenger.texts == ["No active post to cancel."]
        assert len(drafts) == 1


class TestSend:
    @pytest.mark.asyncio
    async def test_send_reports_each_platform(self, make_message, messenger):
        good = FakePlatform(url="https://good.example/1")
        bad = FakePlatform(error=PlatformError("503 unavailable"))
        flow = PostingFlow({"good": good, "bad": bad})

        await flow.start(make_message("/new"), messenger)
        await flow.handle_message(make_message("hello"), messenger)
        status = await flow.handle_message(make_message("/send"), messenger)

        assert status is FlowStatus.FINISHED
        assert flow.drafts.get("42") is None
        assert messenger.texts[-2:] == [
            "Post sent to good (https://good.example/1)",
            "Post not sent to bad: 503 unavailable",
        ]
        assert good.posted[0][1].text == "hello"
        assert len(bad.posted) == 1

    @pytest.mark.asyncio
    async def test_unauthorized_platform_is_skipped(self, make_message, messenger):
        locked = FakePlatform(url="https://x", authorized=False)
        flow = PostingFlow({"mastodon": locked})
        await flow.start(make_message("/new"), messenger)
        await flow.handle_message(make_message("hello"), messenger)
        await flow.handle_message(make_message("/send"), messenger)
        assert locked.posted == []
        assert messenger.texts[-1].startswith("Post not sent to mastodon: account not authorized")

    @pytest.mark.asyncio
    async def test_send_without_draft(self, make_message, messenger):
        flow = PostingFlow({"good": FakePlatform(url="u")})
        assert await flow.start(make_message("/send"), messenger) is FlowStatus.FINISHED
        assert messenger.texts == ["No active post to send. Use /new to start a post."]

    @pytest.mark.asyncio
    async def test_send_without_platforms(self, make_message, messenger):
        flow = PostingFlow({})
        await flow.start(make_message("/new"), messenger)
        await flow.handle_message(make_message("hello"), messenger)
        assert await flow.handle_message(make_message("/send"), messenger) is FlowStatus.FINISHED
        assert messenger.texts[-1] == "No blogging platforms are configured, nothing was sent."

    @pytest.mark.asyncio
    async def test_delivery_failures_are_aggregated(self, make_message, messenger):
        flow = PostingFlow({"a": FakePlatform(url="1"), "b": FakePlatform(url="2")})
        await flow.start(make_message("/new"), messenger)
        await flow.handle_message(make_message("hello"), messenger)
        messenger.fail = True
        with pytest.raises(DeliveryError) as exc_info:
            await flow.handle_message(make_message("/send"), messenger)
        assert len(exc_info.value.errors) == 2
        assert flow.drafts.get("42") is None

    @pytest.mark.asyncio
    async def test_concurrent_sends_publish_once(self, make_message, messenger):
        platform = FakePlatform(url="https://once")
        drafts = DraftStore()
        drafts.create("42")
        drafts.append("42", "hello", [])
        flow_a = PostingFlow({"p": platform}, drafts)
        flow_b = PostingFlow({"p": platform}, drafts)

        await asyncio.gather(
            flow_a.handle_message(make_message("/send"), messenger),
            flow_b.handle_message(make_message("/send"), messenger),
        )
        assert len(platform.posted) == 1
        assert "No active post to send. Use /new to start a post." in messenger.texts


    @pytest.mark.asyncio
    async def test_empty_draft_is_not_sent(self, make_message, messenger):
        platform = FakePlatform(url="https://p/1")
        flow = PostingFlow({"p": platform})
        await flow.start(make_message("/new"), messenger)
        assert await flow.handle_message(make_message("/send"), messenger) is FlowStatus.CONTINUE
        assert platform.posted == []
        assert messenger.texts[-1].startswith("Your post is empty.")
        assert flow.drafts.get("42") is not None


class SlowPlatform(FakePlatform):
    async def post(self, user_id: str, draft: MicroblogPost) -> str:
        self.posted.append((user_id, draft))
        await asyncio.sleep(1)
        return "https://slow.example/1"


class TestInterruptedSend:
    @staticmethod
    def _dispatcher(platforms, drafts: DraftStore) -> Dispatcher:
        def factory(user_id: str) -> FlowScheduler:
            scheduler = FlowScheduler()
            scheduler.register_flow(
                PostingFlow(platforms, drafts), "posting", ["/new", "/send", "/cancel"]
            )
            return scheduler

        return Dispatcher(factory, turn_timeout=0.05)

    @pytest.mark.asyncio
    async def test_timeout_before_any_platform_keeps_draft(self, make_message, messenger):
        drafts = DraftStore()
        dispatcher = self._dispatcher({"slow": SlowPlatform()}, drafts)
        for text in ("/new", "hello", "/send"):
            await dispatcher.dispatch(make_message(text), messenger)

        assert drafts.get("42").text == "hello"
        assert messenger.texts[-1].startswith("Sending was interrupted before the post reached")

    @pytest.mark.asyncio
    async def test_timeout_after_some_platforms_reports_the_rest(self, make_message, messenger):
        drafts = DraftStore()
        platforms = {"fast": FakePlatform(url="https://fast/1"), "slow": SlowPlatform()}
        dispatcher = self._dispatcher(platforms, drafts)
        for text in ("/new", "hello", "/send"):
            await dispatcher.dispatch(make_message(text), messenger)

        assert drafts.get("42") is None
        assert messenger.texts[-2:] == [
            "Post sent to fast (https://fast/1)",
            "Sending was interrupted. Post not sent to: slow.",
        ]


class TestThroughScheduler:
    @pytest.mark.asyncio
    async def test_post_lifecycle(self, make_message, messenger):
        platform = FakePlatform(url="https://p/1")
        scheduler = FlowScheduler()
        scheduler.register_flow(
            PostingFlow({"p": platform}), "posting", ["/new", "/send", "/cancel"]
        )

        await scheduler.handle_message(make_message("/new"), messenger)
        await scheduler.handle_message(make_message("first line"), messenger)
        assert scheduler.current_flow == "posting"
        await scheduler.handle_message(make_message("/send"), messenger)
        assert scheduler.is_idle
        assert platform.posted[0][1].text == "first line"
