"""Tests for ChangeFeedSubscriber delivery and reconnection."""

import asyncio

from tests.fixtures.watch_fixtures import TEST_SESSION_ID, make_session_record
from watchsync.schemas import ChatMessage, FeedStatus
from watchsync.services.change_feed import ChangeFeedSubscriber
from watchsync.services.redis_keys import chat_channel, session_channel
from watchsync.utils.app_errors import FeedDisconnected


class FakePubSub:
    """Scripted pub/sub connection."""

    def __init__(self, messages=None, *, fail_subscribe: bool = False, hold: bool = True):
        self.messages = list(messages or [])
        self.fail_subscribe = fail_subscribe
        self.hold = hold
        self.channels: list[str] = []
        self.closed = False

    async def subscribe(self, channel: str) -> None:
        if self.fail_subscribe:
            raise ConnectionError("connection refused")
        self.channels.append(channel)

    async def listen(self):
        for channel in self.channels:
            yield {"type": "subscribe", "channel": channel, "data": 1}
        for data in self.messages:
            yield {"type": "message", "channel": self.channels[0], "data": data}
        if self.hold:
            await asyncio.Event().wait()

    async def aclose(self) -> None:
        self.closed = True


class FakeRedis:
    """Hands out scripted connections in order, then idle ones."""

    def __init__(self, *pubsubs: FakePubSub):
        self._queue = list(pubsubs)
        self.created: list[FakePubSub] = []

    def pubsub(self) -> FakePubSub:
        pubsub = self._queue.pop(0) if self._queue else FakePubSub()
        self.created.append(pubsub)
        return pubsub


def make_feed(redis: FakeRedis, **kwargs) -> ChangeFeedSubscriber:
    kwargs.setdefault("max_attempts", 3)
    kwargs.setdefault("base_delay", 0.001)
    kwargs.setdefault("max_delay", 0.01)
    kwargs.setdefault("connect_timeout", 1.0)
    return ChangeFeedSubscriber(redis, **kwargs)


class TestDelivery:
    """Tests for message delivery."""

    async def test_delivers_records(self):
        """Test published records are validated and passed to the callback."""
        # Arrange
        record = make_session_record(playback_time=12.0)
        redis = FakeRedis(FakePubSub([record.model_dump_json()]))
        feed = make_feed(redis)
        received = []

        # Act
        await feed.subscribe(TEST_SESSION_ID, received.append)
        await asyncio.sleep(0.01)

        # Assert
        assert feed.status == FeedStatus.CONNECTED
        assert feed.session_id == TEST_SESSION_ID
        assert received == [record]
        assert redis.created[0].channels == [session_channel(TEST_SESSION_ID)]
        await feed.unsubscribe()

    async def test_async_callback(self):
        """Test coroutine callbacks are awaited."""
        record = make_session_record()
        feed = make_feed(FakeRedis(FakePubSub([record.model_dump_json()])))
        received = []

        async def on_update(item):
            received.append(item)

        await feed.subscribe(TEST_SESSION_ID, on_update)
        await asyncio.sleep(0.01)
        await feed.unsubscribe()

        assert received == [record]

    async def test_malformed_payload_skipped(self):
        """Test invalid payloads are dropped and delivery continues."""
        record = make_session_record()
        feed = make_feed(FakeRedis(FakePubSub(["{broken", '{"id": "x"}', record.model_dump_json()])))
        received = []

        await feed.subscribe(TEST_SESSION_ID, received.append)
        await asyncio.sleep(0.01)
        await feed.unsubscribe()

        assert received == [record]

    async def test_callback_failure_does_not_stop_feed(self):
        """Test an exception in the callback is logged and the next record still arrives."""
        first = make_session_record(playback_time=1.0)
        second = make_session_record(playback_time=2.0)
        feed = make_feed(FakeRedis(FakePubSub([first.model_dump_json(), second.model_dump_json()])))
        received = []

        def on_update(item):
            received.append(item)
            if len(received) == 1:
                raise ValueError("handler bug")

        await feed.subscribe(TEST_SESSION_ID, on_update)
        await asyncio.sleep(0.01)
        await feed.unsubscribe()

        assert received == [first, second]

    async def test_chat_model_and_channel(self):
        """Test the subscriber can be parameterized for chat messages."""
        message = ChatMessage(id="cm_1", session_id=TEST_SESSION_ID, device_id="dev_a", message="hi")
        redis = FakeRedis(FakePubSub([message.model_dump_json()]))
        feed = make_feed(redis, model=ChatMessage, channel_for=chat_channel)
        received = []

        await feed.subscribe(TEST_SESSION_ID, received.append)
        await asyncio.sleep(0.01)
        await feed.unsubscribe()

        assert received == [message]
        assert redis.created[0].channels == [chat_channel(TEST_SESSION_ID)]


class TestReconnection:
    """Tests for backoff and degraded mode."""

    async def test_reconnects_after_drop(self):
        """Test a dropped subscription reports an error and reconnects."""
        # Arrange
        redis = FakeRedis(FakePubSub(hold=False), FakePubSub())
        feed = make_feed(redis)
        statuses = []
        errors = []
        feed.add_status_listener(statuses.append)

        # Act
        await feed.subscribe(TEST_SESSION_ID, lambda _: None, errors.append)
        await asyncio.sleep(0.05)

        # Assert
        assert len(errors) == 1
        assert isinstance(errors[0], FeedDisconnected)
        assert FeedStatus.RECONNECTING in statuses
        assert feed.status == FeedStatus.CONNECTED
        assert len(redis.created) == 2
        assert redis.created[0].closed is True
        await feed.unsubscribe()

    async def test_gives_up_after_max_attempts(self):
        """Test exhausting attempts ends DISCONNECTED with one error per attempt."""
        # Arrange
        redis = FakeRedis(*[FakePubSub(fail_subscribe=True) for _ in range(5)])
        feed = make_feed(redis, max_attempts=3)
        errors = []

        # Act
        await feed.subscribe(TEST_SESSION_ID, lambda _: None, errors.append)
        await asyncio.sleep(0.1)

        # Assert
        assert feed.status == FeedStatus.DISCONNECTED
        assert len(errors) == 3
        assert len(redis.created) == 3

    async def test_zero_attempts_gives_up_on_first_failure(self):
        """Test an explicit max_attempts of 0 is honoured instead of the configured default."""
        redis = FakeRedis(*[FakePubSub(fail_subscribe=True) for _ in range(5)])
        feed = make_feed(redis, max_attempts=0)
        errors = []

        await feed.subscribe(TEST_SESSION_ID, lambda _: None, errors.append)
        await asyncio.sleep(0.05)

        assert feed.status == FeedStatus.DISCONNECTED
        assert len(errors) == 1
        assert len(redis.created) == 1

    async def test_async_error_callback(self):
        """Test coroutine error callbacks are awaited."""
        redis = FakeRedis(*[FakePubSub(fail_subscribe=True) for _ in range(2)])
        feed = make_feed(redis, max_attempts=2)
        errors = []

        async def on_error(error):
            errors.append(error)

        await feed.subscribe(TEST_SESSION_ID, lambda _: None, on_error)
        await asyncio.sleep(0.05)

        assert len(errors) == 2


class TestSubscriptionLifecycle:
    """Tests for subscribe/unsubscribe bookkeeping."""

    async def test_unsubscribe_is_idempotent(self):
        """Test unsubscribe is safe before subscribe and when repeated."""
        feed = make_feed(FakeRedis())

        await feed.unsubscribe()
        await feed.subscribe(TEST_SESSION_ID, lambda _: None)
        await feed.unsubscribe()
        await feed.unsubscribe()

        assert feed.status == FeedStatus.DISCONNECTED

    async def test_unsubscribe_closes_connection(self):
        """Test the pub/sub connection is closed on unsubscribe."""
        redis = FakeRedis(FakePubSub())
        feed = make_feed(redis)

        await feed.subscribe(TEST_SESSION_ID, lambda _: None)
        await feed.unsubscribe()

        assert redis.created[0].closed is True

    async def test_resubscribe_replaces_previous(self):
        """Test subscribing again tears down the previous subscription."""
        redis = FakeRedis(FakePubSub(), FakePubSub())
        feed = make_feed(redis)

        await feed.subscribe("ws_first", lambda _: None)
        await feed.subscribe("ws_second", lambda _: None)

        assert feed.session_id == "ws_second"
        assert redis.created[0].closed is True
        assert redis.created[1].channels == [session_channel("ws_second")]
        await feed.unsubscribe()

    async def test_status_listener_remove(self):
        """Test a removed status listener is no longer called."""
        feed = make_feed(FakeRedis())
        statuses = []
        remove = feed.add_status_listener(statuses.append)

        remove()
        await feed.subscribe(TEST_SESSION_ID, lambda _: None)
        await feed.unsubscribe()

        assert statuses == []
