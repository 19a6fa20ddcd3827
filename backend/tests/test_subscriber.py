from concurrent.futures import Future
from types import SimpleNamespace

import pytest

from los_relay import subscriber as subscriber_module
from los_relay.subscriber import MqttSubscriber, parse_broker_url


class DummyPipeline:
    def __init__(self):
        self.calls = []

    async def handle_message(self, topic, raw, retained=False):
        self.calls.append((topic, raw))


class DummyClient:
    def __init__(self):
        self.subscribed = []

    def subscribe(self, topic, qos=0):
        self.subscribed.append((topic, qos))


@pytest.fixture
def scheduled(monkeypatch):
    calls = []

    def fake_run_coroutine_threadsafe(coro, loop):
        calls.append((coro.cr_code.co_name, loop))
        coro.close()
        future = Future()
        future.set_result(None)
        return future

    monkeypatch.setattr(subscriber_module.asyncio, "run_coroutine_threadsafe", fake_run_coroutine_threadsafe)
    return calls


def _subscriber(pipeline=None):
    return MqttSubscriber(pipeline or DummyPipeline(), "loop", "mqtt://broker", ["sensors/+/reading", "los/#"])


def test_parse_broker_url():
    assert parse_broker_url("mqtt://broker.local") == ("broker.local", 1883, False)
    assert parse_broker_url("mqtts://broker.local") == ("broker.local", 8883, True)
    assert parse_broker_url("tcp://10.0.0.5:1884") == ("10.0.0.5", 1884, False)
    assert parse_broker_url("broker.local:2000") == ("broker.local", 2000, False)


@pytest.mark.parametrize("url", ["http://broker", "mqtt://"])
def test_parse_broker_url_rejects_bad_urls(url):
    with pytest.raises(ValueError):
        parse_broker_url(url)


def test_recognized_topics_follow_subscriptions():
    sub = _subscriber()
    assert sub.is_recognized("sensors/a/reading")
    assert sub.is_recognized("los/site/1")
    assert not sub.is_recognized("sensors/a/status")


def test_message_is_scheduled_on_the_loop(scheduled):
    sub = _subscriber()
    sub._on_message(None, None, SimpleNamespace(topic="sensors/a/reading", payload=b"{}", retain=False))
    assert scheduled == [("handle_message", "loop")]


def test_retained_message_is_skipped(scheduled):
    sub = _subscriber()
    sub._on_message(None, None, SimpleNamespace(topic="sensors/a/reading", payload=b"{}", retain=True))
    assert scheduled == []


def test_unrecognized_topic_is_skipped(scheduled):
    sub = _subscriber()
    sub._on_message(None, None, SimpleNamespace(topic="other/topic", payload=b"{}", retain=False))
    assert scheduled == []


def test_subscribes_after_successful_connect():
    sub = _subscriber()
    client = DummyClient()
    sub._on_connect(client, None, {}, SimpleNamespace(is_failure=False))
    assert client.subscribed == [("sensors/+/reading", 0), ("los/#", 0)]


def test_failed_connect_does_not_subscribe(caplog):
    sub = _subscriber()
    client = DummyClient()
    sub._on_connect(client, None, {}, SimpleNamespace(is_failure=True))
    assert client.subscribed == []
    assert "Failed to connect to MQTT broker" in caplog.text


def test_pipeline_failures_are_logged(caplog):
    future = Future()
    future.set_exception(RuntimeError("boom"))
    MqttSubscriber._log_failure(future)
    assert "Error processing MQTT message" in caplog.text


def test_stop_without_connect_is_a_noop():
    sub = _subscriber()
    sub.stop()
    assert sub.client is None
