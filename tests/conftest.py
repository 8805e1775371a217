import pytest


class FakeInfo:
    def __init__(self, published=True):
        self._published = published
        self.rc = 0

    def wait_for_publish(self, timeout=None):
        pass

    def is_published(self):
        return self._published


class FakeMqttClient:
    """Stands in for paho.mqtt.client.Client: records publishes and subscriptions."""

    def __init__(self):
        self.connected = True
        self.published = []
        self.subscribed = []
        self.fail_with = None
        self.ack = True

    def is_connected(self):
        return self.connected

    def publish(self, topic, payload=None, qos=0, retain=False):
        if self.fail_with is not None:
            raise self.fail_with
        self.published.append((topic, payload, retain))
        return FakeInfo(self.ack)

    def subscribe(self, topic, qos=0):
        self.subscribed.append(topic)

    def topics(self):
        return [t for t, _, _ in self.published]

    def last(self, topic):
        for t, payload, _ in reversed(self.published):
            if t == topic:
                return payload
        return None


class FakeClock:
    def __init__(self, t=0.0):
        self.t = t

    def __call__(self):
        return self.t


@pytest.fixture
def mqtt_client():
    return FakeMqttClient()


@pytest.fixture
def clock():
    return FakeClock()
