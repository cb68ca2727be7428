import logging

import numpy as np
import paho.mqtt.client as mqtt
import pytest

from sim_config import SimulationConfig


class FakeMsgInfo:
    def __init__(self, rc=mqtt.MQTT_ERR_SUCCESS, mid=1):
        self.rc = rc
        self.mid = mid


class FakeCommunicator:
    """
        Sustituto de MQTTCommunicator. mode: "accept" confirma la conexión al arrancar, "reject" la rechaza
        y "silent" no responde nunca (para probar el timeout).
    """
    def __init__(self, client_id, timezone, mode="accept", publish_error=None, publish_rc=mqtt.MQTT_ERR_SUCCESS,
                 disconnect_error=None, subscribe_error=None):
        self.client_id = client_id
        self.timezone = timezone
        self.mode = mode
        self.publish_error = publish_error
        self.publish_rc = publish_rc
        self.disconnect_error = disconnect_error
        self.subscribe_error = subscribe_error
        self.published = []
        self.subscriptions = []
        self.started = False
        self.disconnect_calls = 0
        self.on_publish = None

        self.message_callback = None
        self.connect_callback = None
        self.connect_error_callback = None
        self.disconnect_callback = None

    def set_message_callback(self, callback): self.message_callback = callback
    def set_connect_callback(self, callback): self.connect_callback = callback
    def set_connect_error_callback(self, callback): self.connect_error_callback = callback
    def set_disconnect_callback(self, callback): self.disconnect_callback = callback

    def start(self):
        self.started = True
        if self.mode == "accept":
            self.connect_callback()
        elif self.mode == "reject":
            self.connect_error_callback("CONNACK rechazado: Not authorized")

    def subscribe(self, topic, qos=0):
        if self.subscribe_error is not None:
            raise self.subscribe_error
        self.subscriptions.append((topic, qos))

    def publish(self, topic, payload, qos=1):
        if self.on_publish is not None:
            self.on_publish(topic, payload)
        if self.publish_error is not None:
            raise self.publish_error
        self.published.append((topic, payload, qos))
        return FakeMsgInfo(rc=self.publish_rc, mid=len(self.published))

    def disconnect(self, wait=False):
        self.disconnect_calls += 1
        if self.disconnect_error is not None:
            raise self.disconnect_error


class FakeBroker:
    """Fábrica de FakeCommunicator; behaviour(index) devuelve los kwargs para la conexión número index."""
    def __init__(self, behaviour=None):
        self.behaviour = behaviour or (lambda index: {})
        self.communicators = []

    def __call__(self, client_id, timezone):
        communicator = FakeCommunicator(client_id, timezone, **self.behaviour(len(self.communicators)))
        self.communicators.append(communicator)
        return communicator

    @property
    def published(self):
        return [entry for c in self.communicators for entry in c.published]


def make_config(**overrides):
    values = {
        "server_url": "mqtt://localhost:1883",
        "server_path": "/mqtt",
        "max_clients": 3,
        "max_messages_per_client": 2,
        "max_concurrent_messages": 5,
        "message_types": ["text", "voice", "video"],
        "min_delay_ms": 0,
        "max_delay_ms": 0,
        "connect_timeout": 1.0,
        "log_file": None,
    }
    values.update(overrides)
    return SimulationConfig(**values)


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def log():
    return logging.getLogger("tests.client_manager")


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def broker():
    return FakeBroker()
