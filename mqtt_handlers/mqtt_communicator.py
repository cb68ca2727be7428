import logging
import paho.mqtt.client as mqtt
from paho.mqtt.packettypes import PacketTypes
from paho.mqtt.properties import Properties
import json
import threading
import time


class MQTTCommunicator:
    """
        Conexión MQTT (v5) de un cliente simulado. Envuelve un paho.mqtt.Client con su propio hilo de red
        (loop_start) y expone callbacks simples para conexión, fallo de conexión, mensajes y desconexión.
        Los callbacks se ejecutan en el hilo de red de paho.
    """
    def __init__(self, broker_address, port, client_id, transport="tcp", ws_path="/mqtt", use_tls=False,
                 keepalive=60, connect_timeout=10.0, connect_metadata=None, log=None):
        self.broker_address = broker_address
        self.port = port
        self.client_id = client_id
        self.keepalive = keepalive
        self.connect_metadata = dict(connect_metadata or {})
        self.log = log or logging.getLogger("client_manager.mqtt")
        self._pending = {}  # mid -> (t0, topic)
        self._pending_lock = threading.RLock()
        self._closing = False

        self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=self.client_id,
                                  protocol=mqtt.MQTTv5, transport=transport, reconnect_on_failure=False)
        if transport == "websockets":
            self.client.ws_set_options(path=ws_path)
        if use_tls:
            self.client.tls_set()
        self.client.connect_timeout = connect_timeout
        self.client.on_connect = self._on_connect
        self.client.on_connect_fail = self._on_connect_fail
        self.client.on_message = self._on_message
        self.client.on_disconnect = self._on_disconnect
        self.client.on_publish = self._on_publish

        self.message_callback = None
        self.connect_callback = None
        self.connect_error_callback = None
        self.disconnect_callback = None
        self._subscribed_topics_qos = {}

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            self.log.debug(f"MQTTComm [{self.client_id}]: CONNACK rechazado: {reason_code}")
            if self.connect_error_callback:
                self.connect_error_callback(f"CONNACK rechazado: {reason_code}")
            return
        self.log.debug(f"MQTTComm [{self.client_id}]: Conectado a {self.broker_address}:{self.port}")
        for topic, qos_level in self._subscribed_topics_qos.items():
            self.client.subscribe(topic, qos=qos_level)
        if self.connect_callback:
            self.connect_callback()

    def _on_connect_fail(self, client, userdata):
        # El hilo de paho reintenta la primera conexión indefinidamente; se detiene desde el propio hilo
        self.client.loop_stop()
        if self.connect_error_callback:
            self.connect_error_callback(f"no se pudo abrir conexión con {self.broker_address}:{self.port}")

    def _on_message(self, client, userdata, msg):
        if self.message_callback:
            self.message_callback(msg.topic, msg.payload)

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        unexpected = not self._closing
        self.log.debug(f"MQTTComm [{self.client_id}]: Desconectado del broker. Código: {reason_code}")
        if self.disconnect_callback:
            self.disconnect_callback(reason_code, unexpected)

    def _on_publish(self, client, userdata, mid, reason_code, properties=None):
        with self._pending_lock:
            tup = self._pending.pop(mid, None)
        if tup:
            t0, topic = tup
            elapsed_ms = (time.perf_counter() - t0) * 1e3
            self.log.debug(f"[NET] client={self.client_id} topic={topic!r} mid={mid} {elapsed_ms:.2f} ms")

    def set_message_callback(self, callback): self.message_callback = callback
    def set_connect_callback(self, callback): self.connect_callback = callback
    def set_connect_error_callback(self, callback): self.connect_error_callback = callback
    def set_disconnect_callback(self, callback): self.disconnect_callback = callback

    def _connect_properties(self):
        properties = Properties(PacketTypes.CONNECT)
        for key, value in self.connect_metadata.items():
            properties.UserProperty = (str(key), str(value))
        return properties

    def start(self):
        """
            Solicita la conexión con el broker sin bloquear y arranca el hilo de red. El resultado llega por
            connect_callback o connect_error_callback.
        """
        self._closing = False
        self.client.connect_async(self.broker_address, self.port, self.keepalive,
                                  properties=self._connect_properties())
        self.client.loop_start()

    def disconnect(self, wait=False):
        """
            Solicita el cierre de la conexión. Con wait=False no espera a que el hilo de red termine.
        """
        self._closing = True
        self.client.disconnect()
        if wait:
            self.client.loop_stop()

    def publish(self, topic: str, payload: dict, qos: int = 1):
        t0 = time.perf_counter()
        with self._pending_lock:
            info = self.client.publish(topic, json.dumps(payload), qos=qos)
            if qos > 0:
                self._pending[info.mid] = (t0, topic)
        return info

    def subscribe(self, topic, qos=0):
        self.client.subscribe(topic, qos=qos)
        self._subscribed_topics_qos[topic] = qos
