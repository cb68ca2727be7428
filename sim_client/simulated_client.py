import asyncio
import json

import paho.mqtt.client as mqtt

from load_manager.client_sim_state import ConnectionState
from mqtt_handlers.mqtt_communicator import MQTTCommunicator
from sim_client.client_utils import (ERROR_TOPIC, MESSAGE_TOPIC, RESPONSE_TOPIC, build_message_payload,
                                     random_choice, random_uuid)
from sim_errors import ConnectionFailure, MessageSendError


class SimulatedClient:
    """
        Un cliente final simulado: una conexión MQTT propia, un contador de mensajes enviados y el conjunto de
        request_id pendientes de respuesta.

        Todo el estado se modifica desde el bucle de asyncio; los callbacks de paho (hilo de red) se
        reenvían al bucle con call_soon_threadsafe.
    """
    def __init__(self, client_id, timezone, config, log, rng, communicator_factory=None):
        self.client_id = client_id
        self.timezone = timezone
        self.config = config
        self.log = log
        self.rng = rng
        self.communicator_factory = communicator_factory or self._default_communicator

        self.communicator = None
        self.state = ConnectionState.DISCONNECTED
        self.message_count = 0
        self.pending_replies = set()

        self.message_topic = MESSAGE_TOPIC.format(prefix=config.topic_prefix)
        self.response_topic = RESPONSE_TOPIC.format(prefix=config.topic_prefix, client_id=client_id)
        self.error_topic = ERROR_TOPIC.format(prefix=config.topic_prefix, client_id=client_id)

        self._loop = None
        self._connect_future = None

    @property
    def is_connected(self):
        return self.state is ConnectionState.CONNECTED

    def _default_communicator(self, client_id, timezone):
        return MQTTCommunicator(
            self.config.host, self.config.port, client_id,
            transport=self.config.transport,
            ws_path=self.config.server_path,
            use_tls=self.config.use_tls,
            keepalive=self.config.keepalive,
            connect_timeout=self.config.connect_timeout,
            connect_metadata={"id": client_id, "timezone": timezone},
            log=self.log,
        )

    # --- Puente entre el hilo de red y el bucle de asyncio ---
    def _dispatch(self, callback, *args):
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            # El bucle se cerró entre la comprobación y la llamada
            self.log.debug(f"Client {self.client_id}: evento descartado, bucle cerrado")

    def _setup_callbacks(self):
        self.communicator.set_connect_callback(lambda: self._dispatch(self._on_connected))
        self.communicator.set_connect_error_callback(
            lambda reason: self._dispatch(self._on_connect_error, reason))
        self.communicator.set_message_callback(
            lambda topic, payload: self._dispatch(self._on_message, topic, payload))
        self.communicator.set_disconnect_callback(
            lambda reason_code, unexpected: self._dispatch(self._on_disconnected, reason_code, unexpected))

    # --- Ciclo de vida ---
    async def connect(self):
        """
            Abre la conexión enviando id y timezone como metadatos y espera la confirmación del broker.
            Lanza ConnectionFailure si la conexión es rechazada, falla o supera CONNECT_TIMEOUT.
        """
        self._loop = asyncio.get_running_loop()
        self._connect_future = self._loop.create_future()
        self.state = ConnectionState.CONNECTING

        try:
            self.communicator = self.communicator_factory(self.client_id, self.timezone)
            self._setup_callbacks()
            self.communicator.start()
            await asyncio.wait_for(self._connect_future, timeout=self.config.connect_timeout)
            self.communicator.subscribe(self.response_topic, qos=self.config.qos)
            self.communicator.subscribe(self.error_topic, qos=self.config.qos)
        except asyncio.TimeoutError:
            self._abort_connection()
            self.log.error(f"Client {self.client_id} connection error: timeout tras {self.config.connect_timeout}s")
            raise ConnectionFailure(self.client_id, f"timeout tras {self.config.connect_timeout}s") from None
        except ConnectionFailure as e:
            self._abort_connection()
            self.log.error(f"Client {self.client_id} connection error: {e.reason}")
            raise
        except Exception as e:
            self._abort_connection()
            self.log.error(f"Client {self.client_id} connection error: {type(e).__name__} - {e}")
            raise ConnectionFailure(self.client_id, f"{type(e).__name__} - {e}") from e

        self.log.info(f"Client {self.client_id} connected")

    def _abort_connection(self):
        communicator, self.communicator = self.communicator, None
        self.state = ConnectionState.DISCONNECTED
        if communicator is not None:
            try:
                communicator.disconnect()
            except Exception as e:
                self.log.debug(f"Client {self.client_id}: error cerrando conexión fallida: {e}")

    async def disconnect(self):
        """Cierra la conexión sin esperar confirmación del broker. Sin conexión no hace nada."""
        if self.communicator is None:
            return
        self.state = ConnectionState.DISCONNECTING
        try:
            self.communicator.disconnect()
        finally:
            self.communicator = None
            self.state = ConnectionState.DISCONNECTED
        self.log.info(f"Client {self.client_id} disconnected")

    # --- Envío ---
    async def send_message(self):
        """
            Publica un mensaje de tipo aleatorio. Devuelve False sin enviar nada si el cliente no está
            conectado. El request_id se registra y el contador se incrementa antes de publicar, de modo que
            una respuesta inmediata nunca se pierde y un fallo al publicar sigue contando como intento.
        """
        if self.state is not ConnectionState.CONNECTED:
            return False

        message_type = random_choice(self.rng, self.config.message_types)
        request_id = str(random_uuid(self.rng))
        payload = build_message_payload(self.client_id, self.timezone, message_type,
                                        self.message_count + 1, request_id, self.rng)

        self.pending_replies.add(request_id)
        self.message_count += 1

        try:
            msg_info = self.communicator.publish(self.message_topic, payload, qos=self.config.qos)
        except Exception as e:
            raise MessageSendError(self.client_id, request_id, f"{type(e).__name__} - {e}") from e
        if msg_info is not None and msg_info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise MessageSendError(self.client_id, request_id, mqtt.error_string(msg_info.rc))

        self.log.info(f"Client {self.client_id} sent message {request_id} of type {message_type}")
        return True

    # --- Eventos (ya en el bucle de asyncio) ---
    def _on_connected(self):
        if self.state is not ConnectionState.CONNECTING:
            return
        self.state = ConnectionState.CONNECTED
        if self._connect_future is not None and not self._connect_future.done():
            self._connect_future.set_result(None)

    def _on_connect_error(self, reason):
        if self._connect_future is not None and not self._connect_future.done():
            self._connect_future.set_exception(ConnectionFailure(self.client_id, reason))
        else:
            self.log.error(f"Client {self.client_id} error: {reason}")

    def _on_disconnected(self, reason_code, unexpected):
        if not unexpected:
            return
        if self._connect_future is not None and not self._connect_future.done():
            self._connect_future.set_exception(ConnectionFailure(self.client_id, f"desconectado: {reason_code}"))
            return
        if self.state in (ConnectionState.CONNECTED, ConnectionState.CONNECTING):
            self.log.error(f"Client {self.client_id} error: conexión perdida ({reason_code})")
            self.state = ConnectionState.DISCONNECTED

    def _on_message(self, topic, payload_bytes):
        if topic == self.error_topic:
            self.log.error(f"Client {self.client_id} error: {payload_bytes[:200]!r}")
            return
        if topic != self.response_topic:
            return
        try:
            response = json.loads(payload_bytes.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            self.log.error(f"Client {self.client_id} error: respuesta ilegible ({type(e).__name__} - {e})")
            return
        request_id = response.get("request_id") if isinstance(response, dict) else None
        self.handle_response(request_id, response)

    def handle_response(self, request_id, response=None):
        """Elimina request_id de las pendientes (único cambio de estado); los ids desconocidos solo se registran."""
        if isinstance(request_id, str) and request_id in self.pending_replies:
            self.pending_replies.discard(request_id)
            self.log.info(f"Client {self.client_id} received response: {json.dumps(response)}")
        else:
            self.log.debug(f"Client {self.client_id}: respuesta sin petición pendiente ({request_id})")
