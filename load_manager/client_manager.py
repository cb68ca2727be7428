import asyncio
import logging

import numpy as np

from load_manager.client_sim_state import ControllerState
from sim_client.client_utils import TIMEZONES, new_client_id, random_choice
from sim_client.simulated_client import SimulatedClient
from sim_errors import ControllerStateError, LoadSimulatorError, PopulationFull
from timer import Timer


class ClientPopulationController:
    """
        Crea una población acotada de clientes simulados, los hace enviar mensajes por rondas y los
        desconecta al terminar.

        Estados: IDLE -> FILLING -> DRIVING -> STOPPING -> STOPPED. No hay reinicio; para otra ejecución
        se construye un controlador nuevo.
    """
    def __init__(self, config, log, rng=None, communicator_factory=None, sleep=asyncio.sleep):
        self.config = config
        self.log = log
        self.rng = rng if rng is not None else np.random.default_rng(config.random_seed)
        self.communicator_factory = communicator_factory
        self.sleep = sleep

        self.clients = {}
        self.total_messages_sent = 0
        self.is_running = False
        self.state = ControllerState.IDLE

        # Estadísticas para el resumen final
        self.clients_created = 0
        self.failed_connections = 0
        self.failed_sends = 0
        self.rounds_completed = 0
        self.abandoned_replies = 0

        self.log.debug(f"ClientPopulationController instanciado: {config!r}")

    @property
    def max_clients(self):
        return self.config.max_clients

    def _random_timezone(self):
        return random_choice(self.rng, TIMEZONES)

    async def create_client(self):
        """
            Crea y conecta un cliente nuevo. Solo se añade a la población si la conexión se confirma;
            ConnectionFailure se propaga al llamante.
        """
        if len(self.clients) >= self.max_clients:
            raise PopulationFull(self.max_clients)

        client_id = new_client_id(self.rng)
        timezone = self._random_timezone()
        client = SimulatedClient(client_id, timezone, self.config, self.log.getChild("client"), self.rng,
                                 communicator_factory=self.communicator_factory)
        await client.connect()
        self.clients[client_id] = client
        self.clients_created += 1
        self.log.info(f"Created new client {client_id} with timezone {timezone}")
        return client

    async def remove_client(self, client_id):
        client = self.clients.get(client_id)
        if client is None:
            return
        self.abandoned_replies += len(client.pending_replies)
        try:
            await client.disconnect()
        finally:
            del self.clients[client_id]
        self.log.info(f"Removed client {client_id}")

    def eligible_clients(self):
        """Clientes conectados que aún no han llegado a MAX_MESSAGES_PER_CLIENT."""
        return [client for client in self.clients.values()
                if client.is_connected and client.message_count < self.config.max_messages_per_client]

    def select_clients(self, eligible):
        order = self.rng.permutation(len(eligible))
        return [eligible[i] for i in order[:self.config.max_concurrent_messages]]

    def next_delay_ms(self):
        return int(self.rng.integers(self.config.min_delay_ms, self.config.max_delay_ms, endpoint=True))

    async def _send_from(self, client):
        try:
            return await client.send_message()
        except Exception as e:
            self.failed_sends += 1
            self.log.error(f"Error sending message from client {client.client_id}: {type(e).__name__} - {e}")
            return False

    async def _fill_population(self):
        self.state = ControllerState.FILLING
        with Timer("fill", self.log, logging.INFO):
            for _ in range(self.max_clients):
                if not self.is_running:
                    self.log.info("Parada solicitada durante la creación de clientes")
                    break
                try:
                    client = await self.create_client()
                except LoadSimulatorError as e:
                    self.failed_connections += 1
                    self.log.error(f"Error creating initial client: {e}")
                    continue
                if self.state is not ControllerState.FILLING:
                    # stop() ya vació la población mientras este cliente conectaba
                    await self.remove_client(client.client_id)
        self.log.info(f"Población creada: {len(self.clients)}/{self.max_clients} clientes conectados")

    async def _drive(self):
        if self.state is not ControllerState.FILLING:
            return
        self.state = ControllerState.DRIVING
        while self.is_running:
            eligible = self.eligible_clients()
            if not eligible:
                self.log.info("All clients have reached their message limit")
                break

            selected = self.select_clients(eligible)
            with Timer(f"round {self.rounds_completed + 1} ({len(selected)} clients)", self.log):
                results = await asyncio.gather(*(self._send_from(client) for client in selected))
            self.total_messages_sent += sum(1 for sent in results if sent)
            self.rounds_completed += 1

            await self.sleep(self.next_delay_ms() / 1000)
        else:
            self.log.info("Parada solicitada, terminando bucle de envío")

    async def start(self):
        """
            Ejecuta la simulación completa: crea la población, envía por rondas hasta que ningún cliente sea
            elegible (o se pida parar) y siempre termina llamando a stop(). Devuelve el total enviado.
        """
        if self.state is not ControllerState.IDLE:
            raise ControllerStateError(f"start() no válido en estado {self.state.name}")
        self.is_running = True
        self.log.info("Starting client manager")
        try:
            await self._fill_population()
            with Timer("drive", self.log, logging.INFO):
                await self._drive()
        finally:
            await self.stop()
        return self.total_messages_sent

    def request_stop(self):
        """Pide la parada; el bucle lo comprueba al comienzo de la siguiente ronda."""
        if self.is_running:
            self.log.info("Parada solicitada")
        self.is_running = False

    async def stop(self):
        """Desconecta y elimina a todos los clientes. Idempotente; devuelve total_messages_sent."""
        if self.state in (ControllerState.STOPPING, ControllerState.STOPPED):
            return self.total_messages_sent
        self.is_running = False
        self.state = ControllerState.STOPPING
        self.log.info("Stopping client manager")

        client_ids = list(self.clients)
        results = await asyncio.gather(*(self.remove_client(cid) for cid in client_ids), return_exceptions=True)
        for client_id, result in zip(client_ids, results):
            if isinstance(result, BaseException):
                self.log.error(f"Error removing client {client_id}: {type(result).__name__} - {result}")

        self.state = ControllerState.STOPPED
        self.log.info(f"Client manager stopped. Total messages sent: {self.total_messages_sent}")
        self.log.info(f"Resumen: clientes={self.clients_created}/{self.max_clients}, "
                      f"conexiones fallidas={self.failed_connections}, rondas={self.rounds_completed}, "
                      f"envíos fallidos={self.failed_sends}, respuestas abandonadas={self.abandoned_replies}")
        return self.total_messages_sent
