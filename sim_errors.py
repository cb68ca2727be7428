# Errores del simulador de carga


class LoadSimulatorError(Exception):
    """Clase base para todos los errores del simulador."""


class ConfigError(LoadSimulatorError, ValueError):
    """Configuración inválida, se detecta antes de crear ningún cliente."""


class ConnectionFailure(LoadSimulatorError):
    """El broker rechazó la conexión, falló o expiró el timeout."""

    def __init__(self, client_id, reason):
        super().__init__(f"Cliente {client_id}: fallo de conexión ({reason})")
        self.client_id = client_id
        self.reason = reason


class PopulationFull(LoadSimulatorError):
    """Se intentó crear un cliente por encima de MAX_CLIENTS."""

    def __init__(self, max_clients):
        super().__init__(f"Número máximo de clientes alcanzado ({max_clients})")
        self.max_clients = max_clients


class MessageSendError(LoadSimulatorError):
    """Fallo al publicar un mensaje de un cliente."""

    def __init__(self, client_id, request_id, reason):
        super().__init__(f"Cliente {client_id}: fallo enviando {request_id} ({reason})")
        self.client_id = client_id
        self.request_id = request_id
        self.reason = reason


class ControllerStateError(LoadSimulatorError, RuntimeError):
    pass
