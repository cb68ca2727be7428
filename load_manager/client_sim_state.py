from enum import Enum


class ConnectionState(Enum):
    """Estado de la conexión de un cliente simulado con el broker."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"


class ControllerState(Enum):
    """IDLE -> FILLING -> DRIVING -> STOPPING -> STOPPED. STOPPED es terminal."""
    IDLE = "idle"
    FILLING = "filling"
    DRIVING = "driving"
    STOPPING = "stopping"
    STOPPED = "stopped"
