import json
import logging
import os
from urllib.parse import urlparse

from sim_errors import ConfigError

PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
CONFIG_SECTION = "LOAD_SIMULATOR"

DEFAULT_CONFIG = {
    "SERVER_URL": "mqtt://localhost:1883",
    "SERVER_PATH": "/mqtt",
    "MAX_CLIENTS": 10,
    "MAX_MESSAGES_PER_CLIENT": 5,
    "MAX_CONCURRENT_MESSAGES": 5,
    "MESSAGE_TYPES": ["text", "voice", "video"],
    "MIN_MESSAGE_DELAY": 500,
    "MAX_MESSAGE_DELAY": 2000,
    "CONNECT_TIMEOUT": 10.0,
    "KEEPALIVE": 60,
    "QOS": 1,
    "TOPIC_PREFIX": "loadsim",
    "LOG_FILE": "client-manager.log",
    "LOG_LEVEL": "INFO",
    "RANDOM_SEED": None,
    "TRACK_EMISSIONS": False,
}

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# esquema -> (transporte paho, usa TLS, puerto por defecto)
URL_SCHEMES = {
    "mqtt": ("tcp", False, 1883),
    "tcp": ("tcp", False, 1883),
    "mqtts": ("tcp", True, 8883),
    "ws": ("websockets", False, 80),
    "wss": ("websockets", True, 443),
}


class SimulationConfig:
    """
        Configuración validada de una ejecución del simulador. Se construye una única vez al arrancar
        (ver load_simulation_config) y no se modifica después.
    """
    def __init__(self, server_url, server_path, max_clients, max_messages_per_client,
                 max_concurrent_messages, message_types, min_delay_ms, max_delay_ms,
                 connect_timeout=10.0, keepalive=60, qos=1, topic_prefix="loadsim",
                 log_file="client-manager.log", log_level="INFO", random_seed=None,
                 track_emissions=False):
        self.server_url = server_url
        self.server_path = server_path
        self.max_clients = max_clients
        self.max_messages_per_client = max_messages_per_client
        self.max_concurrent_messages = max_concurrent_messages
        self.message_types = tuple(message_types)
        self.min_delay_ms = min_delay_ms
        self.max_delay_ms = max_delay_ms
        self.connect_timeout = connect_timeout
        self.keepalive = keepalive
        self.qos = qos
        self.topic_prefix = topic_prefix
        self.log_file = log_file
        self.log_level = log_level
        self.random_seed = random_seed
        self.track_emissions = track_emissions

        parsed = urlparse(server_url)
        if parsed.scheme not in URL_SCHEMES or not parsed.hostname:
            raise ConfigError(f"SERVER_URL no válida: '{server_url}' (esquemas: {', '.join(URL_SCHEMES)})")
        self.transport, self.use_tls, default_port = URL_SCHEMES[parsed.scheme]
        self.host = parsed.hostname
        try:
            self.port = parsed.port or default_port
        except ValueError as e:
            raise ConfigError(f"SERVER_URL con puerto inválido: '{server_url}'") from e

        self._validate()

    def _validate(self):
        for name in ("max_clients", "max_messages_per_client", "max_concurrent_messages"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                raise ConfigError(f"{name} debe ser un entero >= 1, recibido: {value!r}")
        for name in ("min_delay_ms", "max_delay_ms"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise ConfigError(f"{name} debe ser un entero >= 0, recibido: {value!r}")
        if self.min_delay_ms > self.max_delay_ms:
            raise ConfigError(f"MIN_MESSAGE_DELAY ({self.min_delay_ms}) > MAX_MESSAGE_DELAY ({self.max_delay_ms})")
        if not self.message_types or not all(isinstance(t, str) and t for t in self.message_types):
            raise ConfigError(f"MESSAGE_TYPES debe ser una lista no vacía de cadenas: {list(self.message_types)!r}")
        if self.qos not in (0, 1, 2):
            raise ConfigError(f"QOS debe ser 0, 1 o 2, recibido: {self.qos!r}")
        if not isinstance(self.keepalive, int) or isinstance(self.keepalive, bool) or self.keepalive < 0:
            raise ConfigError(f"KEEPALIVE debe ser un entero >= 0, recibido: {self.keepalive!r}")
        if self.connect_timeout <= 0:
            raise ConfigError(f"CONNECT_TIMEOUT debe ser positivo, recibido: {self.connect_timeout!r}")
        if not self.server_path.startswith("/"):
            raise ConfigError(f"SERVER_PATH debe empezar por '/': {self.server_path!r}")
        if not self.topic_prefix or "#" in self.topic_prefix or "+" in self.topic_prefix:
            raise ConfigError(f"TOPIC_PREFIX inválido: {self.topic_prefix!r}")
        if self.log_level not in LOG_LEVELS:
            raise ConfigError(f"LOG_LEVEL debe ser uno de {', '.join(LOG_LEVELS)}, recibido: {self.log_level!r}")

    @classmethod
    def from_dict(cls, config):
        """Construye la configuración a partir de un diccionario con las claves de DEFAULT_CONFIG."""
        return cls(
            server_url=str(config["SERVER_URL"]),
            server_path=str(config["SERVER_PATH"]),
            max_clients=_as_int(config, "MAX_CLIENTS"),
            max_messages_per_client=_as_int(config, "MAX_MESSAGES_PER_CLIENT"),
            max_concurrent_messages=_as_int(config, "MAX_CONCURRENT_MESSAGES"),
            message_types=_as_list(config, "MESSAGE_TYPES"),
            min_delay_ms=_as_int(config, "MIN_MESSAGE_DELAY"),
            max_delay_ms=_as_int(config, "MAX_MESSAGE_DELAY"),
            connect_timeout=_as_float(config, "CONNECT_TIMEOUT"),
            keepalive=_as_int(config, "KEEPALIVE"),
            qos=_as_int(config, "QOS"),
            topic_prefix=str(config["TOPIC_PREFIX"]),
            log_file=config["LOG_FILE"],
            log_level=str(config["LOG_LEVEL"]).upper(),
            random_seed=None if config["RANDOM_SEED"] in (None, "") else _as_int(config, "RANDOM_SEED"),
            track_emissions=_as_bool(config, "TRACK_EMISSIONS"),
        )

    def replace(self, **changes):
        """Devuelve una copia con algunos valores sustituidos (p.ej. overrides de línea de comandos)."""
        values = {
            "server_url": self.server_url, "server_path": self.server_path,
            "max_clients": self.max_clients, "max_messages_per_client": self.max_messages_per_client,
            "max_concurrent_messages": self.max_concurrent_messages, "message_types": self.message_types,
            "min_delay_ms": self.min_delay_ms, "max_delay_ms": self.max_delay_ms,
            "connect_timeout": self.connect_timeout, "keepalive": self.keepalive, "qos": self.qos,
            "topic_prefix": self.topic_prefix, "log_file": self.log_file, "log_level": self.log_level,
            "random_seed": self.random_seed, "track_emissions": self.track_emissions,
        }
        values.update(changes)
        return SimulationConfig(**values)

    def __repr__(self):
        return (f"SimulationConfig(server={self.server_url}{self.server_path if self.transport == 'websockets' else ''}, "
                f"clients={self.max_clients}, msgs/client={self.max_messages_per_client}, "
                f"concurrent={self.max_concurrent_messages}, types={list(self.message_types)}, "
                f"delay=[{self.min_delay_ms}, {self.max_delay_ms}] ms)")


def _as_int(config, key):
    value = config[key]
    if isinstance(value, bool):
        raise ConfigError(f"{key} debe ser un entero, recibido: {value!r}")
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError as e:
        raise ConfigError(f"{key} debe ser un entero, recibido: {value!r}") from e


def _as_float(config, key):
    try:
        return float(config[key])
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{key} debe ser numérico, recibido: {config[key]!r}") from e


def _as_bool(config, key):
    value = config[key]
    if isinstance(value, bool):
        return value
    if str(value).strip().lower() in ("1", "true", "yes", "on"):
        return True
    if str(value).strip().lower() in ("0", "false", "no", "off", ""):
        return False
    raise ConfigError(f"{key} debe ser booleano, recibido: {value!r}")


def _as_list(config, key):
    """Las listas llegan como lista (config.json) o como JSON codificado en una cadena (entorno)."""
    value = config[key]
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as e:
            raise ConfigError(f"{key} no es JSON válido: {value!r}") from e
    if not isinstance(value, list):
        raise ConfigError(f"{key} debe ser una lista, recibido: {value!r}")
    return value


def load_simulation_config(config_path=None, environ=None, log=None):
    """
        Carga la configuración del simulador: valores por defecto, después la sección LOAD_SIMULATOR de
        config.json y por último las variables de entorno con el mismo nombre. Lanza ConfigError si el
        resultado no es válido.
    """
    log = log or logging.getLogger("client_manager.config")
    environ = os.environ if environ is None else environ
    config_path = config_path or os.path.join(PROJECT_ROOT, "config.json")

    config = dict(DEFAULT_CONFIG)
    try:
        with open(config_path, "r") as f:
            all_config = json.load(f)
        log.info(f"Configuración cargada desde '{config_path}'.")
        section = all_config.get(CONFIG_SECTION)
        if section is None:
            log.warning(f"La clave '{CONFIG_SECTION}' no se encontró en '{config_path}'. Usando la configuración por defecto.")
        else:
            for key in DEFAULT_CONFIG:
                if key in section:
                    config[key] = section[key]
                else:
                    log.warning(f"Usando valor por defecto para '{key}': {DEFAULT_CONFIG[key]}")
    except FileNotFoundError:
        log.warning(f"No existe '{config_path}'. Usando configuración por defecto.")
    except json.JSONDecodeError as e:
        raise ConfigError(f"Error leyendo '{config_path}': {e}") from e

    for key in DEFAULT_CONFIG:
        if key in environ:
            config[key] = environ[key]

    return SimulationConfig.from_dict(config)
