import argparse
import asyncio
import logging
import signal
import sys

from load_manager.client_manager import ClientPopulationController
from load_manager.load_emissions_manager import LoadEmissionsManager
from sim_config import load_simulation_config
from sim_errors import ConfigError

LOGGER_NAME = "client_manager"
LOG_FORMAT = "%(asctime)s | %(levelname)8s | %(message)s"


def setup_logging(log_file=None, level="INFO"):
    """
        Configura el logger del simulador con salida a consola y, si se indica, a un fichero en modo append.
        Se puede llamar de nuevo para cambiar fichero o nivel; los handlers anteriores se sustituyen.
    """
    log = logging.getLogger(LOGGER_NAME)
    log.setLevel(level)
    log.propagate = False
    for handler in list(log.handlers):
        log.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)
    console = logging.StreamHandler()
    console.setFormatter(formatter)
    log.addHandler(console)
    if log_file:
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setFormatter(formatter)
        log.addHandler(file_handler)
    return log


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Simulador de carga: población de clientes MQTT concurrentes.")
    parser.add_argument("--config", type=str, default=None, help="Ruta a config.json (por defecto el de la raíz del proyecto).")
    parser.add_argument("--seed", type=int, default=None, help="Semilla para reproducir selección, retardos e identidades.")
    parser.add_argument("--log-file", type=str, default=None, help="Fichero de log (append).")
    parser.add_argument("--max-clients", type=int, default=None, help="Sobrescribe MAX_CLIENTS.")
    return parser.parse_args(argv)


def build_config(args, log):
    config = load_simulation_config(args.config, log=log.getChild("config"))
    overrides = {}
    if args.seed is not None:
        overrides["random_seed"] = args.seed
    if args.log_file is not None:
        overrides["log_file"] = args.log_file
    if args.max_clients is not None:
        overrides["max_clients"] = args.max_clients
    return config.replace(**overrides) if overrides else config


def _install_signal_handlers(controller, log):
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, controller.request_stop)
        except (NotImplementedError, RuntimeError):
            log.debug(f"No se puede instalar el manejador de {sig.name} en esta plataforma")


async def run_simulation(config, log, controller_factory=ClientPopulationController):
    """Ejecuta un controlador completo y devuelve el total de mensajes enviados."""
    controller = controller_factory(config, log)
    _install_signal_handlers(controller, log)

    tracker = None
    if config.track_emissions:
        tracker = LoadEmissionsManager("load_simulator", log.getChild("emissions"))
        tracker.start_tracking()
    try:
        return await controller.start()
    finally:
        if tracker is not None:
            tracker.stop_tracking_and_get_data()


def main(argv=None):
    """Punto de entrada. Devuelve 0 al terminar la simulación y 1 ante errores de configuración o fallos no capturados."""
    args = parse_args(argv)
    log = setup_logging()

    try:
        config = build_config(args, log)
    except ConfigError as e:
        log.error(f"Configuración inválida: {e}")
        return 1

    log = setup_logging(config.log_file, config.log_level)
    log.info(f"Iniciando simulador: {config!r}")
    try:
        total = asyncio.run(run_simulation(config, log))
    except Exception as e:
        log.exception(f"Error running client manager: {type(e).__name__} - {e}")
        return 1
    log.info(f"Simulación finalizada. Mensajes enviados: {total}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
