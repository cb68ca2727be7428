# Nombre de archivo: load_emissions_manager.py
from codecarbon import EmissionsTracker


class LoadEmissionsManager:
    def __init__(self, project_name, log):
        """
        Inicializa el seguimiento de consumo/emisiones de una ejecución del simulador. Los datos solo se
        registran en el log; no se escribe el CSV de codecarbon.
        """
        self.project_name = project_name
        self.log = log
        self.tracker: EmissionsTracker = EmissionsTracker(
            project_name=self.project_name,
            save_to_file=False,
        )
        self._is_tracking = False

    def start_tracking(self):
        """Inicia el seguimiento. Un fallo del tracker no detiene la simulación."""
        if self._is_tracking:
            self.log.warning(f"[{self.project_name}]: Tracker ya estaba iniciado.")
            return
        try:
            self.tracker.start()
            self._is_tracking = True
            self.log.info(f"[{self.project_name}]: Tracker de emisiones iniciado.")
        except Exception as e:
            self.log.error(f"[{self.project_name}]: Error al iniciar tracker: {e}")

    def stop_tracking_and_get_data(self):
        """
        Detiene el seguimiento y devuelve un diccionario con CO2, energía y duración (None si falla o no
        estaba iniciado).
        """
        if not self._is_tracking:
            return None
        emissions_data_dict = None
        try:
            self.tracker.stop()
            details = self.tracker.final_emissions_data
            emissions_data_dict = {
                "co2_emissions_kg": details.emissions,
                "energy_consumed_kwh": details.energy_consumed,
                "duration_seconds": details.duration
            }
            self.log.info(f"[{self.project_name}]: Datos finales -> "
                          f"CO2: {emissions_data_dict['co2_emissions_kg']:.6f} kg, "
                          f"Energía: {emissions_data_dict['energy_consumed_kwh']:.6f} kWh, "
                          f"Duración: {emissions_data_dict['duration_seconds']:.2f} s")
        except Exception as e:
            self.log.error(f"[{self.project_name}]: Error al detener tracker o acceder a datos: {e}")
        finally:
            self._is_tracking = False
        return emissions_data_dict
