import time, logging


class Timer:
    """Mide el tiempo de un bloque; si recibe un logger deja una línea [TIME] al salir."""
    def __init__(self, tag, log=None, level=logging.DEBUG):
        self.tag = tag
        self.log = log
        self.level = level
        self.elapsed = 0.0
    def __enter__(self):
        self.t0 = time.perf_counter()
        return self
    def __exit__(self, *exc):
        self.elapsed = time.perf_counter() - self.t0
        if self.log is not None:
            self.log.log(self.level, f'[TIME] {self.tag}: {self.elapsed:.3f}s')
