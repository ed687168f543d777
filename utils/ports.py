import threading

DEFAULT_BASE_PORT = 28789


def _smallest_free(base_port, used_ports):
    port = base_port
    while port in used_ports:
        port += 1
    return port


class PortAllocator:
    """
    Hands out gateway ports by scanning the ports configured by existing
    profiles.

    ``claim`` additionally holds the port inside this process until
    ``release`` is called once the port is written to a config, so two
    setups running at the same time cannot pick the same port. Other
    processes writing profile configs concurrently are not coordinated with.
    """

    def __init__(self, registry, base_port=DEFAULT_BASE_PORT, logger=None):
        self.registry = registry
        self.base_port = base_port
        self.logger = logger
        self._claimed = set()
        self._lock = threading.Lock()

    def next_available_port(self) -> int:
        used = self.registry.configured_ports()
        with self._lock:
            return _smallest_free(self.base_port, used | self._claimed)

    def claim(self) -> int:
        used = self.registry.configured_ports()
        with self._lock:
            port = _smallest_free(self.base_port, used | self._claimed)
            self._claimed.add(port)
        if self.logger:
            self.logger.debug(f"Claimed gateway port {port}")
        return port

    def release(self, port):
        with self._lock:
            self._claimed.discard(port)
