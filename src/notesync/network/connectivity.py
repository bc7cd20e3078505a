import logging
import socket
from typing import Protocol

logger = logging.getLogger(__name__)


class Connectivity(Protocol):
    def is_connected(self) -> bool:
        ...


class ConnectivityMonitor:
    """Cheap reachability probe consulted before every remote attempt."""

    def __init__(self, host: str, port: int, timeout: float = 1.5) -> None:
        self.host = host
        self.port = port
        self.timeout = timeout
        self._last_state = None

    def is_connected(self) -> bool:
        try:
            with socket.create_connection((self.host, self.port), timeout=self.timeout):
                online = True
        except OSError:
            online = False

        if online != self._last_state:
            logger.info("Network status changed: %s", "online" if online else "offline")
            self._last_state = online
        return online
