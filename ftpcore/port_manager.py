import logging
import socket
from typing import Dict

from ftpcore.net.transport import SocketListener


class PortManager:

    def __init__(self, io_timeout: float = 10.0):
        self.io_timeout = io_timeout
        self.active_ports: Dict[int, SocketListener] = {}
        self.logger = logging.getLogger('ftpd.ports')

    def check_port_availability(self, port: int) -> bool:
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            sock.settimeout(1)
            result = sock.connect_ex(('127.0.0.1', port))
            sock.close()
            return result != 0
        except OSError:
            return False

    def validate_port(self, port: int) -> bool:
        if port < 1024:
            self.logger.warning(f"Port {port} may require root privileges")
        return 1 <= port <= 65535

    def open_listener(self, host: str, port: int, check: bool = True) -> SocketListener:
        """Bind a listener; ``check`` refuses ports something else already answers on."""
        if check and port and not self.check_port_availability(port):
            raise ValueError(f"Port {port} is already in use")

        listener = SocketListener(host, port, io_timeout=self.io_timeout)
        bound_port = listener.local_address[1]
        self.active_ports[bound_port] = listener
        self.logger.debug(f"Listening on {host}:{bound_port}")
        return listener

    def release(self, listener: SocketListener):
        for port, active in list(self.active_ports.items()):
            if active is listener:
                del self.active_ports[port]
        listener.close()

    def close_all(self):
        for listener in self.active_ports.values():
            listener.close()
        self.active_ports.clear()
