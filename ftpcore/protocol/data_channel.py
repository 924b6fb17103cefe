import logging
from enum import Enum
from typing import Callable, Optional

from ftpcore.net.transport import Address, Connection, Listener, connect_tcp
from ftpcore.protocol.errors import BadParameters, NoDataConnection

DEFAULT_DATA_PORT = 50009


class DataMode(Enum):
    PASSIVE = "passive"
    ACTIVE = "active"


def parse_port_parameter(parameter: str) -> Address:
    """Decode a PORT argument ``h1,h2,h3,h4,p1,p2`` into (host, port)."""
    parts = parameter.split(',')
    if len(parts) != 6:
        raise BadParameters("Can't interpret parameters")
    try:
        values = [int(part.strip()) for part in parts]
    except ValueError:
        raise BadParameters("Can't interpret parameters")
    if any(value < 0 or value > 255 for value in values):
        raise BadParameters("Can't interpret parameters")

    host = '.'.join(str(value) for value in values[:4])
    port = values[4] * 256 + values[5]
    if port == 0:
        raise BadParameters("Can't interpret parameters")
    return host, port


def format_pasv_address(host: str, port: int) -> str:
    octets = host.split('.')
    if len(octets) != 4:
        raise ValueError(f"Not an IPv4 address: {host}")
    return ','.join(octets + [str(port >> 8), str(port & 255)])


class DataChannel:
    """The single data connection of a session.

    In passive mode the server listens on a fixed port and ``establish``
    waits (bounded by ``connect_timeout``) for the client. In active mode
    ``establish`` connects out to the address given by PORT. Any previous
    connection is closed before a new one is installed.
    """

    def __init__(self, port_manager, host: str = '0.0.0.0', port: int = DEFAULT_DATA_PORT,
                 connect_timeout: float = 10.0,
                 connect: Callable[[str, int, float], Connection] = connect_tcp):
        self.port_manager = port_manager
        self.host = host
        self.port = port
        self.connect_timeout = connect_timeout
        self.connect = connect
        self.logger = logging.getLogger('ftpd.data')

        self.mode = DataMode.PASSIVE
        self.active_address: Optional[Address] = None
        self.listener: Optional[Listener] = None
        self.connection: Optional[Connection] = None

    @property
    def connected(self) -> bool:
        return self.connection is not None and self.connection.connected

    def reset(self):
        self.teardown()
        self.mode = DataMode.PASSIVE
        self.active_address = None

    def passive(self) -> int:
        """Switch to passive mode on a fresh listener and return the listening port."""
        self.teardown()
        try:
            self.listener = self.port_manager.open_listener(self.host, self.port, check=False)
        except OSError as e:
            self.logger.error(f"PASV: failed to listen on port {self.port}: {e}")
            raise NoDataConnection("Can't open data connection")

        self.mode = DataMode.PASSIVE
        self.active_address = None
        port = self.listener.local_address[1]
        self.logger.debug(f"Connection management set to passive, data port {port}")
        return port

    def set_active(self, parameter: str) -> Address:
        address = parse_port_parameter(parameter)
        self.teardown()
        self.mode = DataMode.ACTIVE
        self.active_address = address
        self.logger.debug(f"Connection management set to active, client {address[0]}:{address[1]}")
        return address

    def establish(self) -> Connection:
        self.close()

        if self.mode is DataMode.PASSIVE:
            if self.listener is None:
                self.passive()
            self.logger.debug(f"Waiting for passive connection on port {self.listener.local_address[1]}...")
            connection = self.listener.accept(self.connect_timeout)
            if connection is None:
                self.logger.warning("Passive connection timeout - client did not connect")
                raise NoDataConnection("No data connection")
        else:
            host, port = self.active_address
            try:
                connection = self.connect(host, port, self.connect_timeout)
            except OSError as e:
                self.logger.error(f"Active connection to {host}:{port} failed: {e}")
                raise NoDataConnection("No data connection")

        self.logger.info(f"Data connection established with {connection.peer_address}")
        self.connection = connection
        return connection

    @property
    def data_port(self) -> int:
        if self.mode is DataMode.ACTIVE and self.active_address:
            return self.active_address[1]
        if self.listener is not None:
            return self.listener.local_address[1]
        return self.port

    def close(self):
        if self.connection is not None:
            self.connection.close()
            self.connection = None

    def teardown(self):
        self.close()
        if self.listener is not None:
            self.port_manager.release(self.listener)
            self.listener = None
