import logging
import select
import socket
from abc import ABC, abstractmethod
from typing import Optional, Tuple

RECV_SIZE = 65536

Address = Tuple[str, int]


class Connection(ABC):
    """Byte stream whose reads never block; ``available`` reports buffered bytes."""

    @abstractmethod
    def available(self) -> int:
        pass

    @abstractmethod
    def read(self, size: int) -> bytes:
        pass

    @abstractmethod
    def write(self, data: bytes):
        pass

    @abstractmethod
    def close(self):
        pass

    @property
    @abstractmethod
    def connected(self) -> bool:
        pass

    @property
    @abstractmethod
    def peer_address(self) -> Address:
        pass

    @property
    @abstractmethod
    def local_address(self) -> Address:
        pass


class Listener(ABC):

    @abstractmethod
    def poll(self) -> Optional[Connection]:
        """Return a pending connection without waiting, or None."""

    @abstractmethod
    def accept(self, timeout: float) -> Optional[Connection]:
        """Wait up to ``timeout`` seconds for a connection."""

    @abstractmethod
    def close(self):
        pass

    @property
    @abstractmethod
    def local_address(self) -> Address:
        pass


class SocketConnection(Connection):
    """TCP connection; reads go through select so they return immediately.

    Writes block for at most ``timeout`` seconds. The connection stays
    ``connected`` after the peer closes until the buffered bytes are drained.
    """

    def __init__(self, sock: socket.socket, timeout: float = 10.0):
        self.sock = sock
        self.sock.settimeout(timeout)
        self.logger = logging.getLogger('ftpd.net')
        self._rx = bytearray()
        self._eof = False
        self._closed = False
        try:
            self._peer = sock.getpeername()[:2]
        except OSError:
            self._peer = ('0.0.0.0', 0)
        self._local = sock.getsockname()[:2]

    def _fill(self):
        if self._closed or self._eof:
            return
        while len(self._rx) < RECV_SIZE:
            readable, _, _ = select.select([self.sock], [], [], 0)
            if not readable:
                return
            try:
                chunk = self.sock.recv(RECV_SIZE)
            except OSError as e:
                self.logger.debug(f"Receive from {self._peer} failed: {e}")
                self._eof = True
                return
            if not chunk:
                self._eof = True
                return
            self._rx += chunk

    def available(self) -> int:
        self._fill()
        return len(self._rx)

    def read(self, size: int) -> bytes:
        self._fill()
        data = bytes(self._rx[:size])
        del self._rx[:size]
        return data

    def write(self, data: bytes):
        if self._closed:
            raise ConnectionError("Connection closed")
        self.sock.sendall(data)

    def close(self):
        if self._closed:
            return
        self._closed = True
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self.sock.close()

    @property
    def connected(self) -> bool:
        if self._closed:
            return False
        self._fill()
        return bool(self._rx) or not self._eof

    @property
    def peer_address(self) -> Address:
        return self._peer

    @property
    def local_address(self) -> Address:
        return self._local


class SocketListener(Listener):

    def __init__(self, host: str, port: int, backlog: int = 1, io_timeout: float = 10.0):
        self.io_timeout = io_timeout
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            self.sock.bind((host, port))
            self.sock.listen(backlog)
        except OSError:
            self.sock.close()
            raise
        self.sock.setblocking(False)
        self._closed = False

    def accept(self, timeout: float) -> Optional[Connection]:
        if self._closed:
            return None
        readable, _, _ = select.select([self.sock], [], [], timeout)
        if not readable:
            return None
        try:
            client, _ = self.sock.accept()
        except BlockingIOError:
            return None
        return SocketConnection(client, self.io_timeout)

    def poll(self) -> Optional[Connection]:
        return self.accept(0)

    def close(self):
        if not self._closed:
            self._closed = True
            self.sock.close()

    @property
    def local_address(self) -> Address:
        return self.sock.getsockname()[:2]


def connect_tcp(host: str, port: int, timeout: float = 10.0) -> Connection:
    sock = socket.create_connection((host, port), timeout=timeout)
    return SocketConnection(sock, timeout)
