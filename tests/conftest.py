from typing import List, Optional

import pytest

from ftpcore.net.transport import Connection, Listener
from ftpcore.protocol.data_channel import DataChannel
from ftpcore.protocol.state_machine import SessionStateMachine
from ftpcore.storage.file_store import LocalFileStore
from ftplog.session_logger import SessionLogger


class FakeClock:

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeConnection(Connection):

    def __init__(self, inbound: bytes = b"", peer_closed: bool = False, events: Optional[list] = None,
                 name: str = "conn"):
        self.inbound = bytearray(inbound)
        self.outbound = bytearray()
        self.peer_closed = peer_closed
        self.closed = False
        self.close_calls = 0
        self.fail_writes = False
        self.events = events if events is not None else []
        self.name = name

    def feed(self, data: bytes):
        self.inbound += data

    def available(self) -> int:
        return 0 if self.closed else len(self.inbound)

    def read(self, size: int) -> bytes:
        data = bytes(self.inbound[:size])
        del self.inbound[:size]
        return data

    def write(self, data: bytes):
        if self.closed or self.fail_writes:
            raise ConnectionError("broken pipe")
        self.outbound += data
        self.events.append(('write', self.name, bytes(data)))

    def close(self):
        self.close_calls += 1
        if not self.closed:
            self.events.append(('close', self.name))
        self.closed = True

    @property
    def connected(self) -> bool:
        if self.closed:
            return False
        return bool(self.inbound) or not self.peer_closed

    @property
    def peer_address(self):
        return ('192.168.1.50', 40000)

    @property
    def local_address(self):
        return ('192.168.1.10', 21)

    def text(self) -> str:
        return self.outbound.decode('utf-8')

    def lines(self) -> List[str]:
        return [line for line in self.text().split('\r\n') if line]

    def clear(self):
        self.outbound.clear()


class FakeListener(Listener):

    def __init__(self, port: int = 21, events: Optional[list] = None):
        self.port = port
        self.pending: List[FakeConnection] = []
        self.closed = False
        self.close_calls = 0
        self.accept_timeouts: List[float] = []
        self.events = events if events is not None else []

    def poll(self):
        if self.closed or not self.pending:
            return None
        return self.pending.pop(0)

    def accept(self, timeout: float):
        self.accept_timeouts.append(timeout)
        return self.poll()

    def close(self):
        self.close_calls += 1
        self.closed = True
        self.events.append(('listener_close', self.port))

    @property
    def local_address(self):
        return ('0.0.0.0', self.port)


class FakePortManager:

    def __init__(self, events: Optional[list] = None):
        self.events = events if events is not None else []
        self.listeners: List[FakeListener] = []
        self.released: List[FakeListener] = []

    def open_listener(self, host: str, port: int, check: bool = True) -> FakeListener:
        listener = FakeListener(port, self.events)
        self.listeners.append(listener)
        self.events.append(('listen', port))
        return listener

    def release(self, listener: FakeListener):
        self.released.append(listener)
        listener.close()


class Harness:
    """Drives a SessionStateMachine against fake sockets and a temp file store."""

    def __init__(self, tmp_path, config=None):
        self.events = []
        self.clock = FakeClock()
        self.root = tmp_path / "root"
        self.store = LocalFileStore(str(self.root))
        self.control_listener = FakeListener(21, self.events)
        self.ports = FakePortManager(self.events)
        self.connect_calls = []
        self.active_peers: List[FakeConnection] = []
        self.data = DataChannel(self.ports, port=50009, connect_timeout=10.0, connect=self._connect)
        self.session_logger = SessionLogger(str(tmp_path / "logs"))
        self.config = config or {
            'system': {'username': 'craig', 'password': 'music', 'server_name': 'testftp'},
            'timeouts': {'identity_seconds': 10, 'inactivity_minutes': 15, 'transfer_stall_seconds': 30},
            'limits': {'chunk_size': 2920},
        }
        self.machine = SessionStateMachine(self.config, self.store, self.control_listener, self.data,
                                           session_logger=self.session_logger, clock=self.clock)

    def _connect(self, host, port, timeout):
        self.connect_calls.append((host, port, timeout))
        if not self.active_peers:
            raise ConnectionRefusedError("refused")
        return self.active_peers.pop(0)

    def tick(self, count: int = 1, step: float = 0.0):
        for _ in range(count):
            self.machine.tick()
            self.clock.advance(step)

    def connect(self) -> FakeConnection:
        conn = FakeConnection(events=self.events, name="control")
        self.control_listener.pending.append(conn)
        self.tick()
        return conn

    def send(self, conn: FakeConnection, line: str, ticks: int = 1) -> List[str]:
        conn.clear()
        conn.feed((line + "\r\n").encode('utf-8'))
        self.tick(ticks)
        return conn.lines()

    def login(self) -> FakeConnection:
        conn = self.connect()
        self.send(conn, "USER craig")
        self.send(conn, "PASS music")
        conn.clear()
        return conn

    def offer_data_connection(self, inbound: bytes = b"", peer_closed: bool = False) -> FakeConnection:
        data = FakeConnection(inbound, peer_closed=peer_closed, events=self.events, name="data")
        self.ports.listeners[-1].pending.append(data)
        return data

    def run_transfer(self, max_ticks: int = 200):
        for _ in range(max_ticks):
            if not self.machine.engine.active:
                return
            self.tick(step=0.001)
        raise AssertionError("transfer did not finish")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def harness(tmp_path):
    return Harness(tmp_path)
