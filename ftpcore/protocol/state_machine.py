import logging
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, Optional

from ftpcore.net.transport import Address, Connection, Listener
from ftpcore.protocol.command_parser import Command, CommandParser, MAX_COMMAND
from ftpcore.protocol.commands import CommandDispatcher
from ftpcore.protocol.data_channel import DataChannel
from ftpcore.protocol.errors import CommandSyntaxError
from ftpcore.protocol.path_resolver import MAX_PATH
from ftpcore.protocol.replies import format_reply
from ftpcore.protocol.transfer_engine import CHUNK_SIZE, TransferEngine, TransferJob
from ftpcore.storage.file_store import FileStore
from ftplog.session_logger import SessionLogger

SERVER_VERSION = "1.0.0"

AUTH_FAILURE_DELAY = 0.1
TIMEOUT_DELAY = 0.2

# control lines held back while a transfer runs
MAX_PENDING = 8


class SessionState(Enum):
    IDLE = "idle"
    AWAITING_CONNECTION = "awaiting_connection"
    AWAITING_IDENTITY = "awaiting_identity"
    AWAITING_PASSWORD = "awaiting_password"
    READY = "ready"


CONNECTED_STATES = (
    SessionState.AWAITING_IDENTITY,
    SessionState.AWAITING_PASSWORD,
    SessionState.READY,
)


@dataclass
class Session:
    control: Connection
    peer_address: Address
    session_id: Optional[str] = None
    cwd: str = '/'
    rename_from: Optional[str] = None
    transfer_type: str = 'A'
    deadline: float = 0.0
    pending: Deque[Command] = field(default_factory=deque)


class SessionStateMachine:
    """Single-client FTP protocol driven by ``tick``.

    Each tick does at most one step of each: tear down a stale client,
    accept a new control connection, handle one control line, move one
    transfer chunk and check the session deadline. Only the data
    connection wait inside ``DataChannel.establish`` may block, and it is
    bounded by the connect timeout.
    """

    def __init__(self, config: Dict[str, Any], file_store: FileStore, control_listener: Listener,
                 data_channel: DataChannel, session_logger: Optional[SessionLogger] = None,
                 clock: Callable[[], float] = time.monotonic):
        system = config.get('system', {})
        server = config.get('server', {})
        timeouts = config.get('timeouts', {})
        limits = config.get('limits', {})

        self.username = str(system.get('username', 'ftp'))
        self.password = str(system.get('password', 'ftp'))
        self.server_name = system.get('server_name', 'pocketftp')
        self.version = system.get('version', SERVER_VERSION)
        self.pasv_address = server.get('pasv_address')

        self.identity_timeout = float(timeouts.get('identity_seconds', 10))
        self.inactivity_timeout = float(timeouts.get('inactivity_minutes', 15)) * 60
        self.max_path = int(limits.get('max_path', MAX_PATH))

        self.file_store = file_store
        self.control_listener = control_listener
        self.data_channel = data_channel
        self.session_logger = session_logger
        self.clock = clock
        self.logger = logging.getLogger('ftpd.session')

        self.parser = CommandParser(int(limits.get('max_command', MAX_COMMAND)))
        self.engine = TransferEngine(
            data_channel,
            self.reply,
            chunk_size=int(limits.get('chunk_size', CHUNK_SIZE)),
            stall_timeout=float(timeouts.get('transfer_stall_seconds', 30)),
            clock=clock,
            on_finished=self._transfer_finished
        )
        self.dispatcher = CommandDispatcher(self)

        self.state = SessionState.IDLE
        self.session: Optional[Session] = None
        self._idle_reason = "normal"
        self._inbox = bytearray()
        self._resume_at = 0.0

    # -- replies -------------------------------------------------------

    def send(self, payload: bytes):
        session = self.session
        if session is None:
            return
        try:
            session.control.write(payload)
        except OSError as e:
            self.logger.warning(f"Control write to {session.peer_address[0]} failed: {e}")
            session.control.close()

    def reply(self, code: int, *lines: str):
        self.send(format_reply(code, *lines))

    def advertised_host(self) -> str:
        if self.pasv_address:
            return self.pasv_address
        return self.session.control.local_address[0]

    # -- scheduler -----------------------------------------------------

    def tick(self):
        now = self.clock()
        if now < self._resume_at:
            return

        if self.state is SessionState.IDLE:
            self._close_session(self._idle_reason, goodbye=True)
            self.state = SessionState.AWAITING_CONNECTION
            self.logger.debug("FTP server waiting for connection")

        self._poll_control_listener(now)

        if self.state in CONNECTED_STATES:
            self._service_control(now)

        if self.engine.active:
            self.engine.step()
        elif self.state in CONNECTED_STATES and now >= self.session.deadline:
            self.logger.info(f"Session from {self.session.peer_address[0]} timed out")
            self.reply(530, "Timeout")
            self._go_idle("timeout", TIMEOUT_DELAY)

    def shutdown(self):
        self._close_session("shutdown", goodbye=True)
        self.state = SessionState.IDLE

    def _go_idle(self, reason: str, delay: float = 0.0):
        self._idle_reason = reason
        self.state = SessionState.IDLE
        self._resume_at = self.clock() + delay

    # -- session lifecycle ---------------------------------------------

    def _poll_control_listener(self, now: float):
        connection = self.control_listener.poll()
        if connection is None:
            return

        if self.session is not None:
            self.logger.info(f"New client replaces session from {self.session.peer_address[0]}")
            self._close_session("replaced")

        self._open_session(connection, now)

    def _open_session(self, connection: Connection, now: float):
        peer = connection.peer_address
        session = Session(control=connection, peer_address=peer)
        if self.session_logger is not None:
            session.session_id = self.session_logger.create_session(peer[0], peer[1], "ftp")

        self.session = session
        self.parser.reset()
        self._inbox.clear()
        self.data_channel.reset()
        self.logger.info(f"Client connected from {peer[0]}:{peer[1]}")

        self.reply(220, f"--- Welcome to {self.server_name} ---",
                   f"--   Version {self.version}   --")
        session.deadline = now + self.identity_timeout
        self.state = SessionState.AWAITING_IDENTITY

    def end_session(self, reason: str):
        self._close_session(reason)
        self._go_idle(reason)

    def _close_session(self, reason: str, goodbye: bool = False):
        session = self.session
        if session is None:
            return

        self.engine.abort()
        self.data_channel.reset()

        if goodbye and session.control.connected:
            self.reply(221, "Goodbye")
        session.control.close()

        if self.session_logger is not None and session.session_id:
            self.session_logger.end_session(session.session_id, reason)

        self.logger.info(f"FTP connection closed from {session.peer_address[0]} ({reason})")
        self.session = None
        self.parser.reset()
        self._inbox.clear()

    # -- control channel -----------------------------------------------

    def _read_command(self) -> Optional[Command]:
        control = self.session.control
        if not self._inbox:
            navail = control.available()
            if navail > 0:
                self._inbox += control.read(navail)

        while self._inbox:
            byte = self._inbox.pop(0)
            command = self.parser.feed(byte)
            if command is not None:
                return command
        return None

    def _service_control(self, now: float):
        session = self.session

        if session.pending and not self.engine.active:
            self._handle_command(session.pending.popleft(), now)
            return

        try:
            command = self._read_command()
        except CommandSyntaxError as e:
            session.rename_from = None
            self.reply(e.code, e.message)
            return

        if command is None:
            if not session.control.connected:
                self.logger.info(f"Client {session.peer_address[0]} disconnected")
                self._close_session("disconnected")
                self._go_idle("disconnected")
            return

        if command.is_empty:
            return

        if self.engine.active and command.verb != 'ABOR':
            if len(session.pending) >= MAX_PENDING:
                self.logger.warning(f"Dropping {command.verb} from {session.peer_address[0]}: queue full")
                self.reply(500, "Too many pending commands")
                return
            session.pending.append(command)
            return

        self._handle_command(command, now)

    def _handle_command(self, command: Command, now: float):
        session = self.session
        if self.session_logger is not None and session.session_id:
            self.session_logger.log_command(session.session_id, command.verb, command.params)

        if self.state is SessionState.AWAITING_IDENTITY:
            self._user_identity(command)
        elif self.state is SessionState.AWAITING_PASSWORD:
            if self._user_password(command):
                session.deadline = now + self.inactivity_timeout
        elif self.dispatcher.dispatch(command) and self.session is session:
            session.deadline = now + self.inactivity_timeout

    def _user_identity(self, command: Command):
        if command.verb != 'USER':
            self.reply(500, "Syntax error")
        elif command.params != self.username:
            self.reply(530, "User not found")
        else:
            self.reply(331, "OK. Password required")
            self.session.cwd = '/'
            self.state = SessionState.AWAITING_PASSWORD
            return
        self.logger.warning(f"Login rejected for {self.session.peer_address[0]}: {command.verb} {command.params}")
        self._go_idle("auth_failed", AUTH_FAILURE_DELAY)

    def _user_password(self, command: Command) -> bool:
        if command.verb != 'PASS':
            self.reply(500, "Syntax error")
        elif command.params != self.password:
            self.reply(530, "Login incorrect")
        else:
            self.reply(230, "OK.")
            self.state = SessionState.READY
            self.logger.info(f"User {self.username} logged in from {self.session.peer_address[0]}")
            return True
        self.logger.warning(f"Bad password from {self.session.peer_address[0]}")
        self._go_idle("auth_failed", AUTH_FAILURE_DELAY)
        return False

    def _transfer_finished(self, job: TransferJob):
        session = self.session
        if session is None:
            return
        elapsed = job.elapsed_ms(self.clock())
        session.deadline = self.clock() + self.inactivity_timeout
        if self.session_logger is not None and session.session_id:
            self.session_logger.log_transfer(session.session_id, job.direction.value, job.path,
                                             job.bytes_transferred, elapsed, job.outcome)
