import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import BinaryIO, Callable, Optional

from ftpcore.net.transport import Connection
from ftpcore.protocol.data_channel import DataChannel

CHUNK_SIZE = 2 * 1460


class TransferDirection(Enum):
    DOWNLOAD = "download"
    UPLOAD = "upload"


@dataclass
class TransferJob:
    direction: TransferDirection
    path: str
    file: BinaryIO
    connection: Connection
    started: float
    last_progress: float
    bytes_transferred: int = 0
    outcome: Optional[str] = field(default=None)

    def elapsed_ms(self, now: float) -> int:
        return int((now - self.started) * 1000)


class TransferEngine:
    """Moves one RETR/STOR payload between the file store and the data channel.

    ``step`` is called once per scheduler tick and moves at most one chunk.
    It returns True while the job continues and False once it is finished.
    Completion and abort replies go out through ``reply``.
    """

    def __init__(self, data_channel: DataChannel, reply: Callable[..., None],
                 chunk_size: int = CHUNK_SIZE, stall_timeout: float = 30.0,
                 clock: Callable[[], float] = time.monotonic,
                 on_finished: Optional[Callable[[TransferJob], None]] = None):
        self.data_channel = data_channel
        self.reply = reply
        self.chunk_size = chunk_size
        self.stall_timeout = stall_timeout
        self.clock = clock
        self.on_finished = on_finished
        self.logger = logging.getLogger('ftpd.transfer')
        self.job: Optional[TransferJob] = None

    @property
    def active(self) -> bool:
        return self.job is not None

    def _begin(self, direction: TransferDirection, path: str, file: BinaryIO, connection: Connection):
        if self.job is not None:
            self.abort()
        now = self.clock()
        self.job = TransferJob(direction, path, file, connection, started=now, last_progress=now)
        self.logger.info(f"Starting {direction.value} of {path}")

    def begin_retrieve(self, path: str, file: BinaryIO, connection: Connection):
        self._begin(TransferDirection.DOWNLOAD, path, file, connection)

    def begin_store(self, path: str, file: BinaryIO, connection: Connection):
        self._begin(TransferDirection.UPLOAD, path, file, connection)

    def step(self) -> bool:
        if self.job is None:
            return False
        if self.job.direction is TransferDirection.DOWNLOAD:
            return self.step_retrieve()
        return self.step_store()

    def step_retrieve(self) -> bool:
        job = self.job
        if not job.connection.connected:
            self.logger.warning(f"Data connection lost while sending {job.path}")
            self.abort()
            return False

        try:
            chunk = job.file.read(self.chunk_size)
        except OSError as e:
            self.logger.error(f"Error reading {job.path}: {e}")
            self.abort()
            return False

        if not chunk:
            self._complete()
            return False

        try:
            job.connection.write(chunk)
        except OSError as e:
            self.logger.error(f"Error sending {job.path}: {e}")
            self.abort()
            return False

        job.bytes_transferred += len(chunk)
        job.last_progress = self.clock()
        return True

    def step_store(self) -> bool:
        job = self.job
        navail = job.connection.available()

        if navail <= 0:
            if not job.connection.connected:
                self._complete()
                return False
            if self.clock() - job.last_progress > self.stall_timeout:
                self.logger.warning(f"Upload of {job.path} stalled for {self.stall_timeout}s")
                self.abort()
                return False
            return True

        data = job.connection.read(min(navail, self.chunk_size))
        try:
            job.file.write(data)
        except OSError as e:
            self.logger.error(f"Error writing {job.path}: {e}")
            self.abort()
            return False

        job.bytes_transferred += len(data)
        job.last_progress = self.clock()
        return True

    def _finish(self, outcome: str) -> TransferJob:
        job = self.job
        self.job = None
        job.outcome = outcome
        try:
            job.file.close()
        except OSError as e:
            self.logger.error(f"Error closing {job.path}: {e}")
        self.data_channel.close()
        if self.on_finished is not None:
            self.on_finished(job)
        return job

    def _complete(self):
        job = self.job
        delta_ms = job.elapsed_ms(self.clock())
        self._finish("completed")

        if delta_ms > 0 and job.bytes_transferred > 0:
            self.reply(226, "File successfully transferred",
                       f"{delta_ms} ms, {job.bytes_transferred // delta_ms} kbytes/s")
        else:
            self.reply(226, "File successfully transferred")
        self.logger.info(f"Transfer of {job.path} complete: {job.bytes_transferred} bytes in {delta_ms} ms")

    def abort(self) -> bool:
        """Stop the running job, if any, and answer 426. Returns whether a job was running."""
        if self.job is None:
            return False
        job = self._finish("aborted")
        self.reply(426, "Transfer aborted")
        self.logger.warning(f"Transfer of {job.path} aborted after {job.bytes_transferred} bytes")
        return True
