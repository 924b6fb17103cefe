import json
import logging
import sys
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
KEEP_BACKUPS = 10
SUMMARY_COMMANDS = 100


def setup_logging(log_dir: str = "logs", level: str = "INFO") -> logging.Logger:
    """Attach the file and console handlers to the ``ftpd`` logger (once)."""
    logger = logging.getLogger('ftpd')
    logger.setLevel(logging.DEBUG)

    if logger.handlers:
        return logger

    path = Path(log_dir)
    path.mkdir(exist_ok=True, parents=True)

    formatter = logging.Formatter(LOG_FORMAT)

    to_file = logging.FileHandler(path / 'ftpd.log')
    to_file.setLevel(logging.DEBUG)
    to_file.setFormatter(formatter)

    to_console = logging.StreamHandler(sys.stdout)
    to_console.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    to_console.setFormatter(formatter)

    logger.addHandler(to_file)
    logger.addHandler(to_console)
    return logger


class JsonlWriter:
    """Appends JSON documents to ``<name>.jsonl`` files, rotating them by size."""

    def __init__(self, directory: Path, max_bytes: int, keep: int = KEEP_BACKUPS):
        self.directory = directory
        self.max_bytes = max_bytes
        self.keep = keep
        self.logger = logging.getLogger('ftpd.events')

    def append(self, name: str, document: Dict[str, Any]):
        target = self.directory / f"{name}.jsonl"
        if target.exists() and target.stat().st_size > self.max_bytes:
            self.rotate(target)

        try:
            with open(target, 'a', encoding='utf-8') as f:
                f.write(json.dumps(document) + '\n')
        except OSError as e:
            self.logger.error(f"Could not append to {target}: {e}")

    def rotate(self, target: Path):
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        if target.exists():
            target.rename(target.with_name(f"{target.stem}_{stamp}.jsonl"))

        # backup names sort chronologically by their timestamp suffix
        backups = sorted(self.directory.glob(f"{target.stem}_*.jsonl"))
        for stale in backups[:max(0, len(backups) - self.keep)]:
            stale.unlink()


@dataclass
class SessionRecord:
    session_id: str
    ip: str
    port: int
    service: str
    started: datetime = field(default_factory=datetime.now)
    last_activity: datetime = field(default_factory=datetime.now)
    ended: Optional[datetime] = None
    end_reason: Optional[str] = None
    commands: List[str] = field(default_factory=list)
    transfers: int = 0

    @property
    def duration(self) -> float:
        return ((self.ended or datetime.now()) - self.started).total_seconds()

    def summary(self) -> Dict[str, Any]:
        return {
            'session_id': self.session_id,
            'ip': self.ip,
            'port': self.port,
            'service': self.service,
            'start_time': self.started.isoformat(),
            'end_time': self.ended.isoformat() if self.ended else None,
            'total_commands': len(self.commands),
            'commands': self.commands[-SUMMARY_COMMANDS:],
            'transfers': self.transfers,
            'end_reason': self.end_reason or 'unknown'
        }


class SessionLogger:
    """Structured per-client event log.

    Every event lands in ``session_events.jsonl``; when a session ends its
    summary is appended to ``session_summaries.jsonl`` and the record is
    dropped from memory.
    """

    def __init__(self, log_dir: str = "logs", max_file_size: int = 10485760, enabled: bool = True):
        self.log_dir = Path(log_dir)
        self.enabled = enabled
        self.logger = logging.getLogger('ftpd.session')
        self.writer = JsonlWriter(self.log_dir, max_file_size)

        if self.enabled:
            self.log_dir.mkdir(exist_ok=True, parents=True)

        self.sessions: Dict[str, SessionRecord] = {}
        self._next_id = 0

    def create_session(self, ip: str, port: int, service: str = "ftp") -> str:
        session_id = f"sess_{self._next_id:08d}"
        self._next_id += 1

        self.sessions[session_id] = SessionRecord(session_id, ip, port, service)
        self.log_session_event(session_id, 'SESSION_START', {'ip': ip, 'port': port, 'service': service})
        return session_id

    def log_session_event(self, session_id: str, event_type: str, data: Dict[str, Any]):
        record = self.sessions.get(session_id)
        if record is None:
            self.logger.warning(f"Event {event_type} for unknown session {session_id}")
            return

        now = datetime.now()
        record.last_activity = now
        self.write_json_log('session_events', {
            'timestamp': now.isoformat(),
            'session_id': session_id,
            'event_type': event_type,
            'data': data
        })

        if event_type in ('SESSION_START', 'SESSION_END'):
            self.logger.info(f"{session_id} {event_type.lower()}: {data}")

    def log_command(self, session_id: str, verb: str, params: str = ""):
        # credentials never reach the log files
        if verb == 'PASS' and params:
            params = '****'
        command = f"{verb} {params}".strip()

        record = self.sessions.get(session_id)
        if record is not None:
            record.commands.append(command)
        self.log_session_event(session_id, 'COMMAND', {'command': command})

    def log_transfer(self, session_id: str, direction: str, path: str,
                     size: int, elapsed_ms: int, outcome: str):
        record = self.sessions.get(session_id)
        if record is not None:
            record.transfers += 1
        self.log_session_event(session_id, 'TRANSFER', {
            'direction': direction,
            'path': path,
            'bytes': size,
            'elapsed_ms': elapsed_ms,
            'outcome': outcome
        })

    def end_session(self, session_id: str, reason: str = "normal"):
        record = self.sessions.get(session_id)
        if record is None:
            return

        record.ended = datetime.now()
        record.end_reason = reason
        self.log_session_event(session_id, 'SESSION_END', {
            'reason': reason,
            'duration': record.duration,
            'total_commands': len(record.commands)
        })

        del self.sessions[session_id]
        self.write_json_log('session_summaries', record.summary())

    def write_json_log(self, log_type: str, data: Dict[str, Any]):
        if self.enabled:
            self.writer.append(log_type, data)
