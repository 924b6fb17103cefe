from typing import Any, Dict, Optional

from ftpcore.port_manager import PortManager
from ftpcore.protocol.data_channel import DataChannel
from ftpcore.protocol.state_machine import SessionStateMachine
from ftpcore.service.base_service import BaseService
from ftpcore.storage.file_store import FileStore, LocalFileStore
from ftplog.session_logger import SessionLogger


class FTPService(BaseService):

    def __init__(self, config: Dict[str, Any], session_logger: Optional[SessionLogger] = None,
                 file_store: Optional[FileStore] = None, port_manager: Optional[PortManager] = None):
        server = config.get('server', {})
        super().__init__(int(server.get('control_port', 21)), config)
        self.name = "FTP Server"
        self.host = server.get('host', '0.0.0.0')
        self.data_port = int(server.get('data_port', 50009))
        self.connect_timeout = float(config.get('timeouts', {}).get('connect_seconds', 10))

        self.session_logger = session_logger
        self.file_store = file_store or LocalFileStore(server.get('root_dir', 'ftp_storage'))
        self.port_manager = port_manager or PortManager(io_timeout=self.connect_timeout)

        self.control_listener = None
        self.machine: Optional[SessionStateMachine] = None

    def open(self):
        self.control_listener = self.port_manager.open_listener(self.host, self.port)
        self.port = self.control_listener.local_address[1]

        data_channel = DataChannel(
            self.port_manager,
            host=self.host,
            port=self.data_port,
            connect_timeout=self.connect_timeout
        )
        self.machine = SessionStateMachine(
            self.config,
            self.file_store,
            self.control_listener,
            data_channel,
            session_logger=self.session_logger
        )
        self.logger.info(f"Data port (passive): {self.data_port}")

    def poll(self):
        self.machine.tick()

    def close(self):
        if self.machine is not None:
            self.machine.shutdown()
        self.port_manager.close_all()
        self.control_listener = None
