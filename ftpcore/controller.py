import asyncio
import logging
from typing import Any, Dict, Optional

from ftpcore.config_manager import ConfigManager
from ftpcore.port_manager import PortManager
from ftpcore.service.ftp_service import FTPService
from ftplog.session_logger import SessionLogger, setup_logging


class FTPController:

    def __init__(self, config_path: str = "config/ftpd.yaml"):
        self.config_manager = ConfigManager(config_path)
        self.config = self.load_config()

        log_config = self.config_manager.get_section('logging')
        setup_logging(log_config.get('log_dir', 'logs'), log_config.get('level', 'INFO'))
        self.logger = logging.getLogger('ftpd.controller')

        self.session_logger = SessionLogger(
            log_config.get('log_dir', 'logs'),
            enabled=bool(log_config.get('json_events', True))
        )
        self.port_manager = PortManager(
            io_timeout=float(self.config_manager.get_section('timeouts').get('connect_seconds', 10))
        )
        self.service: Optional[FTPService] = None
        self.running = False

    def load_config(self) -> Dict[str, Any]:
        return self.config_manager.load_config()

    async def start(self):
        server = self.config_manager.get_section('server')
        port = int(server.get('control_port', 21))
        if not self.port_manager.validate_port(port):
            raise ValueError(f"Invalid control port: {port}")

        self.service = FTPService(self.config, session_logger=self.session_logger,
                                  port_manager=self.port_manager)
        self.service.server_task = asyncio.create_task(self.service.start())
        self.running = True
        self.logger.info(f"FTP server started on port {port}")

    async def wait(self):
        if self.service is not None and self.service.server_task is not None:
            await self.service.server_task

    async def stop(self):
        self.logger.info("Stopping FTP server...")
        service = self.service
        if service is not None:
            await service.stop()
            if service.server_task and not service.server_task.done():
                service.server_task.cancel()
            await asyncio.gather(service.server_task, return_exceptions=True)

        self.service = None
        self.running = False
        self.logger.info("FTP server stopped")
