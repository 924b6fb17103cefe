import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict


class BaseService(ABC):
    """Cooperative service: ``poll`` runs once per tick on the event loop."""

    def __init__(self, port: int, config: Dict[str, Any]):
        self.port = port
        self.config = config
        self.name = config.get('name', 'service')
        self.is_running = False
        self.server_task = None
        self.tick_interval = float(config.get('timeouts', {}).get('tick_interval', 0.01))
        self.logger = logging.getLogger(f'ftpd.service.{port}')

    async def start(self):
        self.is_running = True
        try:
            self.open()
            self.logger.info(f"{self.name} up on port {self.port}, ticking every {self.tick_interval}s")
            while self.is_running:
                self.poll()
                await asyncio.sleep(self.tick_interval)
        except asyncio.CancelledError:
            self.logger.info(f"{self.name} task cancelled")
        except Exception as e:
            self.logger.error(f"{self.name} stopped on error: {e}")
            raise
        finally:
            self.is_running = False
            self.close()

    async def stop(self):
        self.logger.info(f"Stopping {self.name} on port {self.port}")
        self.is_running = False

    @abstractmethod
    def open(self):
        """Acquire listeners and other resources before the first tick"""

    @abstractmethod
    def poll(self):
        """Perform one bounded unit of work"""

    @abstractmethod
    def close(self):
        """Release everything acquired by ``open``"""
