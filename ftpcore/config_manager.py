import copy
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

REQUIRED_SECTIONS = ('system', 'server', 'timeouts', 'limits', 'logging')

DEFAULT_CONFIG: Dict[str, Any] = {
    'version': '1.0',
    'name': 'pocketftp',
    'system': {
        'username': 'ftp',
        'password': 'ftp',
        'server_name': 'pocketftp',
        'version': '1.0.0'
    },
    'server': {
        'host': '0.0.0.0',
        'control_port': 21,
        'data_port': 50009,
        'pasv_address': None,
        'root_dir': 'ftp_storage'
    },
    'timeouts': {
        'identity_seconds': 10,
        'inactivity_minutes': 15,
        'connect_seconds': 10,
        'transfer_stall_seconds': 30,
        'tick_interval': 0.01
    },
    'limits': {
        'max_path': 255,
        'max_command': 263,
        'chunk_size': 2920
    },
    'logging': {
        'log_dir': 'logs',
        'level': 'INFO',
        'json_events': True
    }
}

POSITIVE_TIMEOUTS = ('identity_seconds', 'inactivity_minutes', 'connect_seconds', 'tick_interval')


class ConfigManager:
    """YAML configuration for the server, written out with defaults on first use."""

    def __init__(self, config_path: str = "config/ftpd.yaml"):
        self.path = Path(config_path)
        self.logger = logging.getLogger('ftpd.config')
        self._cache: Optional[Dict[str, Any]] = None

        if not self.path.exists():
            self.path.parent.mkdir(exist_ok=True, parents=True)
            self.save_config(copy.deepcopy(DEFAULT_CONFIG))
            self.logger.info(f"Wrote default configuration to {self.path}")

    def load_config(self, force_reload: bool = False) -> Dict[str, Any]:
        """Read the YAML file, filling missing sections and keys from the defaults."""
        if self._cache is not None and not force_reload:
            return self._cache

        with open(self.path, 'r', encoding='utf-8') as f:
            document = yaml.safe_load(f)

        if document is None:
            document = {}
        if not isinstance(document, dict):
            raise ValueError(f"Configuration {self.path} is not a mapping")

        for section in REQUIRED_SECTIONS:
            overrides = document.get(section) or {}
            if not isinstance(overrides, dict):
                raise ValueError(f"Section '{section}' must be a mapping")
            merged = copy.deepcopy(DEFAULT_CONFIG[section])
            merged.update(overrides)
            document[section] = merged

        self.validate_config(document)
        self._cache = document
        return document

    def save_config(self, config: Dict[str, Any]):
        missing = [section for section in REQUIRED_SECTIONS if section not in config]
        if missing:
            raise ValueError(f"Missing required sections: {', '.join(missing)}")

        with open(self.path, 'w', encoding='utf-8') as f:
            yaml.safe_dump(config, f, default_flow_style=False, sort_keys=False)

        self._cache = config
        self.logger.debug(f"Configuration written to {self.path}")

    def set_value(self, section: str, key: str, value: Any):
        config = self.load_config()
        config.setdefault(section, {})[key] = value
        self.save_config(config)

    def get_section(self, section: str) -> Dict[str, Any]:
        return self.load_config().get(section, {})

    def validate_config(self, config: Dict[str, Any]):
        server = config['server']
        ports = {}
        for key in ('control_port', 'data_port'):
            try:
                ports[key] = int(server[key])
            except (TypeError, ValueError):
                raise ValueError(f"server.{key} is not a port number: {server[key]!r}")
            if not 1 <= ports[key] <= 65535:
                raise ValueError(f"server.{key} out of range: {ports[key]}")

        if ports['control_port'] == ports['data_port']:
            raise ValueError("server.control_port and server.data_port must differ")

        if not str(config['system'].get('username') or ''):
            raise ValueError("system.username must not be empty")

        for key in POSITIVE_TIMEOUTS:
            if float(config['timeouts'][key]) <= 0:
                raise ValueError(f"timeouts.{key} must be positive")

    def dump(self, fmt: str = 'yaml') -> str:
        config = self.load_config()
        fmt = fmt.lower()

        if fmt == 'json':
            return json.dumps(config, indent=2, default=str)
        if fmt == 'yaml':
            return yaml.safe_dump(config, default_flow_style=False, sort_keys=False)
        raise ValueError(f"Unsupported format: {fmt}")
