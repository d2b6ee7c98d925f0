"""Configuration management for dockdiver."""

import json
import os
import yaml
from typing import Dict, Any, Optional

from ..errors import ConfigError
from ..models.registry import AuthConfig
from ..transport.client import RegistryClient
from ..utils.useragents import random_user_agent


DEFAULTS = {
    'url': None,
    'port': 5000,
    'username': None,
    'password': None,
    'bearer': None,
    'headers': None,
    'rate': 3.0,
    'output_dir': 'docker_dump',
    'insecure': False,
    'proxy': None,
    'proxy_username': None,
    'proxy_password': None,
    'timeout': 30.0,
    'proxy_timeout': 10.0,
    'num_workers': 5,
    'page_size': 100,
    'force_blobs': False,
    'user_agent': None,
}

ENVIRONMENT = {
    'url': 'DOCKDIVER_URL',
    'username': 'DOCKDIVER_USERNAME',
    'password': 'DOCKDIVER_PASSWORD',
    'bearer': 'DOCKDIVER_BEARER',
    'headers': 'DOCKDIVER_HEADERS',
    'proxy': 'DOCKDIVER_PROXY',
    'proxy_username': 'DOCKDIVER_PROXY_USERNAME',
    'proxy_password': 'DOCKDIVER_PROXY_PASSWORD',
}


class Config:
    """Configuration manager for dockdiver.

    Values resolve in order: explicit overrides (CLI flags), environment
    variables, the YAML file named by ``config_path`` or ``DOCKDIVER_CONFIG``,
    then built-in defaults.
    """

    def __init__(self, config_path: Optional[str] = None, environ: Optional[Dict[str, str]] = None,
                 **overrides):
        self.environ = os.environ if environ is None else environ
        self.config_path = config_path or self.environ.get('DOCKDIVER_CONFIG')
        self._file_config = None

        values = dict(DEFAULTS)
        values.update({k: v for k, v in self.file_config.items() if k in DEFAULTS})
        for key, var in ENVIRONMENT.items():
            if self.environ.get(var):
                values[key] = self.environ[var]
        values.update({k: v for k, v in overrides.items() if k in DEFAULTS and v is not None})

        try:
            self._apply(values)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid configuration value: {e}")

        self._auth = None
        self._validate()

    def _apply(self, values: Dict[str, Any]):
        self.url = values['url']
        self.port = int(values['port'])
        self.username = values['username']
        self.password = values['password']
        self.bearer = values['bearer']
        headers = values['headers']
        self.headers = json.dumps(headers) if isinstance(headers, dict) else headers
        self.rate = float(values['rate'])
        self.output_dir = str(values['output_dir'])
        self.insecure = bool(values['insecure'])
        self.proxy = values['proxy']
        self.proxy_username = values['proxy_username']
        self.proxy_password = values['proxy_password']
        self.timeout = float(values['timeout'])
        self.proxy_timeout = float(values['proxy_timeout'])
        self.num_workers = int(values['num_workers'])
        self.page_size = int(values['page_size'])
        self.force_blobs = bool(values['force_blobs'])
        self.user_agent = values['user_agent'] or random_user_agent()

    @property
    def file_config(self) -> Dict[str, Any]:
        """Load and cache the YAML configuration file."""
        if self._file_config is None:
            if not self.config_path:
                self._file_config = {}
            else:
                if not os.path.exists(self.config_path):
                    raise ConfigError(f"Config file not found: {self.config_path}")

                with open(self.config_path, 'r') as f:
                    loaded = yaml.safe_load(f) or {}
                if not isinstance(loaded, dict):
                    raise ConfigError(f"Config file must contain a mapping: {self.config_path}")
                self._file_config = {str(k).replace('-', '_'): v for k, v in loaded.items()}

        return self._file_config

    def _validate(self):
        """Validate configuration values."""
        if not self.url:
            raise ConfigError("Missing registry URL (--url or DOCKDIVER_URL)")
        if self.port <= 0 or self.port > 65535:
            raise ConfigError("port must be between 1 and 65535")
        if self.rate <= 0:
            raise ConfigError("rate must be positive")
        if self.timeout <= 0:
            raise ConfigError("timeout must be positive")
        if self.proxy_timeout <= 0:
            raise ConfigError("proxy_timeout must be positive")
        if self.num_workers < 1:
            raise ConfigError("num_workers must be at least 1")
        if self.page_size < 1:
            raise ConfigError("page_size must be at least 1")
        # Surface bad headers JSON before any network traffic.
        _ = self.auth

    @property
    def auth(self) -> AuthConfig:
        if self._auth is None:
            self._auth = AuthConfig.from_values(
                self.username, self.password, self.bearer, self.headers
            )
        return self._auth

    def build_client(self) -> RegistryClient:
        return RegistryClient(
            rate=self.rate,
            timeout=self.timeout,
            user_agent=self.user_agent,
            insecure=self.insecure
        )
