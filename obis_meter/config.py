import logging
import yaml
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Tuple

from iec_core.connection import ConnectionParams, ConnectionType

DEFAULT_CONFIG_PATH = "config/config.yaml"
DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class ConfigError(ValueError):
    """Invalid configuration value."""


class ConfigLoader:
    """
    Poller configuration read from a YAML file.

    Values are addressed with dotted paths ('connection.host'). A missing
    file is an error; an empty file means all defaults.
    """

    def __init__(self, config_path=DEFAULT_CONFIG_PATH):
        self.config_path = Path(config_path)
        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        try:
            with open(self.config_path, 'r') as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"{self.config_path}: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(f"{self.config_path}: top level must be a mapping")
        return data

    def get(self, key_path: str, default=None):
        *parents, leaf = key_path.split('.')
        node = self.config
        for key in parents:
            node = node.get(key)
            if not isinstance(node, dict):
                return default
        return node.get(leaf, default)

    def section(self, name: str) -> Dict[str, Any]:
        """A whole top-level section, empty when absent or null."""
        value = self.config.get(name)
        if value is None:
            return {}
        if not isinstance(value, dict):
            raise ConfigError(f"'{name}' must be a mapping")
        return value


def setup_logging(loader: ConfigLoader) -> None:
    """Configure root logging from the 'logging' section."""
    log_config = loader.section("logging")
    level_name = str(log_config.get("level", "INFO")).upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        raise ConfigError(f"Unknown log level: {level_name}")

    log_format = log_config.get("format", DEFAULT_LOG_FORMAT)
    logging.basicConfig(level=level, format=log_format)

    log_file = log_config.get("file")
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(log_file)
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(log_format))
        logging.getLogger().addHandler(fh)


@dataclass
class PollerConfig:
    """Everything the polling controller needs to know."""
    host: str = "localhost"
    port: int = 23
    serials: Tuple[str, ...] = ("",)
    verbose: bool = False
    timeout: float = 2.0
    connection_type: ConnectionType = ConnectionType.TCP
    device: str = "/dev/ttyUSB0"
    baudrate: int = 9600

    def __post_init__(self):
        if self.serials is None or isinstance(self.serials, (str, int)):
            self.serials = (self.serials,)
        # Meter addresses are often written as bare numbers in YAML
        self.serials = tuple("" if s is None else str(s) for s in self.serials)

        if not self.serials:
            raise ConfigError("serials must contain at least one entry ('' polls any device)")
        if self.connection_type == ConnectionType.TCP and not self.host:
            raise ConfigError("host is required for tcp connections")
        if self.timeout <= 0:
            raise ConfigError(f"timeout must be positive, got {self.timeout}")
        if not isinstance(self.verbose, bool):
            raise ConfigError(f"verbose must be true or false, got {self.verbose!r}")

    def connection_params(self) -> ConnectionParams:
        # Plain readout: no telnet negotiation, no login phase
        return ConnectionParams(
            type=self.connection_type,
            host=self.host,
            port=self.port,
            device=self.device,
            baudrate=self.baudrate,
            negotiation_mandatory=False,
            timeout=self.timeout,
            login_prompt="",
            password_prompt="",
        )

    @classmethod
    def from_loader(cls, loader: ConfigLoader) -> "PollerConfig":
        try:
            conn_type = ConnectionType(loader.get("connection.type", "tcp"))
        except ValueError as e:
            raise ConfigError(str(e)) from e

        return cls(
            host=loader.get("connection.host", "localhost"),
            port=int(loader.get("connection.port", 23)),
            serials=loader.get("meter.serials", ("",)),
            verbose=loader.get("meter.verbose", False),
            timeout=float(loader.get("connection.timeout", 2.0)),
            connection_type=conn_type,
            device=loader.get("connection.device", "/dev/ttyUSB0"),
            baudrate=int(loader.get("connection.baudrate", 9600)),
        )
