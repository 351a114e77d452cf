"""Configuration loader for buffet."""

from __future__ import annotations

from configparser import ConfigParser
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from . import constants


@dataclass(slots=True)
class DeviceConfig:
    device_id: str = ""


@dataclass(slots=True)
class CommandConfig:
    definitions_path: Path = constants.DEFAULT_COMMAND_DEFINITIONS_PATH
    test_definitions_path: Optional[Path] = None
    id_prefix: str = ""
    retention_seconds: float = constants.DEFAULT_COMMAND_RETENTION_SECONDS


@dataclass(slots=True)
class StateConfig:
    definitions_path: Path = constants.DEFAULT_STATE_DEFINITIONS_PATH
    queue_capacity: int = constants.DEFAULT_STATE_QUEUE_CAPACITY


@dataclass(slots=True)
class CloudConfig:
    enabled: bool = False
    broker_host: str = constants.DEFAULT_BROKER_HOST
    broker_port: int = 1883
    username: Optional[str] = None
    password: Optional[str] = None


@dataclass(slots=True)
class LocalApiConfig:
    enabled: bool = True
    host: str = constants.DEFAULT_LOCAL_API_HOST
    port: int = constants.DEFAULT_LOCAL_API_PORT


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    path: Optional[Path] = constants.DEFAULT_LOG_PATH
    log_network: bool = False


@dataclass(slots=True)
class BuffetConfig:
    device: DeviceConfig
    commands: CommandConfig
    state: StateConfig
    cloud: CloudConfig
    local_api: LocalApiConfig
    logging: LoggingConfig
    raw: ConfigParser
    path: Path


def _optional_path(value: Optional[str]) -> Optional[Path]:
    if not value:
        return None
    return Path(value).expanduser()


def load_config(path: Optional[Path] = None) -> BuffetConfig:
    """Load configuration from disk, applying defaults where necessary."""

    config_path = path or constants.DEFAULT_CONFIG_PATH
    parser = ConfigParser()
    parser.read_dict(
        {
            "device": {
                "device_id": "",
            },
            "commands": {
                "definitions_path": str(constants.DEFAULT_COMMAND_DEFINITIONS_PATH),
                "test_definitions_path": "",
                "id_prefix": "",
                "retention_seconds": str(constants.DEFAULT_COMMAND_RETENTION_SECONDS),
            },
            "state": {
                "definitions_path": str(constants.DEFAULT_STATE_DEFINITIONS_PATH),
                "queue_capacity": str(constants.DEFAULT_STATE_QUEUE_CAPACITY),
            },
            "cloud": {
                "enabled": "false",
                "broker_host": constants.DEFAULT_BROKER_HOST,
                "broker_port": "1883",
            },
            "local_api": {
                "enabled": "true",
                "host": constants.DEFAULT_LOCAL_API_HOST,
                "port": str(constants.DEFAULT_LOCAL_API_PORT),
            },
            "logging": {
                "level": "INFO",
                "path": str(constants.DEFAULT_LOG_PATH),
                "log_network": "false",
            },
        }
    )

    if config_path.exists():
        parser.read(config_path)

    broker_host_value = parser.get("cloud", "broker_host")
    broker_port_value = parser.getint("cloud", "broker_port", fallback=1883)

    if ":" in broker_host_value:
        host_part, port_part = broker_host_value.rsplit(":", 1)
        try:
            parsed_port = int(port_part)
        except ValueError:
            pass
        else:
            broker_host_value = host_part
            broker_port_value = parsed_port
            parser.set("cloud", "broker_host", host_part)
            parser.set("cloud", "broker_port", str(parsed_port))

    device = DeviceConfig(
        device_id=parser.get("device", "device_id", fallback="").strip(),
    )

    commands = CommandConfig(
        definitions_path=Path(parser.get("commands", "definitions_path")).expanduser(),
        test_definitions_path=_optional_path(
            parser.get("commands", "test_definitions_path", fallback="")
        ),
        id_prefix=parser.get("commands", "id_prefix", fallback=""),
        retention_seconds=max(
            0.0,
            parser.getfloat(
                "commands",
                "retention_seconds",
                fallback=constants.DEFAULT_COMMAND_RETENTION_SECONDS,
            ),
        ),
    )

    state = StateConfig(
        definitions_path=Path(parser.get("state", "definitions_path")).expanduser(),
        queue_capacity=max(
            1,
            parser.getint(
                "state",
                "queue_capacity",
                fallback=constants.DEFAULT_STATE_QUEUE_CAPACITY,
            ),
        ),
    )

    cloud = CloudConfig(
        enabled=parser.getboolean("cloud", "enabled", fallback=False),
        broker_host=broker_host_value,
        broker_port=broker_port_value,
        username=parser.get("cloud", "username", fallback=None),
        password=parser.get("cloud", "password", fallback=None),
    )

    local_api = LocalApiConfig(
        enabled=parser.getboolean("local_api", "enabled", fallback=True),
        host=parser.get("local_api", "host", fallback=constants.DEFAULT_LOCAL_API_HOST),
        port=parser.getint(
            "local_api", "port", fallback=constants.DEFAULT_LOCAL_API_PORT
        ),
    )

    logging_config = LoggingConfig(
        level=parser.get("logging", "level", fallback="INFO"),
        path=_optional_path(
            parser.get("logging", "path", fallback=str(constants.DEFAULT_LOG_PATH))
        ),
        log_network=parser.getboolean("logging", "log_network", fallback=False),
    )

    return BuffetConfig(
        device=device,
        commands=commands,
        state=state,
        cloud=cloud,
        local_api=local_api,
        logging=logging_config,
        raw=parser,
        path=config_path,
    )


def save_config(config: BuffetConfig) -> None:
    """Persist the current configuration to disk."""

    config_path = config.path
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as stream:
        config.raw.write(stream)
