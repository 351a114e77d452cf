"""Constants used across the buffet package."""

from __future__ import annotations

from pathlib import Path

APP_NAME = "buffet"
DEFAULT_CONFIG_FILENAME = f"{APP_NAME}.cfg"
DEFAULT_CONFIG_PATH = Path("/etc") / APP_NAME / DEFAULT_CONFIG_FILENAME

DEFAULT_LOG_PATH = Path("/var/log") / f"{APP_NAME}.log"

DEFAULT_COMMAND_DEFINITIONS_PATH = Path("/etc") / APP_NAME / "commands"
DEFAULT_STATE_DEFINITIONS_PATH = Path("/etc") / APP_NAME / "states"

# The standard command set every vendor category may extend.
BASE_COMMANDS_FILENAME = "gcd.json"
BASE_STATE_PACKAGE = "base_state"

# Terminal commands stay visible for late readers before they are reaped.
DEFAULT_COMMAND_RETENTION_SECONDS = 300.0

# Max of 100 state update events should be enough in the queue.
DEFAULT_STATE_QUEUE_CAPACITY = 100

DEFAULT_BROKER_HOST = "localhost:1883"
DEFAULT_LOCAL_API_HOST = "127.0.0.1"
DEFAULT_LOCAL_API_PORT = 8585
