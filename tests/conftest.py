import copy
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from buffet.commands import CommandDictionary, CommandManager
from buffet.states import StateChangeQueue, StateManager

STANDARD_COMMANDS = {
    "base": {
        "reboot": {"parameters": {}},
        "identify": {
            "parameters": {"duration": {"type": "integer", "minimum": 1, "default": 5}}
        },
    },
}

ROBOT_COMMANDS = {
    "robot": {
        "jump": {
            "parameters": {
                "height": {"type": "integer", "minimum": 0, "maximum": 100},
                "_jumpType": {
                    "enum": ["_withKick", "_plain"],
                    "default": "_plain",
                },
            }
        },
        "_wave": {
            "parameters": {"hand": ["left", "right"]},
            "progress": {"percent": {"minimum": 0, "maximum": 100}},
            "results": {"waves": "integer"},
        },
    }
}

BASE_STATE = {
    "base": {
        "firmwareVersion": "string",
        "isProximityTokenRequired": {"type": "boolean", "default": False},
        "localDiscoveryEnabled": {"type": "boolean", "default": True},
    }
}

ROBOT_STATE = {
    "robot": {
        "batteryLevel": {"type": "integer", "minimum": 0, "maximum": 100},
        "mode": ["idle", "walking", "jumping"],
        "position": {
            "type": "object",
            "properties": {"x": "number", "y": "number"},
        },
    }
}


class FakeClock:
    """Manually advanced clock for retention and timestamp tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def standard_dictionary() -> CommandDictionary:
    dictionary = CommandDictionary()
    dictionary.load_commands(STANDARD_COMMANDS, "base")
    return dictionary


@pytest.fixture
def robot_dictionary() -> CommandDictionary:
    dictionary = CommandDictionary()
    dictionary.load_commands(ROBOT_COMMANDS, "robotd")
    return dictionary


@pytest.fixture
def command_manager(clock: FakeClock) -> CommandManager:
    manager = CommandManager(clock=clock)
    manager.load_base_commands(STANDARD_COMMANDS)
    manager.load_commands(ROBOT_COMMANDS, "robotd")
    return manager


@pytest.fixture
def state_manager(clock: FakeClock) -> StateManager:
    manager = StateManager(StateChangeQueue(capacity=10), clock=clock)
    manager.load_state_definition(BASE_STATE, "base_state")
    manager.load_state_definition(ROBOT_STATE, "robotd")
    return manager


@pytest.fixture
def definitions_dir(tmp_path: Path) -> Path:
    commands = tmp_path / "commands"
    commands.mkdir()
    (commands / "gcd.json").write_text(json.dumps(STANDARD_COMMANDS), encoding="utf-8")
    (commands / "robotd.json").write_text(json.dumps(ROBOT_COMMANDS), encoding="utf-8")

    states = tmp_path / "states"
    states.mkdir()
    (states / "base_state.schema.json").write_text(
        json.dumps(BASE_STATE), encoding="utf-8"
    )
    (states / "base_state.defaults.json").write_text(
        json.dumps({"base": {"firmwareVersion": "1.0.0"}}), encoding="utf-8"
    )
    (states / "robotd.schema.json").write_text(json.dumps(ROBOT_STATE), encoding="utf-8")
    (states / "robotd.defaults.json").write_text(
        json.dumps({"robot": {"batteryLevel": 80, "mode": "idle"}}), encoding="utf-8"
    )
    return tmp_path


@pytest.fixture
def robot_commands() -> dict:
    return copy.deepcopy(ROBOT_COMMANDS)


@pytest.fixture
def standard_commands() -> dict:
    return copy.deepcopy(STANDARD_COMMANDS)
