"""Tests for the device state manager."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from buffet.errors import BatchUpdateError, NotFoundError, ParseError, ValidationError
from buffet.states import StateChangeQueue, StateManager


def test_definitions_apply_defaults(state_manager: StateManager) -> None:
    state = state_manager.get_all_as_structured()
    assert state == {
        "base": {"isProximityTokenRequired": False, "localDiscoveryEnabled": True},
        "robot": {},
    }
    assert state_manager.package_names() == ["base", "robot"]
    assert state_manager.categories() == ["base_state", "robotd"]


def test_set_property_records_change(state_manager: StateManager, clock) -> None:
    change = state_manager.set_property("robot.batteryLevel", 42)

    assert state_manager.get_property("robot.batteryLevel") == 42
    assert change.property_name == "robot.batteryLevel"
    assert change.value.to_json() == 42
    assert change.timestamp == clock.now
    assert change.sequence == 0
    assert state_manager.change_queue.snapshot() == (change,)


def test_rejected_write_changes_nothing(state_manager: StateManager) -> None:
    state_manager.set_property("robot.batteryLevel", 42)
    queued = len(state_manager.change_queue)

    with pytest.raises(ValidationError) as excinfo:
        state_manager.set_property("robot.batteryLevel", 250)
    assert excinfo.value.field == "robot.batteryLevel"

    with pytest.raises(NotFoundError):
        state_manager.set_property("robot.altitude", 1)
    with pytest.raises(NotFoundError):
        state_manager.set_property("batteryLevel", 1)

    assert state_manager.get_property("robot.batteryLevel") == 42
    assert len(state_manager.change_queue) == queued


def test_get_property(state_manager: StateManager) -> None:
    assert state_manager.get_property("base.localDiscoveryEnabled") is True
    assert state_manager.get_property("base.firmwareVersion") is None
    with pytest.raises(NotFoundError):
        state_manager.get_property("base.unknown")


def test_nested_object_property(state_manager: StateManager) -> None:
    state_manager.set_property("robot.position", {"x": 1.5, "y": 2})
    assert state_manager.get_property("robot.position") == {"x": 1.5, "y": 2}

    with pytest.raises(ValidationError) as excinfo:
        state_manager.set_property("robot.position", {"x": "left", "y": 0})
    assert excinfo.value.field == "robot.position.x"


def test_batch_update_commits_valid_entries(state_manager: StateManager) -> None:
    notifications = []
    state_manager.add_on_changed(lambda: notifications.append(True))

    with pytest.raises(BatchUpdateError) as excinfo:
        state_manager.set_properties(
            {
                "robot.batteryLevel": 70,
                "robot.mode": "flying",
                "base.firmwareVersion": "2.0.0",
            }
        )

    errors = excinfo.value.errors
    assert len(errors) == 1
    assert isinstance(errors[0], ValidationError)
    assert errors[0].field == "robot.mode"
    assert excinfo.value.as_dict()["errors"][0]["field"] == "robot.mode"

    assert state_manager.get_property("robot.batteryLevel") == 70
    assert state_manager.get_property("base.firmwareVersion") == "2.0.0"
    assert state_manager.get_property("robot.mode") is None
    assert [change.property_name for change in state_manager.change_queue.snapshot()] == [
        "robot.batteryLevel",
        "base.firmwareVersion",
    ]
    assert notifications == [True]


def test_batch_update_collects_every_failure(state_manager: StateManager) -> None:
    with pytest.raises(BatchUpdateError) as excinfo:
        state_manager.set_properties({"robot.mode": 1, "robot.missing": 2})

    assert [type(error) for error in excinfo.value.errors] == [
        ValidationError,
        NotFoundError,
    ]
    assert len(state_manager.change_queue) == 0


def test_batch_update_returns_changes(state_manager: StateManager) -> None:
    changes = state_manager.set_properties({"robot.mode": "walking", "robot.batteryLevel": 3})
    assert [change.sequence for change in changes] == [0, 1]
    assert changes[0].timestamp == changes[1].timestamp


def test_naive_timestamp_leaves_state_untouched(state_manager: StateManager) -> None:
    state_manager.set_property("robot.batteryLevel", 10)
    notifications = []
    state_manager.add_on_changed(lambda: notifications.append(True))

    with pytest.raises(ParseError):
        state_manager.set_property("robot.batteryLevel", 20, datetime(2030, 1, 1))
    with pytest.raises(ParseError):
        state_manager.set_properties({"robot.batteryLevel": 30}, datetime(2030, 1, 1))

    assert state_manager.get_property("robot.batteryLevel") == 10
    assert [change.value.to_json() for change in state_manager.change_queue.snapshot()] == [10]
    assert notifications == []

    aware = datetime(2030, 1, 1, tzinfo=timezone.utc)
    change = state_manager.set_property("robot.batteryLevel", 20, aware)
    assert change.timestamp == aware
    assert state_manager.get_property("robot.batteryLevel") == 20


def test_duplicate_definition_is_rejected(state_manager: StateManager) -> None:
    with pytest.raises(ParseError):
        state_manager.load_state_definition(
            {"tools": {"drill": "boolean"}, "robot": {"mode": "string"}}, "toolsd"
        )
    assert "tools" not in state_manager.package_names()


def test_definitions_extend_existing_package(state_manager: StateManager) -> None:
    state_manager.load_state_definition({"robot": {"_armAngle": "number"}}, "armd")
    state_manager.set_property("robot._armAngle", 12.5)
    assert state_manager.get_property("robot._armAngle") == 12.5


def test_defaults_are_atomic(state_manager: StateManager) -> None:
    with pytest.raises(ValidationError):
        state_manager.load_state_defaults(
            {"robot": {"batteryLevel": 50, "mode": "sleeping"}}
        )
    assert state_manager.get_property("robot.batteryLevel") is None

    state_manager.load_state_defaults({"robot": {"batteryLevel": 50}})
    assert state_manager.get_property("robot.batteryLevel") == 50
    assert len(state_manager.change_queue) == 0


def test_defaults_for_unknown_package(state_manager: StateManager) -> None:
    with pytest.raises(NotFoundError):
        state_manager.load_state_defaults({"tools": {"drill": True}})


def test_startup_reads_definition_files(definitions_dir: Path) -> None:
    manager = StateManager(StateChangeQueue())
    manager.startup(definitions_dir / "states")

    assert manager.package_names() == ["base", "robot"]
    assert manager.get_property("base.firmwareVersion") == "1.0.0"
    assert manager.get_property("robot.mode") == "idle"
    assert manager.get_state_definitions_as_json(full=False)["robot"]["batteryLevel"] == {
        "type": "integer",
        "minimum": 0,
        "maximum": 100,
    }


def test_clock_drives_timestamps(state_manager: StateManager, clock) -> None:
    first = state_manager.set_property("robot.batteryLevel", 1)
    clock.advance(5)
    second = state_manager.set_property("robot.batteryLevel", 2)
    assert second.timestamp - first.timestamp == timedelta(seconds=5)
