"""Cloud bridge: exposes the command and state cores over MQTT.

Topics are rooted at ``buffet/devices/{deviceId}``:

- ``commands/add`` admits a cloud command, ``{"requestId", "command"}``.
- ``commands/{id}/{action}`` drives a command where ``action`` is one of
  progress, complete, abort, cancel or fail.
- ``state/update`` applies a best-effort batch, ``{"requestId", "properties"}``.

Replies are published to ``replies/{requestId}``, command changes to
``commands/{id}/status`` and drained state changes to ``state/changes``.
The supported command set is kept retained on ``commands/definitions`` and
republished whenever the dictionary changes. After the transport reconnects
the bridge subscribes again and sends a full state resync.
The transport keeps a retained availability flag on ``online``.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, Mapping, Optional, Protocol

from .commands import CommandInstance, CommandManager, CommandOrigin
from .errors import BuffetError, GapError, NotFoundError, ParseError
from .states import StateManager

LOGGER = logging.getLogger(__name__)

COMMAND_ACTIONS = frozenset({"progress", "complete", "abort", "cancel", "fail"})


def device_topic(device_id: str, *parts: str) -> str:
    return "/".join(("buffet/devices", device_id) + parts)


class MQTTBridgeClient(Protocol):
    def subscribe(self, topic: str, qos: int = 1) -> None: ...

    def unsubscribe(self, topic: str) -> None: ...

    def publish(
        self, topic: str, payload: bytes, qos: int = 1, retain: bool = False
    ) -> None: ...

    def set_message_handler(self, handler): ...

    def register_connect_handler(self, handler: Callable[[], None]) -> None: ...


class CloudBridge:
    """Translates MQTT requests into core calls and core events into messages.

    Core errors are answered with ``{"ok": false, "error": {"code",
    "message"}}`` so the cloud can tell caller errors, state conflicts and
    unknown ids apart.
    """

    def __init__(
        self,
        device_id: str,
        commands: CommandManager,
        state: StateManager,
        mqtt: MQTTBridgeClient,
    ) -> None:
        if not device_id:
            raise ValueError("CloudBridge requires a device id")
        self._commands = commands
        self._state = state
        self._mqtt = mqtt
        self._base_topic = device_topic(device_id)
        self._subscriptions = (
            f"{self._base_topic}/commands/#",
            f"{self._base_topic}/state/update",
        )
        self._state_cursor = state.change_queue.next_cursor
        self._started = False
        self._listeners_registered = False

    @property
    def base_topic(self) -> str:
        return self._base_topic

    def start(self) -> None:
        if self._started:
            raise RuntimeError("CloudBridge already started")

        if not self._listeners_registered:
            self._commands.queue.add_on_command_changed(self._on_command_changed)
            self._commands.queue.add_on_command_added(self._on_command_changed)
            self._state.add_on_changed(self._on_state_changed)
            self._commands.dictionary.add_on_changed(self._on_definitions_changed)
            self._mqtt.register_connect_handler(self._on_reconnected)
            self._listeners_registered = True

        self._mqtt.set_message_handler(self._handle_message)
        for topic in self._subscriptions:
            self._mqtt.subscribe(topic, qos=1)
        self._started = True
        LOGGER.info("Cloud bridge subscribed under %s", self._base_topic)
        self._publish_definitions()
        self._publish_resync()

    def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        self._mqtt.set_message_handler(None)
        for topic in self._subscriptions:
            try:
                self._mqtt.unsubscribe(topic)
            except (RuntimeError, OSError) as exc:
                LOGGER.debug("Ignoring unsubscribe failure for %s: %s", topic, exc)

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------
    def _handle_message(self, topic: str, payload: bytes) -> None:
        prefix = f"{self._base_topic}/"
        if not topic.startswith(prefix):
            return
        parts = topic[len(prefix):].split("/")

        request_id: Optional[str] = None
        try:
            data = _decode(payload)
            raw_request_id = data.get("requestId")
            request_id = raw_request_id if isinstance(raw_request_id, str) else None
            result = self._dispatch(parts, data)
        except BuffetError as exc:
            LOGGER.warning("Rejected request on %s: %s", topic, exc)
            self._reply(request_id, {"ok": False, "error": exc.as_dict()})
            return

        reply: Dict[str, Any] = {"ok": True}
        reply.update(result)
        self._reply(request_id, reply)

    def _dispatch(self, parts: list[str], data: Mapping[str, Any]) -> Dict[str, Any]:
        if parts == ["commands", "add"]:
            command_id = self._commands.add_command(data.get("command"), CommandOrigin.CLOUD)
            return {"id": command_id}

        if len(parts) == 3 and parts[0] == "commands" and parts[2] in COMMAND_ACTIONS:
            instance = self._commands.find_command(parts[1])
            if instance is None:
                raise NotFoundError("command id", parts[1])
            apply_command_action(instance, parts[2], data)
            return {"id": parts[1], "state": instance.state.value}

        if parts == ["state", "update"]:
            properties = data.get("properties")
            if not isinstance(properties, Mapping):
                raise ParseError("State update requires a 'properties' object")
            changes = self._state.set_properties(properties)
            return {"applied": len(changes)}

        # Our own status and definition messages echo back through commands/#.
        if len(parts) == 3 and parts[0] == "commands" and parts[2] == "status":
            return {}
        if parts == ["commands", "definitions"]:
            return {}
        raise ParseError(f"Unsupported topic {'/'.join(parts)!r}")

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------
    def _on_command_changed(self, instance: CommandInstance) -> None:
        if not self._started or instance.id is None:
            return
        self._publish(
            f"{self._base_topic}/commands/{instance.id}/status", instance.to_json()
        )

    def _on_state_changed(self) -> None:
        if not self._started:
            return
        try:
            result = self._state.change_queue.drain_since(self._state_cursor)
        except GapError as exc:
            LOGGER.warning("State change history lost (%s); publishing full state", exc)
            self._publish_resync()
            return

        self._state_cursor = result.cursor
        if result.changes:
            self._publish(
                f"{self._base_topic}/state/changes",
                {"changes": [change.to_json() for change in result.changes]},
            )

    def _on_definitions_changed(self) -> None:
        if self._started:
            self._publish_definitions()

    def _on_reconnected(self) -> None:
        if not self._started:
            return
        LOGGER.info("Cloud link restored; restoring subscriptions under %s", self._base_topic)
        for topic in self._subscriptions:
            try:
                self._mqtt.subscribe(topic, qos=1)
            except (RuntimeError, OSError) as exc:
                LOGGER.warning("Failed to resubscribe to %s: %s", topic, exc)
        self._publish_definitions()
        self._publish_resync()

    def _publish_definitions(self) -> None:
        self._publish(
            f"{self._base_topic}/commands/definitions",
            self._commands.dictionary.get_commands_as_json(full=True),
            retain=True,
        )

    def _publish_resync(self) -> None:
        self._state_cursor = self._state.change_queue.next_cursor
        self._publish(
            f"{self._base_topic}/state/changes",
            {"resync": True, "state": self._state.get_state_values_as_json()},
        )

    def _reply(self, request_id: Optional[str], payload: Dict[str, Any]) -> None:
        if not request_id:
            return
        self._publish(f"{self._base_topic}/replies/{request_id}", payload)

    def _publish(
        self, topic: str, payload: Mapping[str, Any], *, retain: bool = False
    ) -> None:
        data = json.dumps(payload, separators=(",", ":")).encode("utf-8")
        try:
            self._mqtt.publish(topic, data, qos=1, retain=retain)
        except (RuntimeError, OSError) as exc:
            LOGGER.warning("Failed to publish to %s: %s", topic, exc)


def apply_command_action(
    instance: CommandInstance, action: str, data: Mapping[str, Any]
) -> None:
    """Apply an executor action to ``instance``; shared by every adapter."""

    if action == "progress":
        instance.set_progress(data.get("progress", {}))
    elif action == "complete":
        instance.complete(data.get("results", {}))
    elif action == "cancel":
        instance.cancel()
    elif action in ("abort", "fail"):
        code = data.get("code")
        message = data.get("message", "")
        if not isinstance(code, str) or not code:
            raise ParseError(f"'{action}' requires a string 'code'")
        if not isinstance(message, str):
            raise ParseError(f"'{action}' 'message' must be a string")
        if action == "abort":
            instance.abort(code, message)
        else:
            instance.fail(code, message)
    else:
        raise ParseError(f"Unknown command action {action!r}")


def _decode(payload: bytes) -> Dict[str, Any]:
    if not payload:
        return {}
    try:
        data = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ParseError(f"Invalid JSON payload: {exc}") from exc
    if not isinstance(data, dict):
        raise ParseError("Payload must be a JSON object")
    return data
