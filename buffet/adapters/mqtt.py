"""paho-mqtt transport for the cloud bridge.

paho runs its network loop on a private thread. Every callback coming from
that thread is marshalled onto the asyncio loop that opened the link, so the
bridge and the command/state managers only ever see calls from one loop.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional, Set

import paho.mqtt.client as mqtt

from ..config import CloudConfig

LOGGER = logging.getLogger(__name__)

MessageHandler = Callable[[str, bytes], Awaitable[None] | None]
ClientFactory = Callable[[str], Any]
ConnectHandler = Callable[[], None]

ONLINE = b"online"
OFFLINE = b"offline"


class MQTTConnectionError(RuntimeError):
    """The broker could not be reached or refused an operation."""


def _default_client_factory(client_id: str) -> mqtt.Client:
    return mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=client_id)


class MQTTClient:
    """Device link to the cloud broker.

    ``availability_topic``, when given, carries a retained ``online`` /
    ``offline`` flag; the broker publishes ``offline`` itself through the
    last-will if the link drops without a clean disconnect.

    paho reconnects by itself after a drop. Handlers registered with
    ``register_connect_handler`` run on the event loop after every accepted
    CONNACK so callers can restore subscriptions the broker forgot.
    """

    def __init__(
        self,
        config: CloudConfig,
        *,
        client_id: str,
        keepalive: int = 60,
        availability_topic: Optional[str] = None,
        client_factory: Optional[ClientFactory] = None,
    ) -> None:
        self.config = config
        self.client_id = client_id
        self.keepalive = keepalive
        self.availability_topic = availability_topic
        self._client_factory = client_factory or _default_client_factory

        self._paho: Any = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._connack: Optional[asyncio.Future] = None
        self._closed: Optional[asyncio.Future] = None
        self._handler: Optional[MessageHandler] = None
        self._connect_handlers: List[ConnectHandler] = []
        self._pending: Set[asyncio.Task] = set()
        self._online = False

    def is_connected(self) -> bool:
        return self._online

    def set_message_handler(self, handler: Optional[MessageHandler]) -> None:
        self._handler = handler

    def register_connect_handler(self, handler: ConnectHandler) -> None:
        self._connect_handlers.append(handler)

    async def connect(self, timeout: float = 30.0) -> None:
        """Open the link and wait for the broker's CONNACK.

        Raises ``MQTTConnectionError`` on timeout or when the broker answers
        with a non-zero reason code; the network thread is stopped either way.
        """
        loop = asyncio.get_running_loop()
        self._loop = loop
        self._connack = loop.create_future()
        self._closed = loop.create_future()

        paho = self._client_factory(self.client_id)
        paho.enable_logger(LOGGER.getChild("paho"))
        if self.config.username:
            paho.username_pw_set(self.config.username, self.config.password)
        if self.availability_topic:
            paho.will_set(self.availability_topic, OFFLINE, qos=1, retain=True)
        paho.on_connect = self._handle_connack
        paho.on_disconnect = self._handle_closed
        paho.on_message = self._handle_incoming
        self._paho = paho

        host, port = self.config.broker_host, self.config.broker_port
        LOGGER.info("Opening cloud link to %s:%s as %s", host, port, self.client_id)
        paho.connect_async(host, port, self.keepalive)
        paho.loop_start()

        try:
            reason = await asyncio.wait_for(self._connack, timeout=timeout)
        except asyncio.TimeoutError as exc:
            self._abandon()
            raise MQTTConnectionError(
                f"No CONNACK from {host}:{port} within {timeout:g}s"
            ) from exc
        if reason != 0:
            self._abandon()
            raise MQTTConnectionError(f"Broker {host}:{port} refused link (rc={reason})")

    async def disconnect(self, timeout: float = 5.0) -> None:
        if self._paho is None:
            return
        closed = self._closed

        if self.availability_topic and self._online:
            try:
                self.publish(self.availability_topic, OFFLINE, retain=True)
            except MQTTConnectionError as exc:
                LOGGER.debug("Could not publish offline flag: %s", exc)

        self._paho.disconnect()
        try:
            if closed is not None:
                await asyncio.wait_for(closed, timeout=timeout)
        finally:
            self._abandon()

    def publish(
        self, topic: str, payload: bytes, qos: int = 1, retain: bool = False
    ) -> None:
        info = self._require_link().publish(topic, payload, qos=qos, retain=retain)
        _check("publish", topic, info.rc)

    def subscribe(self, topic: str, qos: int = 1) -> None:
        rc, _ = self._require_link().subscribe(topic, qos=qos)
        _check("subscribe", topic, rc)

    def unsubscribe(self, topic: str) -> None:
        rc, _ = self._require_link().unsubscribe(topic)
        _check("unsubscribe", topic, rc)

    def _require_link(self) -> Any:
        if self._paho is None:
            raise RuntimeError("Cloud link is not open")
        return self._paho

    def _abandon(self) -> None:
        if self._paho is not None:
            self._paho.loop_stop()
        self._paho = None
        self._online = False

    # paho network thread ------------------------------------------------

    def _handle_connack(self, client, userdata, flags, reason_code, properties=None) -> None:
        reason = _reason_value(reason_code)
        self._online = reason == 0
        if self._online:
            LOGGER.info("Cloud link established")
            self._call_soon(self._link_up)
        else:
            LOGGER.error("Broker refused cloud link (rc=%s)", reason)
        self._resolve(self._connack, reason)

    def _handle_closed(self, client, userdata, flags, reason_code, properties=None) -> None:
        reason = _reason_value(reason_code)
        self._online = False
        LOGGER.info("Cloud link closed (rc=%s)", reason)
        self._resolve(self._closed, reason)

    def _handle_incoming(self, client, userdata, message) -> None:
        loop = self._loop
        if self._handler is None or loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._deliver, message.topic, message.payload)

    def _call_soon(self, callback: Callable[[], None]) -> None:
        loop = self._loop
        if loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(callback)

    # event loop ---------------------------------------------------------

    def _link_up(self) -> None:
        if self._paho is None or self._loop is None:
            return
        if self._closed is None or self._closed.done():
            self._closed = self._loop.create_future()
        if self.availability_topic:
            try:
                self.publish(self.availability_topic, ONLINE, retain=True)
            except MQTTConnectionError as exc:
                LOGGER.warning("Could not publish online flag: %s", exc)
        for handler in list(self._connect_handlers):
            handler()

    def _deliver(self, topic: str, payload: bytes) -> None:
        handler = self._handler
        if handler is None:
            return
        try:
            result = handler(topic, payload)
        except Exception:  # pragma: no cover - a handler bug must not kill the loop
            LOGGER.exception("Handler failed for message on %s", topic)
            return
        if asyncio.iscoroutine(result):
            task = asyncio.ensure_future(result)
            self._pending.add(task)
            task.add_done_callback(self._handler_finished)

    def _handler_finished(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("Async message handler failed", exc_info=exc)

    def _resolve(self, future: Optional[asyncio.Future], reason: int) -> None:
        if future is None:
            return

        def settle() -> None:
            if not future.done():
                future.set_result(reason)

        self._call_soon(settle)


def _check(operation: str, topic: str, rc: int) -> None:
    if rc != mqtt.MQTT_ERR_SUCCESS:
        raise MQTTConnectionError(f"{operation} on {topic} failed with rc={rc}")


def _reason_value(reason_code: Any) -> int:
    value = getattr(reason_code, "value", reason_code)
    try:
        return int(value)
    except (TypeError, ValueError):
        return -1
