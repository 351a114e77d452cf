"""Main application entry-point for buffet."""

from __future__ import annotations

import asyncio
import logging
import os
from datetime import timedelta
from typing import Optional

from . import constants
from .adapters import MQTTClient, MQTTConnectionError
from .bridge import CloudBridge, device_topic
from .commands import CommandManager
from .config import BuffetConfig, load_config
from .local_api import LocalApiServer
from .logging import configure_logging
from .states import StateChangeQueue, StateManager

LOGGER = logging.getLogger(__name__)


class BuffetApp:
    """Coordinates application startup and shutdown.

    Startup loads the command and state definitions, then brings up the
    local HTTP API and, when enabled, the MQTT cloud bridge. A failing
    adapter leaves the service running in degraded mode; broken definitions
    abort startup.
    """

    def __init__(
        self,
        config: Optional[BuffetConfig] = None,
        *,
        mqtt_client: Optional[MQTTClient] = None,
    ) -> None:
        self._config = config or load_config()
        self._commands = CommandManager(
            id_prefix=self._config.commands.id_prefix,
            retention=timedelta(seconds=self._config.commands.retention_seconds),
        )
        self._state = StateManager(StateChangeQueue(self._config.state.queue_capacity))
        self._mqtt_client = mqtt_client
        self._bridge: Optional[CloudBridge] = None
        self._local_api: Optional[LocalApiServer] = None
        self._shutdown_event: Optional[asyncio.Event] = None

    @property
    def commands(self) -> CommandManager:
        return self._commands

    @property
    def state(self) -> StateManager:
        return self._state

    def load_definitions(self) -> None:
        self._commands.startup(
            self._config.commands.definitions_path,
            self._config.commands.test_definitions_path,
        )
        self._state.startup(self._config.state.definitions_path)

    async def run(self) -> None:
        """Start every service and idle until cancelled or asked to stop."""

        self._shutdown_event = asyncio.Event()
        LOGGER.info("buffet starting with config: %s", self._config.path)
        self.load_definitions()
        await self._start_services()

        try:
            await self._shutdown_event.wait()
        except asyncio.CancelledError:
            LOGGER.info("buffet received shutdown signal")
            raise
        finally:
            await self._stop_services()

    def request_shutdown(self) -> None:
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    @classmethod
    def start(cls, config: Optional[BuffetConfig] = None) -> None:
        instance = cls(config=config)
        configure_logging(
            instance._config.logging.level,
            log_path=instance._config.logging.path,
            log_network=instance._config.logging.log_network,
        )
        try:
            asyncio.run(instance.run())
        except KeyboardInterrupt:
            LOGGER.info("buffet received shutdown signal")

    async def _start_services(self) -> None:
        local_api = self._config.local_api
        if local_api.enabled:
            server = LocalApiServer(
                self._commands, self._state, local_api.host, local_api.port
            )
            try:
                await server.start()
            except OSError as exc:
                LOGGER.error("Failed to start local API: %s", exc)
            else:
                self._local_api = server

        if self._config.cloud.enabled:
            await self._start_cloud_bridge()

    async def _start_cloud_bridge(self) -> None:
        device_id = self._config.device.device_id
        if not device_id:
            LOGGER.error("Cloud bridge enabled but [device] device_id is not set")
            return

        if self._mqtt_client is None:
            self._mqtt_client = MQTTClient(
                self._config.cloud,
                client_id=_build_client_id(device_id),
                availability_topic=device_topic(device_id, "online"),
            )
        try:
            await self._mqtt_client.connect()
        except MQTTConnectionError as exc:
            LOGGER.error("Cloud bridge unavailable: %s", exc)
            self._mqtt_client = None
            return

        bridge = CloudBridge(device_id, self._commands, self._state, self._mqtt_client)
        bridge.start()
        self._bridge = bridge

    async def _stop_services(self) -> None:
        if self._bridge is not None:
            self._bridge.stop()
            self._bridge = None

        if self._mqtt_client is not None:
            try:
                await self._mqtt_client.disconnect()
            except asyncio.TimeoutError:
                LOGGER.warning("Timed out waiting for MQTT disconnect")
            self._mqtt_client = None

        if self._local_api is not None:
            await self._local_api.stop()
            self._local_api = None

        LOGGER.info("buffet stopped")


def _build_client_id(device_id: Optional[str]) -> str:
    suffix = device_id or str(os.getpid())
    return f"{constants.APP_NAME}-{suffix}"
