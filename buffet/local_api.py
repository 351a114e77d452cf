"""Local HTTP surface for on-device clients and executors."""

from __future__ import annotations

import contextlib
import json
import logging
from typing import Any, Optional

from aiohttp import web

from .bridge import COMMAND_ACTIONS, apply_command_action
from .commands import CommandManager, CommandOrigin
from .errors import (
    BatchUpdateError,
    BuffetError,
    GapError,
    LoadError,
    NotFoundError,
    ParseError,
    StateConflictError,
    ValidationError,
)
from .states import StateManager

LOGGER = logging.getLogger(__name__)


def _status_for(exc: BuffetError) -> int:
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, (StateConflictError, LoadError)):
        return 409
    if isinstance(exc, GapError):
        return 410
    if isinstance(exc, (ParseError, ValidationError, BatchUpdateError)):
        return 400
    return 500


@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except BuffetError as exc:
        status = _status_for(exc)
        LOGGER.warning("%s %s failed (%d): %s", request.method, request.path, status, exc)
        return web.json_response({"error": exc.as_dict()}, status=status)


class LocalApiServer:
    """aiohttp server exposing the command queue and device state."""

    def __init__(
        self,
        commands: CommandManager,
        state: StateManager,
        host: str,
        port: int,
    ) -> None:
        self._commands = commands
        self._state = state
        self._host = host
        self._port = port
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None

    def build_app(self) -> web.Application:
        app = web.Application(middlewares=[error_middleware])
        app.router.add_get("/healthz", self._handle_health)
        app.router.add_get("/commands/definitions", self._handle_definitions)
        app.router.add_get("/commands", self._handle_list_commands)
        app.router.add_post("/commands", self._handle_add_command)
        app.router.add_get("/commands/{id}", self._handle_get_command)
        app.router.add_post("/commands/{id}/{action}", self._handle_command_action)
        app.router.add_get("/state", self._handle_get_state)
        app.router.add_patch("/state", self._handle_patch_state)
        app.router.add_get("/state/changes", self._handle_state_changes)
        return app

    async def start(self) -> None:
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self._host, self._port)
        await self._site.start()
        LOGGER.info("Local API listening on http://%s:%s", self._host, self._port)

    async def stop(self) -> None:
        with contextlib.suppress(RuntimeError):
            if self._site is not None:
                await self._site.stop()
        if self._runner is not None:
            await self._runner.cleanup()
        self._site = None
        self._runner = None

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------
    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response(
            {
                "status": "ok",
                "commands": len(self._commands.queue),
                "stateChanges": len(self._state.change_queue),
            }
        )

    async def _handle_definitions(self, request: web.Request) -> web.Response:
        full = request.query.get("full", "true").lower() != "false"
        return web.json_response(
            self._commands.dictionary.get_commands_as_json(full=full)
        )

    async def _handle_list_commands(self, request: web.Request) -> web.Response:
        return web.json_response(
            {"commands": [command.to_json() for command in self._commands.list_commands()]}
        )

    async def _handle_add_command(self, request: web.Request) -> web.Response:
        payload = await _read_json(request)
        command_id = self._commands.add_command(payload, CommandOrigin.LOCAL)
        return web.json_response({"id": command_id}, status=201)

    async def _handle_get_command(self, request: web.Request) -> web.Response:
        command_id = request.match_info["id"]
        instance = self._commands.find_command(command_id)
        if instance is None:
            raise NotFoundError("command id", command_id)
        return web.json_response(instance.to_json())

    async def _handle_command_action(self, request: web.Request) -> web.Response:
        command_id = request.match_info["id"]
        action = request.match_info["action"]
        if action not in COMMAND_ACTIONS:
            raise web.HTTPNotFound()
        instance = self._commands.find_command(command_id)
        if instance is None:
            raise NotFoundError("command id", command_id)

        payload = await _read_json(request, allow_empty=True)
        if not isinstance(payload, dict):
            raise ParseError("Request body must be a JSON object")
        apply_command_action(instance, action, payload)
        return web.json_response(instance.to_json())

    async def _handle_get_state(self, request: web.Request) -> web.Response:
        return web.json_response(self._state.get_state_values_as_json())

    async def _handle_patch_state(self, request: web.Request) -> web.Response:
        payload = await _read_json(request)
        if not isinstance(payload, dict):
            raise ParseError("State update must be a JSON object")
        changes = self._state.set_properties(payload)
        return web.json_response({"changes": [change.to_json() for change in changes]})

    async def _handle_state_changes(self, request: web.Request) -> web.Response:
        raw_cursor = request.query.get("cursor", "0")
        try:
            cursor = int(raw_cursor)
        except ValueError as exc:
            raise ParseError(f"Invalid cursor {raw_cursor!r}") from exc
        result = self._state.change_queue.drain_since(cursor)
        return web.json_response(
            {
                "changes": [change.to_json() for change in result.changes],
                "cursor": result.cursor,
            }
        )


async def _read_json(request: web.Request, *, allow_empty: bool = False) -> Any:
    text = await request.text()
    if not text.strip():
        if allow_empty:
            return {}
        raise ParseError("Request body is empty")
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise ParseError(f"Invalid JSON body: {exc}") from exc
