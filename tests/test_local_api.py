import aiohttp
import pytest
import pytest_asyncio

from buffet.commands import CommandManager
from buffet.local_api import LocalApiServer
from buffet.states import StateManager

HOST = "127.0.0.1"


@pytest_asyncio.fixture
async def api(command_manager: CommandManager, state_manager: StateManager, unused_tcp_port):
    server = LocalApiServer(command_manager, state_manager, HOST, unused_tcp_port)
    await server.start()
    try:
        async with aiohttp.ClientSession(
            base_url=f"http://{HOST}:{unused_tcp_port}"
        ) as session:
            yield session
    finally:
        await server.stop()


@pytest.mark.asyncio
async def test_healthz(api) -> None:
    async with api.get("/healthz") as response:
        assert response.status == 200
        assert await response.json() == {"status": "ok", "commands": 0, "stateChanges": 0}


@pytest.mark.asyncio
async def test_command_definitions(api) -> None:
    async with api.get("/commands/definitions") as response:
        payload = await response.json()
    assert sorted(payload["robot"]) == ["_wave", "jump"]
    assert payload["robot"]["jump"]["parameters"]["height"]["maximum"] == 100


@pytest.mark.asyncio
async def test_command_lifecycle(api) -> None:
    async with api.post(
        "/commands",
        json={"name": "robot.jump", "parameters": {"height": 53, "_jumpType": "_withKick"}},
    ) as response:
        assert response.status == 201
        command_id = (await response.json())["id"]

    async with api.post(
        f"/commands/{command_id}/progress", json={"progress": {"progress": 10}}
    ) as response:
        assert response.status == 200
        assert (await response.json())["state"] == "inProgress"

    async with api.post(
        f"/commands/{command_id}/complete", json={"results": {"foo": 42}}
    ) as response:
        body = await response.json()
        assert body["state"] == "done"
        assert body["results"] == {"foo": 42}

    async with api.post(f"/commands/{command_id}/cancel") as response:
        assert response.status == 409
        body = await response.json()
        assert body["error"]["code"] == "command_expired"

    async with api.get(f"/commands/{command_id}") as response:
        command = await response.json()
        assert command["parameters"] == {"height": 53, "_jumpType": "_withKick"}
        assert command["origin"] == "local"

    async with api.get("/commands") as response:
        listing = await response.json()
        assert [item["id"] for item in listing["commands"]] == [command_id]


@pytest.mark.asyncio
async def test_command_errors(api) -> None:
    async with api.post("/commands", data="{nope") as response:
        assert response.status == 400
        assert (await response.json())["error"]["code"] == "parse_error"

    async with api.post(
        "/commands", json={"name": "robot.jump", "parameters": {"height": -1}}
    ) as response:
        assert response.status == 400
        error = (await response.json())["error"]
        assert error["code"] == "invalid_value"
        assert error["field"] == "parameters.height"

    async with api.post("/commands", json={"name": "robot.fly"}) as response:
        assert response.status == 404

    async with api.get("/commands/77") as response:
        assert response.status == 404
        assert (await response.json())["error"]["code"] == "not_found"

    async with api.post("/commands/77/explode") as response:
        assert response.status == 404


@pytest.mark.asyncio
async def test_state_endpoints(api) -> None:
    async with api.patch(
        "/state", json={"robot.batteryLevel": 64, "robot.mode": "walking"}
    ) as response:
        assert response.status == 200
        changes = (await response.json())["changes"]
        assert [change["sequence"] for change in changes] == [0, 1]

    async with api.get("/state") as response:
        state = await response.json()
        assert state["robot"] == {"batteryLevel": 64, "mode": "walking"}

    async with api.get("/state/changes", params={"cursor": "1"}) as response:
        body = await response.json()
        assert [change["name"] for change in body["changes"]] == ["robot.mode"]
        assert body["cursor"] == 2


@pytest.mark.asyncio
async def test_state_errors(api) -> None:
    async with api.patch(
        "/state", json={"robot.batteryLevel": 10, "robot.mode": "flying"}
    ) as response:
        assert response.status == 400
        error = (await response.json())["error"]
        assert error["code"] == "batch_update_failed"
        assert error["errors"][0]["field"] == "robot.mode"

    async with api.get("/state/changes", params={"cursor": "abc"}) as response:
        assert response.status == 400

    for level in range(12):
        async with api.patch("/state", json={"robot.batteryLevel": level}):
            pass

    async with api.get("/state/changes", params={"cursor": "0"}) as response:
        assert response.status == 410
        assert (await response.json())["error"]["code"] == "state_gap"
