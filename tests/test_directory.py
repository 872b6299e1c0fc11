import asyncio

import pytest
import requests

from privchat import directory as directory_module
from privchat.directory import start_directory


@pytest.fixture()
async def directory(coordinator):
    httpd = start_directory("127.0.0.1", 0, coordinator, asyncio.get_running_loop())
    yield f"http://127.0.0.1:{httpd.server_address[1]}"
    await asyncio.to_thread(httpd.shutdown)
    httpd.server_close()


async def _post(url, **kwargs):
    return await asyncio.to_thread(requests.post, url, timeout=5, **kwargs)


async def _get(url):
    return await asyncio.to_thread(requests.get, url, timeout=5)


async def test_register_returns_user_id(directory, coordinator):
    resp = await _post(f"{directory}/api/register", json={"username": "  alice "})
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["username"] == "alice"
    assert body["userId"].startswith("user_")
    assert coordinator.user(body["userId"]).username == "alice"


async def test_register_rejections(directory):
    await _post(f"{directory}/api/register", json={"username": "alice"})
    taken = await _post(f"{directory}/api/register", json={"username": "ALICE"})
    assert taken.status_code == 409
    assert taken.json() == {"success": False, "code": "NAME_TAKEN", "message": "Username already taken"}

    short = await _post(f"{directory}/api/register", json={"username": "a"})
    assert short.status_code == 400
    assert short.json()["code"] == "INVALID_NAME"

    missing = await _post(f"{directory}/api/register", json={})
    assert missing.json()["code"] == "INVALID_NAME"

    garbage = await _post(f"{directory}/api/register", data=b"{not json")
    assert garbage.status_code == 400
    assert garbage.json()["code"] == "BAD_REQUEST"


async def test_users_and_health(directory, coordinator):
    alice = (await coordinator.register("alice"))["userId"]
    await coordinator.register("bob")

    async def send(raw):
        pass

    coordinator.connect("ch", send)
    await coordinator.handle_event("ch", "login", {"userId": alice})

    users = (await _get(f"{directory}/api/users")).json()
    assert users["success"] is True
    assert [(u["username"], u["online"]) for u in users["users"]] == [("alice", True), ("bob", False)]

    health = (await _get(f"{directory}/")).json()
    assert health["status"] == "Chat Server Running"
    assert health["onlineUsers"] == 1
    assert health["registeredUsers"] == 2
    assert health["totalMessages"] == 0


async def test_unknown_route(directory):
    assert (await _get(f"{directory}/nope")).status_code == 404
    assert (await _post(f"{directory}/nope", json={})).status_code == 404


async def test_register_timeout_is_cancelled_and_name_stays_free(directory, coordinator, monkeypatch):
    monkeypatch.setattr(directory_module, "LOOP_CALL_TIMEOUT", 0.2)
    async with coordinator.lock:
        busy = await _post(f"{directory}/api/register", json={"username": "alice"})
    assert busy.status_code == 503
    assert busy.json()["code"] == "SERVER_BUSY"

    await asyncio.sleep(0.05)
    assert coordinator.list_users() == []
    retry = await _post(f"{directory}/api/register", json={"username": "alice"})
    assert retry.status_code == 200
    assert [u["username"] for u in coordinator.list_users()] == ["alice"]
