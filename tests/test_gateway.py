import asyncio
import json
import stat

import pytest

from tabrelay.errors import RelayError
from tabrelay.host.focus_loop import FocusLoop
from tabrelay.host.gateway import CommandGateway

TOKEN = "s3cret-token"


class FakeChannel:
    """Records forwarded commands instead of crossing a real stream."""

    def __init__(self):
        self.connected = True
        self.requests = []

    async def request(self, command, params=None):
        self.requests.append((command, params))
        if command == "click":
            raise RelayError("Element not found: #missing")
        return {"command": command, "params": params}


@pytest.fixture
def channel():
    return FakeChannel()


@pytest.fixture
def gateway(channel, short_tmp):
    return CommandGateway(TOKEN, FocusLoop(), channel=channel, socket_path=short_tmp / "gw.sock", max_buffer_size=4096)


def command(name, params=None, token=TOKEN):
    message = {"command": name, "params": params or {}}
    if token is not None:
        message["authToken"] = token
    return message


class TestHandleCommand:
    async def test_wrong_token_rejected_before_forwarding(self, gateway, channel):
        response = await gateway.handle_command(command("getTabs", token="wrong"))
        assert response.to_wire() == {"success": False, "error": "Invalid or missing auth token"}
        assert channel.requests == []

    async def test_missing_token_rejected(self, gateway, channel):
        response = await gateway.handle_command(command("ping", token=None))
        assert response.error == "Invalid or missing auth token"
        assert channel.requests == []

    async def test_command_not_on_allow_list(self, gateway, channel):
        response = await gateway.handle_command(command("deleteEverything"))
        assert response.error == "Command not allowed: deleteEverything"
        assert channel.requests == []

    async def test_malformed_command(self, gateway):
        response = await gateway.handle_command({"authToken": TOKEN, "params": {}})
        assert response.success is False
        assert response.error == "Invalid command format"

    async def test_null_params_treated_as_empty(self, gateway, channel):
        response = await gateway.handle_command({"command": "getTabs", "params": None, "authToken": TOKEN})
        assert response.success is True
        assert channel.requests == [("getTabs", {})]

    async def test_forwarded_command(self, gateway, channel):
        response = await gateway.handle_command(command("getContent", {"selector": "h1"}))
        assert response.success is True
        assert channel.requests == [("getContent", {"selector": "h1"})]

    async def test_remote_failure_becomes_error_response(self, gateway):
        response = await gateway.handle_command(command("click", {"selector": "#missing"}))
        assert response.to_wire() == {"success": False, "error": "Element not found: #missing"}

    async def test_loop_commands_stay_local(self, gateway, channel):
        response = await gateway.handle_command(command("startLoop", {"prompt": "fix it", "maxIterations": 5}))
        assert response.success is True
        assert response.result["active"] is True
        state = await gateway.handle_command(command("getLoopState"))
        assert state.result["maxIterations"] == 5
        assert channel.requests == []

    async def test_loop_validation_error(self, gateway):
        response = await gateway.handle_command(command("startLoop", {"prompt": "x", "maxIterations": 10001}))
        assert response.success is False

    async def test_no_channel(self, short_tmp):
        gateway = CommandGateway(TOKEN, FocusLoop(), channel=None, socket_path=short_tmp / "gw.sock")
        response = await gateway.handle_command(command("ping"))
        assert response.success is False
        assert "not connected" in response.error


@pytest.fixture
async def server(gateway):
    await gateway.start()
    yield gateway
    await gateway.close()


async def roundtrip(path, payload: bytes, responses: int = 1):
    reader, writer = await asyncio.open_unix_connection(str(path))
    writer.write(payload)
    await writer.drain()
    lines = [json.loads(await asyncio.wait_for(reader.readline(), 2)) for _ in range(responses)]
    writer.close()
    await writer.wait_closed()
    return lines


def line(message) -> bytes:
    return (json.dumps(message) + "\n").encode()


class TestSocket:
    async def test_socket_is_user_only(self, server):
        mode = stat.S_IMODE(server.socket_path.stat().st_mode)
        assert mode == 0o600

    async def test_stale_socket_replaced(self, gateway):
        gateway.socket_path.write_text("stale")
        await gateway.start()
        try:
            assert stat.S_ISSOCK(gateway.socket_path.stat().st_mode)
        finally:
            await gateway.close()
        assert not gateway.socket_path.exists()

    async def test_multiple_commands_on_one_connection(self, server):
        payload = line(command("getTabs")) + line(command("getLoopState"))
        responses = await roundtrip(server.socket_path, payload, responses=2)
        assert all(r["success"] for r in responses)

    async def test_bad_line_does_not_drop_connection(self, server):
        payload = b"{oops\n" + line(command("getTabs"))
        responses = await roundtrip(server.socket_path, payload, responses=2)
        errors = [r for r in responses if not r["success"]]
        assert errors == [{"success": False, "error": "Invalid JSON"}]

    async def test_command_split_across_writes(self, server):
        reader, writer = await asyncio.open_unix_connection(str(server.socket_path))
        data = line(command("getTabs"))
        writer.write(data[:10])
        await writer.drain()
        await asyncio.sleep(0.01)
        writer.write(data[10:])
        await writer.drain()
        response = json.loads(await asyncio.wait_for(reader.readline(), 2))
        assert response["success"] is True
        writer.close()
        await writer.wait_closed()

    async def test_oversized_message_closes_connection(self, server):
        reader, writer = await asyncio.open_unix_connection(str(server.socket_path))
        writer.write(b"x" * 8192)
        await writer.drain()
        response = json.loads(await asyncio.wait_for(reader.readline(), 2))
        assert response == {"success": False, "error": "Message too large"}
        try:
            rest = await asyncio.wait_for(reader.read(), 2)
        except ConnectionResetError:
            rest = b""
        assert rest == b""
        writer.close()
