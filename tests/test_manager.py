from __future__ import annotations

import asyncio

import pytest

from mcp_stdio.errors import (
    ErrorKind,
    McpError,
    RequestTimeout,
    ServerNotConfigured,
    SpawnError,
    classify_error,
    format_error,
)
from mcp_stdio.config import ServerConfig
from mcp_stdio.types import ContentItem, ServerState


def test_echo_scenario(fake_config, make_manager) -> None:
    async def _run() -> None:
        async with make_manager({"echo": fake_config()}) as manager:
            tools = await manager.connect("echo")
            assert "echo" in [t.name for t in tools]

            result = await manager.call_tool("echo", "echo", {"text": "hi"})
            assert result.content == [ContentItem(type="text", text="hi")]
            assert result.is_error is False
            assert result.to_dict() == {"content": [{"type": "text", "text": "hi"}], "isError": False}

            assert manager.state("echo") is ServerState.CONNECTED
            assert manager.get_connected_servers() == ["echo"]
            assert manager.get_all_tools()["echo"] == tools
            assert manager.get_total_tool_count() == len(tools)

    asyncio.run(_run())


def test_noise_before_protocol_is_ignored(fake_config, make_manager) -> None:
    async def _run() -> str:
        async with make_manager({"noisy": fake_config("--banner")}) as manager:
            await manager.connect("noisy")
            return (await manager.call_tool("noisy", "echo", {"text": "still works"})).text

    assert asyncio.run(_run()) == "still works"


def test_missing_binary_is_not_found_and_still_listed(make_manager) -> None:
    async def _run() -> None:
        manager = make_manager({"ghost": ServerConfig(command="definitely-not-a-real-binary-4711")})
        async with manager:
            with pytest.raises(SpawnError) as info:
                await manager.connect("ghost")
            assert classify_error(info.value) is ErrorKind.NOT_FOUND
            assert manager.list_servers() == ["ghost"]
            assert manager.state("ghost") is ServerState.ABSENT
            assert manager.get_session("ghost") is None

    asyncio.run(_run())


def test_handshake_timeout_leaves_no_partial_instance(fake_config, make_manager) -> None:
    async def _run() -> None:
        manager = make_manager({"mute": fake_config("--ignore-init")}, handshake_timeout=0.3)
        async with manager:
            with pytest.raises(RequestTimeout) as info:
                await manager.connect("mute")
            assert "initialize" in str(info.value)
            assert manager.state("mute") is ServerState.ABSENT
            assert manager.get_connected_servers() == []
            assert manager.get_all_tools() == {}

    asyncio.run(_run())


def test_occupied_server_is_classified(fake_config, make_manager) -> None:
    async def _run() -> None:
        async with make_manager({"busy": fake_config("--occupied")}) as manager:
            with pytest.raises(McpError) as info:
                await manager.connect("busy")
            assert classify_error(info.value) is ErrorKind.OCCUPIED
            assert "occupied by another client" in format_error(info.value, "busy")
            assert manager.state("busy") is ServerState.ABSENT

    asyncio.run(_run())


def test_connect_with_no_tools(fake_config, make_manager) -> None:
    async def _run() -> None:
        async with make_manager({"empty": fake_config("--no-tools")}) as manager:
            assert await manager.connect("empty") == []
            assert manager.is_server_connected("empty")
            assert manager.get_total_tool_count() == 0

    asyncio.run(_run())


def test_unknown_server(make_manager) -> None:
    async def _run() -> None:
        async with make_manager({}) as manager:
            with pytest.raises(ServerNotConfigured):
                await manager.connect("nope")
            result = await manager.call_tool("nope", "echo")
            assert result.is_error
            assert 'Server "nope" not found in config' in result.text

    asyncio.run(_run())


def test_scrambled_responses_match_their_calls(fake_config, make_manager) -> None:
    async def _run() -> list[str]:
        async with make_manager({"echo": fake_config()}) as manager:
            await manager.connect("echo")
            delays = [0.4, 0.3, 0.2, 0.1, 0.0]
            results = await asyncio.gather(*(
                manager.call_tool("echo", "delayed_echo", {"text": f"call-{i}", "delay": d})
                for i, d in enumerate(delays)
            ))
            assert manager.get_session("echo").pending_count == 0
            return [r.text for r in results]

    assert asyncio.run(_run()) == [f"call-{i}" for i in range(5)]


def test_silent_tool_times_out_at_deadline(fake_config, make_manager) -> None:
    async def _run() -> None:
        loop = asyncio.get_running_loop()
        async with make_manager({"echo": fake_config()}) as manager:
            await manager.connect("echo")
            start = loop.time()
            result = await manager.call_tool("echo", "silent", timeout=0.3)
            elapsed = loop.time() - start

            assert elapsed >= 0.3 - 1e-3
            assert result.is_error
            assert classify_error(result.text) is ErrorKind.TIMEOUT
            assert manager.state("echo") is ServerState.DISCONNECTED
            assert "timed out" in manager.get_server_error("echo")

    asyncio.run(_run())


def test_remote_is_error_keeps_server_connected(fake_config, make_manager) -> None:
    async def _run() -> None:
        async with make_manager({"echo": fake_config()}) as manager:
            await manager.connect("echo")
            result = await manager.call_tool("echo", "fail")
            assert result.is_error
            assert result.text == "tool failed"
            assert manager.state("echo") is ServerState.CONNECTED

    asyncio.run(_run())


def test_rpc_error_marks_server_disconnected(fake_config, make_manager) -> None:
    async def _run() -> None:
        async with make_manager({"echo": fake_config()}) as manager:
            await manager.connect("echo")
            result = await manager.call_tool("echo", "rpc_error")
            assert result.is_error
            assert "remote exploded" in result.text
            assert manager.state("echo") is ServerState.DISCONNECTED
            assert manager.get_server_error("echo") == "remote exploded"
            assert manager.get_connected_servers() == []

    asyncio.run(_run())


def test_image_content_is_typed(fake_config, make_manager) -> None:
    async def _run() -> None:
        async with make_manager({"echo": fake_config()}) as manager:
            result = await manager.call_tool("echo", "image")
            assert result.content == [ContentItem(type="image", data="aGk=", mime_type="image/png")]
            assert result.text == ""

    asyncio.run(_run())


def test_call_on_never_connected_server_connects_once(
    fake_config, make_manager, counter_file, start_count
) -> None:
    async def _run() -> None:
        cfg = fake_config("--counter-file", str(counter_file))
        async with make_manager({"echo": cfg}) as manager:
            result = await manager.call_tool("echo", "echo", {"text": "lazy"})
            assert result.text == "lazy"
            assert manager.is_server_connected("echo")

    asyncio.run(_run())
    assert start_count() == 1


def test_reconnect_after_crash(fake_config, make_manager, counter_file, start_count) -> None:
    async def _run() -> None:
        cfg = fake_config("--counter-file", str(counter_file))
        async with make_manager({"echo": cfg}) as manager:
            await manager.connect("echo")
            crashed = await manager.call_tool("echo", "crash")
            assert crashed.is_error
            assert manager.state("echo") is ServerState.DISCONNECTED

            result = await manager.call_tool("echo", "echo", {"text": "back"})
            assert result.text == "back"
            assert manager.state("echo") is ServerState.CONNECTED

    asyncio.run(_run())
    assert start_count() == 2


def test_failed_reconnect_is_tried_exactly_once(
    fake_config, make_manager, counter_file, start_count
) -> None:
    async def _run() -> None:
        cfg = fake_config("--ignore-init", "--counter-file", str(counter_file))
        manager = make_manager({"mute": cfg}, handshake_timeout=0.2)
        async with manager:
            result = await manager.call_tool("mute", "echo", {"text": "x"})
            assert result.is_error
            assert result.text.startswith('Failed to reconnect to "mute"')
            assert classify_error(result.text) is ErrorKind.TIMEOUT
            assert manager.state("mute") is ServerState.ABSENT

    asyncio.run(_run())
    assert start_count() == 1


def test_concurrent_callers_share_one_reconnect(
    fake_config, make_manager, counter_file, start_count
) -> None:
    async def _run() -> list[str]:
        cfg = fake_config("--counter-file", str(counter_file))
        async with make_manager({"echo": cfg}) as manager:
            results = await asyncio.gather(*(
                manager.call_tool("echo", "echo", {"text": str(i)}) for i in range(3)
            ))
            return [r.text for r in results]

    assert asyncio.run(_run()) == ["0", "1", "2"]
    assert start_count() == 1


def test_disconnect_all_settles_pending_requests(fake_config, make_manager) -> None:
    async def _run() -> None:
        loop = asyncio.get_running_loop()
        manager = make_manager({"a": fake_config(), "b": fake_config()})
        await manager.connect("a")
        await manager.connect("b")
        session = manager.get_session("a")
        transports = [manager.get_session(n).transport for n in ("a", "b")]

        start = loop.time()
        call = asyncio.create_task(manager.call_tool("a", "silent", timeout=30))
        while session.pending_count == 0:
            await asyncio.sleep(0.01)

        await manager.disconnect_all()
        assert session.pending_count == 0

        result = await call
        assert result.is_error
        assert "Disconnected" in result.text
        assert loop.time() - start < 10
        assert all(not t.is_alive() for t in transports)
        assert manager.get_connected_servers() == []
        assert manager.state("a") is ServerState.ABSENT

    asyncio.run(_run())


def test_disconnect_one_server(fake_config, make_manager) -> None:
    async def _run() -> None:
        async with make_manager({"a": fake_config(), "b": fake_config()}) as manager:
            await manager.connect("a")
            await manager.connect("b")
            await manager.disconnect("a")
            assert manager.get_connected_servers() == ["b"]
            await manager.disconnect("a")

    asyncio.run(_run())


def test_context_exit_stops_processes_on_error(fake_config, make_manager) -> None:
    transports = []

    async def _run() -> None:
        async with make_manager({"echo": fake_config()}) as manager:
            await manager.connect("echo")
            transports.append(manager.get_session("echo").transport)
            raise RuntimeError("caller blew up")

    with pytest.raises(RuntimeError):
        asyncio.run(_run())
    assert transports[0].returncode is not None


def test_server_status(fake_config, make_manager) -> None:
    async def _run() -> None:
        servers = {
            "good": fake_config(),
            "ghost": ServerConfig(command="definitely-not-a-real-binary-4711"),
        }
        async with make_manager(servers) as manager:
            await manager.connect("good")
            with pytest.raises(SpawnError):
                await manager.connect("ghost")

            statuses = {s.name: s for s in manager.server_status()}
            assert statuses["good"].connected
            assert statuses["good"].tools
            assert statuses["ghost"].state is ServerState.ABSENT
            assert statuses["ghost"].tools == []

    asyncio.run(_run())


def test_disconnect_all_during_reconnect_returns_error_result(fake_config, make_manager) -> None:
    async def _run() -> None:
        manager = make_manager({"mute": fake_config("--ignore-init")}, handshake_timeout=5)
        call = asyncio.create_task(manager.call_tool("mute", "echo", {"text": "x"}))
        while manager.state("mute") is not ServerState.CONNECTING:
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.3)

        await manager.disconnect_all()
        result = await call

        assert result.is_error
        assert result.text.startswith('Failed to reconnect to "mute"')
        assert "cancelled" in result.text
        assert manager.state("mute") is ServerState.ABSENT

    asyncio.run(_run())


def test_cancelling_the_caller_still_propagates(fake_config, make_manager) -> None:
    async def _run() -> None:
        async with make_manager({"mute": fake_config("--ignore-init")}, handshake_timeout=5) as manager:
            call = asyncio.create_task(manager.call_tool("mute", "echo"))
            await asyncio.sleep(0.3)
            call.cancel()
            with pytest.raises(asyncio.CancelledError):
                await call

    asyncio.run(_run())
