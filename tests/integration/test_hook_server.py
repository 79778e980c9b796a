"""Integration tests against a real uvicorn listener on a loopback port."""

import asyncio
import contextlib
import json
from unittest.mock import MagicMock

import pytest

from hook_relay.cli.forwarder import forward
from hook_relay.hook_server import (
    LOOPBACK_HOST,
    HookServerError,
    _EmbeddedServer,
    start_hook_server,
)
from hook_relay.main import HookRelayApp
from hook_relay.models import HookCallbacks

FAST_TIMEOUT_CONFIG = {"hook_server": {"session_start_timeout_seconds": 0.3}}


def _request_head(path: str, content_length: int) -> bytes:
    return (
        f"POST {path} HTTP/1.1\r\n"
        f"Host: {LOOPBACK_HOST}\r\n"
        "Content-Type: application/json\r\n"
        f"Content-Length: {content_length}\r\n"
        "\r\n"
    ).encode()


@pytest.mark.asyncio
async def test_two_servers_get_distinct_ports():
    first = await start_hook_server(HookCallbacks())
    second = await start_hook_server(HookCallbacks())
    try:
        assert first.port > 0
        assert second.port > 0
        assert first.port != second.port
    finally:
        await first.stop()
        await second.stop()


@pytest.mark.asyncio
async def test_forwarder_reaches_session_hook():
    on_session_hook = MagicMock(return_value=None)
    handle = await start_hook_server(HookCallbacks(on_session_hook=on_session_hook))
    try:
        payload = {"session_id": "e2e-session", "source": "startup"}
        await asyncio.to_thread(forward, handle.port, "session-start", json.dumps(payload).encode())

        on_session_hook.assert_called_once_with("e2e-session", payload)
    finally:
        await handle.stop()


@pytest.mark.asyncio
async def test_forwarder_reaches_thinking_hooks():
    on_start = MagicMock(return_value=None)
    on_stop = MagicMock(return_value=None)
    handle = await start_hook_server(HookCallbacks(on_thinking_start=on_start, on_thinking_stop=on_stop))
    try:
        await asyncio.to_thread(forward, handle.port, "user-prompt-submit", b"{}")
        await asyncio.to_thread(forward, handle.port, "stop", b"{}")

        on_start.assert_called_once_with()
        on_stop.assert_called_once_with()
    finally:
        await handle.stop()


@pytest.mark.asyncio
async def test_session_start_times_out_and_ignores_late_body():
    on_session_hook = MagicMock(return_value=None)
    handle = await start_hook_server(
        HookCallbacks(on_session_hook=on_session_hook),
        config=FAST_TIMEOUT_CONFIG,
    )
    try:
        body = b'{"session_id": "late"}'
        reader, writer = await asyncio.open_connection(LOOPBACK_HOST, handle.port)
        # Headers only: the body never arrives inside the window
        writer.write(_request_head("/hook/session-start", len(body)))
        await writer.drain()

        status_line = await asyncio.wait_for(reader.readline(), timeout=5)
        assert b" 408 " in status_line

        # Data arriving after the timeout must not trigger the callback
        with contextlib.suppress(ConnectionError):
            writer.write(body)
            await writer.drain()
        await asyncio.sleep(0.3)
        on_session_hook.assert_not_called()

        writer.close()
        with contextlib.suppress(ConnectionError):
            await writer.wait_closed()
    finally:
        await handle.stop()


@pytest.mark.asyncio
async def test_server_keeps_serving_after_timeout():
    on_session_hook = MagicMock(return_value=None)
    handle = await start_hook_server(
        HookCallbacks(on_session_hook=on_session_hook),
        config=FAST_TIMEOUT_CONFIG,
    )
    try:
        reader, writer = await asyncio.open_connection(LOOPBACK_HOST, handle.port)
        writer.write(_request_head("/hook/session-start", 100))
        await writer.drain()
        assert b" 408 " in await asyncio.wait_for(reader.readline(), timeout=5)
        writer.close()

        await asyncio.to_thread(forward, handle.port, "session-start", b'{"sessionId": "next"}')
        on_session_hook.assert_called_once_with("next", {"sessionId": "next"})
    finally:
        await handle.stop()


@pytest.mark.asyncio
async def test_stop_releases_port():
    handle = await start_hook_server(HookCallbacks())
    port = handle.port
    assert handle.running

    await handle.stop()

    assert not handle.running
    with pytest.raises(OSError):
        await asyncio.open_connection(LOOPBACK_HOST, port)


@pytest.mark.asyncio
async def test_stop_is_idempotent():
    handle = await start_hook_server(HookCallbacks())
    await handle.stop()
    await handle.stop()
    assert not handle.running


@pytest.mark.asyncio
async def test_bind_failure_rejects_start(monkeypatch):
    def fail_bind():
        raise OSError(24, "Too many open files")

    monkeypatch.setattr("hook_relay.hook_server._bind_loopback", fail_bind)

    with pytest.raises(OSError):
        await start_hook_server(HookCallbacks())


@pytest.mark.asyncio
async def test_relay_app_round_trip(tmp_path):
    app = HookRelayApp({}, settings_dir=str(tmp_path))
    await app.start()
    try:
        port = app.hook_server.port
        assert app.settings_path.exists()
        assert f" {port} session-start" in app.settings_path.read_text()

        await asyncio.to_thread(forward, port, "session-start", b'{"session_id": "abc"}')
        await asyncio.to_thread(forward, port, "user-prompt-submit", b"{}")

        assert app.session_id == "abc"
        assert app.thinking is True
    finally:
        settings_path = app.settings_path
        await app.stop()

    assert not settings_path.exists()
    assert app.hook_server is None


@pytest.mark.asyncio
async def test_forwarder_bypasses_proxy_environment(monkeypatch):
    # A proxy on a dead port would swallow the hook if it were honoured
    monkeypatch.setenv("HTTP_PROXY", "http://127.0.0.1:9")
    monkeypatch.setenv("http_proxy", "http://127.0.0.1:9")
    monkeypatch.delenv("NO_PROXY", raising=False)
    monkeypatch.delenv("no_proxy", raising=False)

    on_session_hook = MagicMock(return_value=None)
    handle = await start_hook_server(HookCallbacks(on_session_hook=on_session_hook))
    try:
        await asyncio.to_thread(forward, handle.port, "session-start", b'{"session_id": "abc"}')

        on_session_hook.assert_called_once_with("abc", {"session_id": "abc"})
    finally:
        await handle.stop()


@pytest.mark.asyncio
async def test_stop_lets_in_flight_request_finish():
    on_session_hook = MagicMock(return_value=None)
    handle = await start_hook_server(HookCallbacks(on_session_hook=on_session_hook))

    body = b'{"session_id": "in-flight"}'
    reader, writer = await asyncio.open_connection(LOOPBACK_HOST, handle.port)
    writer.write(_request_head("/hook/session-start", len(body)) + body[:5])
    await writer.drain()
    await asyncio.sleep(0.1)

    stop_task = asyncio.create_task(handle.stop())
    await asyncio.sleep(0.1)

    # Rest of the body arrives after stop() was requested
    writer.write(body[5:])
    await writer.drain()

    status_line = await asyncio.wait_for(reader.readline(), timeout=5)
    assert b" 200 " in status_line
    on_session_hook.assert_called_once_with("in-flight", {"session_id": "in-flight"})

    writer.close()
    await asyncio.wait_for(stop_task, timeout=5)
    assert not handle.running


@pytest.mark.asyncio
async def test_client_disconnect_mid_body_does_not_invoke_callback():
    on_session_hook = MagicMock(return_value=None)
    handle = await start_hook_server(HookCallbacks(on_session_hook=on_session_hook))
    try:
        reader, writer = await asyncio.open_connection(LOOPBACK_HOST, handle.port)
        writer.write(_request_head("/hook/session-start", 100) + b'{"session_id": "gone"')
        await writer.drain()
        writer.close()
        with contextlib.suppress(ConnectionError):
            await writer.wait_closed()
        await asyncio.sleep(0.2)

        on_session_hook.assert_not_called()

        # Listener is still healthy
        await asyncio.to_thread(forward, handle.port, "session-start", b'{"session_id": "ok"}')
        on_session_hook.assert_called_once_with("ok", {"session_id": "ok"})
    finally:
        await handle.stop()


@pytest.mark.asyncio
async def test_startup_failure_raises_hook_server_error(monkeypatch):
    async def failing_serve(self, sockets=None):
        raise RuntimeError("startup failed")

    monkeypatch.setattr(_EmbeddedServer, "serve", failing_serve)

    with pytest.raises(HookServerError) as exc_info:
        await start_hook_server(HookCallbacks())

    assert isinstance(exc_info.value.__cause__, RuntimeError)
