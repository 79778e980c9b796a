"""
Dedicated loopback HTTP listener for Claude session hooks.

Control flow:

    parent                                   child (claude --settings ...)
      start_hook_server() -> port 52290
      write_hook_settings(52290)  ------->   reads hooks from settings file
                                             SessionStart fires
                                               hook-relay-forward 52290 session-start
      POST /hook/session-start  <---------      (stdin relayed verbatim)
      on_session_hook(session_id, data)

The port is OS-assigned, so several parents can run side by side and each
child reports only to the parent that spawned it.
"""

import asyncio
import contextlib
import logging
import socket
from typing import Optional

import uvicorn

from .models import HookCallbacks
from .server import HookServerSettings, create_app

logger = logging.getLogger(__name__)

LOOPBACK_HOST = "127.0.0.1"
STARTUP_POLL_INTERVAL = 0.01


class HookServerError(Exception):
    """The hook server could not be started."""


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the owning process."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


class HookServerHandle:
    """A running hook listener: its bound port and the means to stop it."""

    def __init__(self, port: int, server: uvicorn.Server, task: asyncio.Task):
        self._port = port
        self._server = server
        self._task = task

    @property
    def port(self) -> int:
        return self._port

    @property
    def running(self) -> bool:
        return not self._task.done()

    async def stop(self) -> None:
        """
        Close the listening socket.

        In-flight requests are left to finish or time out on their own;
        calling stop() again is a no-op.
        """
        if self._task.done():
            return
        self._server.should_exit = True
        try:
            await self._task
        except Exception as e:
            logger.error(f"Hook server on port {self._port} exited with error: {e}")
        logger.debug(f"Hook server stopped (port {self._port})")


def _bind_loopback() -> socket.socket:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.bind((LOOPBACK_HOST, 0))
    except OSError:
        sock.close()
        raise
    return sock


async def start_hook_server(
    callbacks: HookCallbacks,
    config: Optional[dict] = None,
) -> HookServerHandle:
    """
    Start a hook server on an OS-assigned loopback port.

    Args:
        callbacks: Handlers invoked for incoming hooks
        config: Full config dict; the `hook_server` section is used

    Returns:
        Handle with the bound port, once the listener is accepting

    Raises:
        OSError: The loopback socket could not be bound
        HookServerError: uvicorn exited before it finished starting
    """
    settings = HookServerSettings.from_config(config)
    app = create_app(callbacks=callbacks, config=config)

    sock = _bind_loopback()
    port = sock.getsockname()[1]

    server = _EmbeddedServer(uvicorn.Config(
        app,
        host=LOOPBACK_HOST,
        port=port,
        log_level=settings.log_level,
        access_log=False,
        lifespan="off",
    ))
    task = asyncio.create_task(server.serve(sockets=[sock]))

    while not server.started:
        if task.done():
            sock.close()
            error = None if task.cancelled() else task.exception()
            raise HookServerError(f"Hook server failed to start on port {port}") from error
        await asyncio.sleep(STARTUP_POLL_INTERVAL)

    logger.info(f"Hook server started on port {port}")
    return HookServerHandle(port=port, server=server, task=task)
