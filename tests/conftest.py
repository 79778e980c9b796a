"""Shared pytest fixtures for hook relay tests."""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from hook_relay.models import HookCallbacks
from hook_relay.server import create_app


@pytest.fixture
def on_session_hook() -> MagicMock:
    return MagicMock(return_value=None)


@pytest.fixture
def on_thinking_start() -> MagicMock:
    return MagicMock(return_value=None)


@pytest.fixture
def on_thinking_stop() -> MagicMock:
    return MagicMock(return_value=None)


@pytest.fixture
def callbacks(on_session_hook, on_thinking_start, on_thinking_stop) -> HookCallbacks:
    """
    HookCallbacks with every slot bound to a recording mock.

    Returns:
        HookCallbacks whose handlers can be asserted on
    """
    return HookCallbacks(
        on_session_hook=on_session_hook,
        on_thinking_start=on_thinking_start,
        on_thinking_stop=on_thinking_stop,
    )


@pytest.fixture
def test_client(callbacks: HookCallbacks) -> TestClient:
    """
    Create a FastAPI TestClient for the hook routes.

    Args:
        callbacks: Recording callbacks fixture

    Returns:
        TestClient configured with the hook app
    """
    app = create_app(callbacks=callbacks, config={})
    return TestClient(app)
