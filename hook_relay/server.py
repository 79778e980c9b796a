"""FastAPI app receiving Claude session hooks from the forwarder."""

import asyncio
import json
import logging
import time
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from .models import HookCallbacks, HookEvent, HookKind

logger = logging.getLogger(__name__)

DEFAULT_MAX_BODY_BYTES = 1024 * 1024


class HookServerSettings(BaseModel):
    """The `hook_server` section of config.yaml."""
    session_start_timeout_seconds: float = Field(default=5.0, gt=0)
    max_body_bytes: int = Field(default=DEFAULT_MAX_BODY_BYTES, gt=0)
    hook_timing_threshold_seconds: float = Field(default=0.05, ge=0)
    log_level: str = "warning"  # uvicorn log level

    @classmethod
    def from_config(cls, config: Optional[dict]) -> "HookServerSettings":
        return cls(**((config or {}).get("hook_server") or {}))


class PayloadTooLargeError(Exception):
    """Request body exceeded max_body_bytes."""

    def __init__(self, limit: int):
        super().__init__(f"request body exceeds {limit} bytes")
        self.limit = limit


def _text(body: str, status_code: int = 200) -> PlainTextResponse:
    return PlainTextResponse(body, status_code=status_code)


async def _drain(request: Request) -> None:
    """Consume and discard the request body."""
    async for _chunk in request.stream():
        pass


async def _read_body(request: Request, limit: int) -> bytes:
    """Read the full request body, refusing anything larger than limit."""
    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit() and int(content_length) > limit:
        raise PayloadTooLargeError(limit)

    chunks = []
    size = 0
    async for chunk in request.stream():
        size += len(chunk)
        if size > limit:
            raise PayloadTooLargeError(limit)
        chunks.append(chunk)
    return b"".join(chunks)


def parse_hook_payload(body: bytes) -> Dict[str, Any]:
    """
    Decode a hook body as a JSON object.

    Malformed JSON, invalid UTF-8 and non-object values all yield an empty
    dict: the sender is trusted, its payload quality is not.
    """
    try:
        data = json.loads(body)
    except ValueError as e:
        logger.debug(f"Failed to parse hook data as JSON: {e}")
        return {}

    if not isinstance(data, dict):
        logger.debug(f"Hook data is not a JSON object: {type(data).__name__}")
        return {}
    return data


def create_app(
    callbacks: Optional[HookCallbacks] = None,
    config: Optional[dict] = None,
) -> FastAPI:
    """
    Create the hook receiving app.

    Args:
        callbacks: Handlers to invoke for each hook kind
        config: Full config dict; only the `hook_server` section is read

    Returns:
        FastAPI app with the three /hook routes
    """
    app = FastAPI(
        title="Hook Relay",
        description="Receives Claude session hooks over loopback HTTP",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        redirect_slashes=False,
    )

    settings = HookServerSettings.from_config(config)
    app.state.callbacks = callbacks or HookCallbacks()
    app.state.settings = settings

    def log_timing(kind: HookKind, start: float) -> None:
        elapsed = time.monotonic() - start
        if elapsed > settings.hook_timing_threshold_seconds:
            logger.debug(f"hook {kind.value}: took {elapsed*1000:.1f}ms")

    async def handle_thinking_hook(request: Request, kind: HookKind) -> PlainTextResponse:
        start = time.monotonic()
        try:
            await _drain(request)
            logger.debug(f"Received {kind.value} hook")
            await app.state.callbacks.dispatch(HookEvent(kind=kind))
        except Exception:
            logger.exception(f"Error handling {kind.value} hook")
            return _text("error", 500)
        finally:
            log_timing(kind, start)
        return _text("ok")

    @app.exception_handler(StarletteHTTPException)
    async def not_found_handler(request: Request, exc: StarletteHTTPException):
        # Unknown paths and wrong methods on known paths both read as "not found"
        if exc.status_code in (404, 405):
            return _text("not found", 404)
        return _text(str(exc.detail), exc.status_code)

    @app.post(HookKind.USER_PROMPT_SUBMIT.path)
    async def user_prompt_submit_hook(request: Request):
        """Claude started thinking."""
        return await handle_thinking_hook(request, HookKind.USER_PROMPT_SUBMIT)

    @app.post(HookKind.STOP.path)
    async def stop_hook(request: Request):
        """Claude stopped thinking."""
        return await handle_thinking_hook(request, HookKind.STOP)

    @app.post(HookKind.SESSION_START.path)
    async def session_start_hook(request: Request):
        """
        Claude assigned (or changed) the session id.

        The body must arrive within session_start_timeout_seconds; a hook
        runner that never closes its end of the connection gets a 408 and
        no callback fires, even if the body turns up later.
        """
        start = time.monotonic()
        try:
            body = await asyncio.wait_for(
                _read_body(request, settings.max_body_bytes),
                timeout=settings.session_start_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.debug("Session hook request timeout")
            return _text("timeout", 408)
        except PayloadTooLargeError as e:
            logger.warning(f"Session hook rejected: {e}")
            return _text("payload too large", 413)
        except Exception:
            logger.exception("Error reading session hook body")
            return _text("error", 500)

        logger.debug(f"Received session hook: {body[:500]!r}")
        event = HookEvent.session_start(parse_hook_payload(body))

        if event.session_id is None:
            logger.debug("Session hook received but no session_id found in data")
            log_timing(HookKind.SESSION_START, start)
            return _text("ok")

        logger.debug(f"Session hook received session ID: {event.session_id}")
        try:
            await app.state.callbacks.dispatch(event)
        except Exception:
            logger.exception("Error handling session hook")
            return _text("error", 500)
        finally:
            log_timing(HookKind.SESSION_START, start)
        return _text("ok")

    return app
