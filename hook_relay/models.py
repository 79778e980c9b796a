"""Data models for the session hook pipeline."""

import inspect
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, TypedDict, Union

# Accepted spellings of the session identifier, in precedence order
SESSION_ID_KEYS = ("session_id", "sessionId")

HOOK_PATH_PREFIX = "/hook/"


class HookKind(Enum):
    """Lifecycle events the child session reports."""
    SESSION_START = "session-start"            # Session id assigned (new, resume, compact, fork)
    USER_PROMPT_SUBMIT = "user-prompt-submit"  # Claude starts thinking
    STOP = "stop"                              # Claude stops thinking

    @property
    def path(self) -> str:
        return f"{HOOK_PATH_PREFIX}{self.value}"

    @property
    def claude_event(self) -> str:
        """Hook event name used in Claude settings files."""
        return _CLAUDE_EVENT_NAMES[self]


_CLAUDE_EVENT_NAMES = {
    HookKind.SESSION_START: "SessionStart",
    HookKind.USER_PROMPT_SUBMIT: "UserPromptSubmit",
    HookKind.STOP: "Stop",
}


class SessionHookData(TypedDict, total=False):
    """Payload from Claude's SessionStart hook.

    Only the commonly seen keys are listed; unknown keys are kept as-is.
    """
    session_id: str
    sessionId: str
    transcript_path: str
    cwd: str
    hook_event_name: str
    source: str  # "startup", "resume", "clear", "compact"


def extract_session_id(payload: Dict[str, Any]) -> Optional[str]:
    """
    Return the session id from a hook payload.

    Checks SESSION_ID_KEYS in order and returns the first non-empty string,
    so snake_case wins when both spellings are present.
    """
    for key in SESSION_ID_KEYS:
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    return None


@dataclass
class HookEvent:
    """A single hook notification, built per request and never stored."""
    kind: HookKind
    payload: Dict[str, Any] = field(default_factory=dict)
    session_id: Optional[str] = None

    @classmethod
    def session_start(cls, payload: Dict[str, Any]) -> "HookEvent":
        return cls(
            kind=HookKind.SESSION_START,
            payload=payload,
            session_id=extract_session_id(payload),
        )


SessionHookHandler = Callable[[str, SessionHookData], Union[None, Awaitable[None]]]
ThinkingHandler = Callable[[], Union[None, Awaitable[None]]]


@dataclass(frozen=True)
class HookCallbacks:
    """
    Handlers the parent registers with the hook server.

    Every slot is optional; an unbound slot means the event is acknowledged
    but nothing is called. Handlers may be plain functions or coroutine
    functions and run inline in the request path, so they must not block.
    """
    on_session_hook: Optional[SessionHookHandler] = None
    on_thinking_start: Optional[ThinkingHandler] = None
    on_thinking_stop: Optional[ThinkingHandler] = None

    async def dispatch(self, event: HookEvent) -> bool:
        """
        Invoke the handler bound for this event's kind.

        Returns:
            True if a handler was called, False if the slot is unbound or a
            session-start event carries no session id.
        """
        if event.kind is HookKind.SESSION_START:
            if self.on_session_hook is None or event.session_id is None:
                return False
            await _call(self.on_session_hook, event.session_id, event.payload)
            return True

        if event.kind is HookKind.USER_PROMPT_SUBMIT:
            handler = self.on_thinking_start
        else:
            handler = self.on_thinking_stop

        if handler is None:
            return False
        await _call(handler)
        return True


async def _call(handler: Callable[..., Any], *args: Any) -> None:
    result = handler(*args)
    if inspect.isawaitable(result):
        await result
