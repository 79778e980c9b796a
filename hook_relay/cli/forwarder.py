"""
Hook forwarder, run by Claude's hooks (SessionStart, UserPromptSubmit, Stop).

Reads the hook's JSON payload from stdin and relays it to the parent's hook
server:

    echo '{"session_id": "..."}' | hook-relay-forward <port> [event-type]

event-type defaults to "session-start" for older settings files that only
pass the port. Network failures are ignored so a missing parent never
breaks Claude's own hook processing.
"""

import contextlib
import http.client
import logging
import sys
import urllib.error
import urllib.parse
import urllib.request
from typing import BinaryIO, List, Optional

from ..models import HookKind

logger = logging.getLogger(__name__)

LOOPBACK_HOST = "127.0.0.1"
DEFAULT_EVENT_TYPE = HookKind.SESSION_START.value
FORWARD_TIMEOUT = 10  # seconds; longer than the server's session-start window

# Hooks only ever go to loopback; ignore http_proxy and friends from the environment
_LOOPBACK_OPENER = urllib.request.build_opener(urllib.request.ProxyHandler({}))

EXIT_OK = 0
EXIT_INVALID_PORT = 1


def parse_port(value: Optional[str]) -> Optional[int]:
    """Return the port number, or None if value is not a usable TCP port."""
    if not value:
        return None
    try:
        port = int(value, 10)
    except ValueError:
        return None
    if not 0 < port <= 65535:
        return None
    return port


def forward(port: int, event_type: str, body: bytes, timeout: float = FORWARD_TIMEOUT) -> None:
    """
    POST body to the hook server, once.

    The response is read only to release the connection; its status is not
    checked and every transport error is swallowed.
    """
    url = f"http://{LOOPBACK_HOST}:{port}/hook/{urllib.parse.quote(event_type, safe='')}"
    headers = {
        "Content-Type": "application/json",
        "Content-Length": str(len(body)),
    }
    req = urllib.request.Request(url, data=body, headers=headers, method="POST")

    try:
        with _LOOPBACK_OPENER.open(req, timeout=timeout) as response:
            response.read()
    except urllib.error.HTTPError as e:
        # Server answered with a non-2xx status; drain and move on
        logger.debug(f"Hook server returned {e.code} for {event_type}")
        with contextlib.suppress(OSError, http.client.HTTPException):
            e.read()
    except (urllib.error.URLError, http.client.HTTPException, OSError, ValueError) as e:
        logger.debug(f"Could not reach hook server on port {port}: {e}")


def main(argv: Optional[List[str]] = None, stdin: Optional[BinaryIO] = None) -> int:
    """Entry point for hook-relay-forward."""
    args = sys.argv[1:] if argv is None else argv

    # Validate before touching stdin or the network
    port = parse_port(args[0] if args else None)
    if port is None:
        return EXIT_INVALID_PORT
    event_type = args[1] if len(args) > 1 and args[1] else DEFAULT_EVENT_TYPE

    stream = stdin if stdin is not None else sys.stdin.buffer
    body = stream.read()

    forward(port, event_type, body)
    return EXIT_OK


def run():
    """Console script wrapper."""
    sys.exit(main())


if __name__ == "__main__":
    run()
