"""Main entry point - runs a hook server and tracks the child session it reports."""

import argparse
import asyncio
import logging
import signal
from datetime import datetime
from pathlib import Path
from typing import Optional

import yaml

from .hook_server import HookServerHandle, start_hook_server
from .hook_settings import DEFAULT_SETTINGS_DIR, remove_hook_settings, write_hook_settings
from .models import HookCallbacks, SessionHookData

logger = logging.getLogger(__name__)


def load_config(config_path: str = "config.yaml") -> dict:
    """Load configuration from YAML file."""
    path = Path(config_path)

    if not path.exists():
        logger.warning(f"Config file not found: {config_path}, using defaults")
        return {}

    with open(path) as f:
        return yaml.safe_load(f) or {}


class HookRelayApp:
    """Parent-side orchestrator: owns the hook server and the session state it feeds."""

    def __init__(self, config: dict, settings_dir: Optional[str] = None):
        self.config = config
        self.settings_dir = settings_dir or config.get("paths", {}).get("settings_dir", DEFAULT_SETTINGS_DIR)
        self.forwarder_command = config.get("forwarder", {}).get("command")

        # Session state, updated only from hook callbacks
        self.session_id: Optional[str] = None
        self.session_data: Optional[SessionHookData] = None
        self.thinking = False
        self.last_activity: Optional[datetime] = None

        self.hook_server: Optional[HookServerHandle] = None
        self.settings_path: Optional[Path] = None
        self._shutdown_event = asyncio.Event()

    def _on_session_hook(self, session_id: str, data: SessionHookData):
        """Claude reported its session id (new, resumed, compacted or forked)."""
        if session_id != self.session_id:
            source = data.get("source", "unknown")
            logger.info(f"Session changed: {self.session_id} -> {session_id} (source: {source})")
        self.session_id = session_id
        self.session_data = data
        self.last_activity = datetime.now()

    def _on_thinking_start(self):
        self.thinking = True
        self.last_activity = datetime.now()
        logger.info(f"Session {self.session_id} thinking")

    def _on_thinking_stop(self):
        self.thinking = False
        self.last_activity = datetime.now()
        logger.info(f"Session {self.session_id} idle")

    def callbacks(self) -> HookCallbacks:
        return HookCallbacks(
            on_session_hook=self._on_session_hook,
            on_thinking_start=self._on_thinking_start,
            on_thinking_stop=self._on_thinking_stop,
        )

    async def start(self):
        """Start the hook server and publish its port via the settings file."""
        logger.info("Starting hook relay...")

        self.hook_server = await start_hook_server(self.callbacks(), config=self.config)
        self.settings_path = write_hook_settings(
            self.hook_server.port,
            settings_dir=self.settings_dir,
            forwarder_command=self.forwarder_command,
        )

        print(f"Hook server listening on 127.0.0.1:{self.hook_server.port}")
        print(f"Run: claude --settings {self.settings_path}")

    async def wait(self):
        await self._shutdown_event.wait()

    def request_shutdown(self):
        self._shutdown_event.set()

    async def stop(self):
        """Stop the hook server and remove the settings file."""
        logger.info("Stopping hook relay...")

        if self.hook_server:
            await self.hook_server.stop()
            self.hook_server = None

        if self.settings_path:
            remove_hook_settings(self.settings_path)
            self.settings_path = None

        logger.info("Shutdown complete")


def setup_signal_handlers(app: HookRelayApp):
    """Set up signal handlers for graceful shutdown."""
    loop = asyncio.get_running_loop()

    def signal_handler(sig, frame):
        logger.info(f"Received signal {sig}, shutting down...")
        loop.call_soon_threadsafe(app.request_shutdown)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="hook-relay",
        description="Receive Claude session hooks on a loopback port",
    )
    parser.add_argument("--config", default="config.yaml", help="Config file (default: config.yaml)")
    parser.add_argument("--settings-dir", help=f"Where to write the hook settings file (default: {DEFAULT_SETTINGS_DIR})")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


async def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)

    # Setup logging
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    # Load config
    config = load_config(args.config)

    app = HookRelayApp(config, settings_dir=args.settings_dir)
    setup_signal_handlers(app)

    await app.start()
    try:
        await app.wait()
    finally:
        await app.stop()


def run():
    """Entry point for console script."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
