"""Relay analysis requests from the ShogiStack server to a local USI engine."""

import argparse
import asyncio
import logging
import os
import sys

from connector_config import (
    CONFIG_FILENAME,
    ConfigError,
    Settings,
    load_settings,
    run_setup_wizard,
)
from remote_link import ConnectionConfig, RemoteLink
from usi_engine import EngineConfig, EngineError, UsiEngine

logger = logging.getLogger("connector")

BANNER = "ShogiStack Connector (v1.0)"


class Connector:
    """Wires the remote link to the engine supervisor."""

    def __init__(self, engine_config: EngineConfig, connection_config: ConnectionConfig):
        self.link = RemoteLink(
            connection_config,
            on_connect=self.start_engine,
            on_request_analysis=self.request_analysis,
            on_stop_analysis=self.stop_analysis,
        )
        self.engine = UsiEngine(engine_config, on_info=self.link.send_update)

    async def start_engine(self) -> None:
        """(Re)start the engine. Failures are logged, never raised."""
        try:
            await self.engine.start()
        except EngineError as e:
            logger.error("%s", e)

    def request_analysis(self, sfen: str) -> None:
        self.engine.request_analysis(sfen)

    def stop_analysis(self) -> None:
        self.engine.stop_analysis()

    async def run(self) -> None:
        try:
            await self.link.run()
        finally:
            self.engine.stop()
            await self.link.close()


def resolve_settings(path: str) -> Settings:
    """Load settings, running first-run setup if the file is missing."""
    if os.path.exists(path):
        return load_settings(path)
    return run_setup_wizard(path)


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description=BANNER)
    parser.add_argument(
        "--config", default=CONFIG_FILENAME,
        help=f"Path to the settings file (default: ./{CONFIG_FILENAME})",
    )
    parser.add_argument(
        "--server", default=None,
        help="Server URL for this run (overrides serverUrl in the settings)",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Log every USI line exchanged with the engine",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(name)s] %(message)s",
        stream=sys.stderr,
    )
    logger.info(BANNER)

    try:
        settings = resolve_settings(args.config)
    except ConfigError as e:
        logger.error("Failed to load settings: %s", e)
        logger.error("Deleting %s and restarting may fix this.", args.config)
        return 1
    except (EOFError, KeyboardInterrupt):
        logger.error("Setup cancelled, no settings were saved")
        return 1

    if args.server:
        settings.server_url = args.server

    connector = Connector(settings.engine_config(), settings.connection_config())
    try:
        asyncio.run(connector.run())
    except KeyboardInterrupt:
        logger.info("Shutting down")
    return 0


if __name__ == "__main__":
    sys.exit(main())
