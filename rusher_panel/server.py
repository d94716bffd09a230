"""Entry point for the PacketRusher control panel.

Serves the browser control page and the session API on PANEL_HOST:PANEL_PORT,
running PacketRusher from PACKETRUSHER_DIR against its config.yml.
"""

from __future__ import annotations

import logging
import sys

from aiohttp import web

from .config import (
    PACKETRUSHER_BINARY,
    PACKETRUSHER_CONFIG,
    PACKETRUSHER_DIR,
    PANEL_HOST,
    PANEL_PORT,
)
from .session_manager.manager import create_app

logging.basicConfig(
    stream=sys.stderr,
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger("rusher-panel")


def check_install() -> bool:
    """Log whether the binary and config.yml are where we expect them."""
    ok = True
    logger.info(f"PacketRusher directory: {PACKETRUSHER_DIR}")
    if PACKETRUSHER_BINARY.is_file():
        logger.info(f"PacketRusher binary found: {PACKETRUSHER_BINARY}")
    else:
        logger.error(f"PacketRusher binary NOT found at: {PACKETRUSHER_BINARY}")
        ok = False
    if PACKETRUSHER_CONFIG.is_file():
        logger.info(f"Config file found: {PACKETRUSHER_CONFIG}")
    else:
        logger.error(f"Config file NOT found at: {PACKETRUSHER_CONFIG}")
        ok = False
    return ok


def main():
    """Run the control panel HTTP service."""
    check_install()
    logger.info(f"Server running at http://{PANEL_HOST}:{PANEL_PORT}")
    web.run_app(create_app(), host=PANEL_HOST, port=PANEL_PORT, print=None)


if __name__ == "__main__":
    main()
