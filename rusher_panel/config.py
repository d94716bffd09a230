"""Application configuration loaded from environment variables."""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

PROJECT_DIR = Path(__file__).parent.parent

# PacketRusher install (the installer exports PACKETRUSHER)
PACKETRUSHER_DIR = Path(
    os.getenv("PACKETRUSHER_DIR")
    or os.getenv("PACKETRUSHER")
    or PROJECT_DIR.parent / "packetrusher"
)
PACKETRUSHER_CONFIG = Path(os.getenv("PACKETRUSHER_CONFIG", PACKETRUSHER_DIR / "config.yml"))
PACKETRUSHER_BINARY = Path(os.getenv("PACKETRUSHER_BINARY", PACKETRUSHER_DIR / "packetrusher"))

# HTTP service
PANEL_HOST = os.getenv("PANEL_HOST", "127.0.0.1")
PANEL_PORT = int(os.getenv("PANEL_PORT", "3000"))

# Sessions
SESSION_TIMEOUT = float(os.getenv("SESSION_TIMEOUT", "30"))
LOG_BUFFER_SIZE = int(os.getenv("LOG_BUFFER_SIZE", "100"))
MAX_SESSION_COUNT = int(os.getenv("MAX_SESSION_COUNT", "100"))
MAX_UES_PER_SESSION = int(os.getenv("MAX_UES_PER_SESSION", "100"))
MAX_INTERVAL_SECONDS = float(os.getenv("MAX_INTERVAL_SECONDS", "86400"))

# Paths
DATA_DIR = Path(os.getenv("DATA_DIR", PROJECT_DIR / "data"))
DB_PATH = DATA_DIR / "run_history.db"

# Schedule source
FLIGHT_DATA_URL = os.getenv("FLIGHT_DATA_URL", "")
FLIGHT_DATA_FILE = Path(os.getenv("FLIGHT_DATA_FILE", DATA_DIR / "flights.json"))
FLIGHT_DATA_TIMEOUT = 15.0


def ensure_dirs():
    """Create required data directories if they don't exist."""
    DATA_DIR.mkdir(parents=True, exist_ok=True)
