"""Application-wide configuration constants."""

from pathlib import Path

# --- Identity ---
APP_ID = "peerdrop-v1"

# --- Networking ---
API_HOST = "127.0.0.1"
API_PORT = 8765
DISCOVERY_PORT = 41235  # UDP, room beacons
DISCOVERY_INTERVAL = 1  # seconds between beacons
ROOM_LOOKUP_TIMEOUT = 5  # seconds a responder listens for a room beacon

# --- Session ---
TOKEN_LENGTH = 8  # characters of the uuid4 hex kept as the room code

# --- Transfer ---
CHUNK_SIZE = 16384  # 16 KB
AUTO_SEND_DELAY = 0.5  # seconds after open before sending a queued file
COMPLETE_MARKER_DELAY = 0.5  # seconds before FILE_COMPLETE is sent
FINALIZE_WATCHDOG_DELAY = 1.0  # seconds to wait for FILE_COMPLETE

# --- Storage ---
DEFAULT_SAVE_DIR = str(
    Path.home() / "Downloads" / "PeerDrop"
)
