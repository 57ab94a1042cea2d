"""
Runtime settings for the relay server and peer client.

Values come from the environment, with a local .env file loaded first.
Game rules constants do not live here; see server/godaigo/state.py.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv


@dataclass
class Settings:
    host: str = "0.0.0.0"
    port: int = 8765
    log_level: str = "INFO"
    # Seconds a response window stays open before it resolves on its own
    response_timeout: float = 15.0
    # Seconds between full turn/common-area snapshots from the active peer
    sync_interval: float = 10.0
    # Peer client only
    server_url: str = "ws://localhost:8765"
    player_name: str = "Player"
    room_code: str = ""


def load_settings():
    load_dotenv()
    return Settings(
        host=os.getenv("GODAIGO_HOST", "0.0.0.0"),
        port=int(os.getenv("GODAIGO_PORT", "8765")),
        log_level=os.getenv("GODAIGO_LOG_LEVEL", "INFO").upper(),
        response_timeout=float(os.getenv("GODAIGO_RESPONSE_TIMEOUT", "15")),
        sync_interval=float(os.getenv("GODAIGO_SYNC_INTERVAL", "10")),
        server_url=os.getenv("GODAIGO_SERVER_URL", "ws://localhost:8765"),
        player_name=os.getenv("GODAIGO_PLAYER_NAME", "Player"),
        room_code=os.getenv("GODAIGO_ROOM", "").upper(),
    )
