"""
Server Configuration

Settings are read from COLDROOM_* environment variables.
"""

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .persistence import FLUSH_INTERVAL
from .presence import PRESENCE_TIMEOUT
from .room_state import OFFICIAL_ROOM_NAME

logger = logging.getLogger(__name__)

ENV_PREFIX = "COLDROOM_"


def _env_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(ENV_PREFIX + name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(
            f"Invalid integer for {ENV_PREFIX}{name}: {raw!r}, using {default}"
        )
        return default


@dataclass
class ServerConfig:
    """
    Runtime configuration of the chat server.

    Attributes:
        host: Address to bind to
        port: Port for both HTTP and WebSocket traffic
        data_file: Path of the JSON snapshot
        static_dir: Directory served over plain HTTP
        flush_interval: Seconds between forced snapshot writes
        presence_timeout: Seconds without a ping before a user counts as offline
        owner_handle: Login handle of the owner created on first start
        owner_password: Password for that owner; required only when the
            owner does not exist yet
        owner_display_name: Display name of that owner
        official_room_name: Name of the global room created on first start
        log_level: Logging level name
    """

    host: str = "0.0.0.0"
    port: int = 3000
    data_file: str = "cold_room_data.json"
    static_dir: str = "static"
    flush_interval: int = FLUSH_INTERVAL
    presence_timeout: int = PRESENCE_TIMEOUT
    owner_handle: str = "COLDKING"
    owner_password: Optional[str] = None
    owner_display_name: str = "Cold Room King"
    official_room_name: str = OFFICIAL_ROOM_NAME
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ServerConfig":
        """
        Build the configuration from environment variables.

        Args:
            environ: Mapping to read instead of os.environ

        Returns:
            ServerConfig with defaults for anything unset
        """
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            host=env.get(ENV_PREFIX + "HOST", defaults.host),
            port=_env_int(env, "PORT", defaults.port),
            data_file=env.get(ENV_PREFIX + "DATA_FILE", defaults.data_file),
            static_dir=env.get(ENV_PREFIX + "STATIC_DIR", defaults.static_dir),
            flush_interval=_env_int(env, "FLUSH_INTERVAL", defaults.flush_interval),
            presence_timeout=_env_int(
                env, "PRESENCE_TIMEOUT", defaults.presence_timeout
            ),
            owner_handle=env.get(ENV_PREFIX + "OWNER_HANDLE", defaults.owner_handle),
            owner_password=env.get(ENV_PREFIX + "OWNER_PASSWORD") or None,
            owner_display_name=env.get(
                ENV_PREFIX + "OWNER_DISPLAY_NAME", defaults.owner_display_name
            ),
            official_room_name=env.get(
                ENV_PREFIX + "OFFICIAL_ROOM_NAME", defaults.official_room_name
            ),
            log_level=env.get(ENV_PREFIX + "LOG_LEVEL", defaults.log_level).upper(),
        )
