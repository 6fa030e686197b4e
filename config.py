import os
from dataclasses import dataclass
from typing import Optional


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except Exception:
        return default


def _env_flag(name: str, *, fallback: Optional[str] = None, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None and fallback:
        raw = os.getenv(fallback)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes"}


# ---- Env & config -----------------------------------------------------------
DEFAULT_URI = "mongodb://localhost:27017"
DEFAULT_DATABASE = "mycompany"
DEFAULT_QUERY_LIMIT = 100
SAMPLE_SIZE = 5
RESOURCE_SCHEME = "mongodb"


@dataclass(frozen=True)
class Settings:
    uri: str = DEFAULT_URI
    database: str = DEFAULT_DATABASE
    connect_timeout_ms: int = 10000
    server_selection_timeout_ms: int = 5000
    direct_connection: bool = True
    max_time_ms: int = 0
    transport: str = "stdio"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            uri=os.getenv("MONGODB_URI") or DEFAULT_URI,
            database=os.getenv("MONGODB_DATABASE") or DEFAULT_DATABASE,
            connect_timeout_ms=_env_int("MONGODB_CONNECT_TIMEOUT_MS", 10000),
            server_selection_timeout_ms=_env_int("MONGODB_SERVER_SELECTION_TIMEOUT_MS", 5000),
            direct_connection=_env_flag("MONGODB_DIRECT_CONNECTION", default=True),
            max_time_ms=max(0, _env_int("MONGODB_MAX_TIME_MS", 0)),
            transport=os.getenv("MCP_TRANSPORT", "stdio"),
        )

    @property
    def is_srv(self) -> bool:
        return self.uri.startswith("mongodb+srv://")

    def client_options(self) -> dict:
        """Keyword arguments for the driver client constructor."""
        options = {
            "connectTimeoutMS": self.connect_timeout_ms,
            "serverSelectionTimeoutMS": self.server_selection_timeout_ms,
        }
        # directConnection cannot be combined with SRV seed lists.
        if self.direct_connection and not self.is_srv:
            options["directConnection"] = True
        return options
