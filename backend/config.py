"""Application-wide configuration constants."""

import os

APP_NAME = "Relay Drop"
_ENV_PREFIX = "RELAYDROP_"


def _env(name: str, default: str) -> str:
    return os.environ.get(_ENV_PREFIX + name, default)


# --- Relay (rendezvous broker) ---
RELAY_PROTOCOL = _env("RELAY_PROTOCOL", "http")
RELAY_HOST = _env("RELAY_HOST", "127.0.0.1")
RELAY_PORT = int(_env("RELAY_PORT", "3000"))
RELAY_TIMEOUT = float(_env("RELAY_TIMEOUT", "5"))  # seconds per HTTP request
RELAY_LOG_SIZE = 100  # request log lines kept in memory

# --- Transfer ---
TRANSFER_HOST = _env("TRANSFER_HOST", "127.0.0.1")  # where receivers dial
TRANSFER_BIND_HOST = _env("TRANSFER_BIND_HOST", "0.0.0.0")
TRANSFER_PORT = int(_env("TRANSFER_PORT", "3001"))
CHUNK_SIZE = int(_env("CHUNK_SIZE", str(32 * 1024)))  # 32 KB

# Timeouts are relative and renewed for every socket operation.
IO_TIMEOUT = float(_env("IO_TIMEOUT", "30"))
HANDSHAKE_TIMEOUT = float(_env("HANDSHAKE_TIMEOUT", "10"))
CONNECT_TIMEOUT = float(_env("CONNECT_TIMEOUT", "5"))
ACCEPT_TIMEOUT = float(_env("ACCEPT_TIMEOUT", "60"))

# --- Storage ---
DEFAULT_SAVE_DIR = _env("SAVE_DIR", os.getcwd())

# --- Logging ---
LOG_LEVEL = _env("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def relay_base_url(host: str = RELAY_HOST, port: int = RELAY_PORT) -> str:
    return f"{RELAY_PROTOCOL}://{host}:{port}"
