"""Shared constants for fakettp.

Port defaults, the reserved per-request override headers, and the forwarding
client's pool sizing live here. No magic values in other modules.
"""

# ─── Listening ────────────────────────────────────────────────────────────────

# Port used when neither the config file nor the command line supplies one.
DEFAULT_PORT: int = 5000

# Interface the intermediary binds to.
LISTEN_HOST: str = "0.0.0.0"

# Scheme assumed when proxy_host carries no "scheme://" prefix.
DEFAULT_PROXY_SCHEME: str = "http"

# Status written for a hyjack whose code was never set (0).
DEFAULT_RESPONSE_CODE: int = 200

# ─── Per-request override headers ─────────────────────────────────────────────
# Any of these on an inbound request take precedence over every configured rule.

HEADER_RETURN_DELAY: str = "X-Return-Delay"
HEADER_RETURN_HEADERS: str = "X-Return-Headers"
HEADER_RETURN_CODE: str = "X-Return-Code"
HEADER_RETURN_DATA: str = "X-Return-Data"

# ─── Forwarding client ────────────────────────────────────────────────────────

POOL_MAX_CONNECTIONS: int = 100
POOL_MAX_KEEPALIVE: int = 100
POOL_KEEPALIVE_EXPIRY: float = 30.0  # seconds
PROXY_TIMEOUT: float = 30.0  # total request timeout, seconds

# ─── Environment ──────────────────────────────────────────────────────────────

# Config file used when the app is started as `uvicorn fakettp.main:app`.
CONFIG_ENV_VAR: str = "FAKETTP_CONFIG"
