"""
Runtime configuration, read from the environment (and a .env file if present).
"""

import os

from dotenv import load_dotenv

# Load .env file (only relevant in production)
load_dotenv()

DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"


def get_client_id() -> str | None:
    """OAuth client ID used when the caller does not pass one."""
    return os.getenv("GOOGLE_CLIENT_ID")


def get_client_secret() -> str | None:
    """OAuth client secret used when the caller does not pass one."""
    return os.getenv("GOOGLE_CLIENT_SECRET")


def get_token_uri() -> str:
    return os.getenv("GOOGLE_TOKEN_URI", DEFAULT_TOKEN_URI)


def get_api_timeout() -> float:
    """HTTP timeout in seconds for calls to the calendar service."""
    timeout = os.getenv("GOOGLE_API_TIMEOUT", "30")
    try:
        return float(timeout)
    except ValueError as e:
        raise ValueError(f"Invalid GOOGLE_API_TIMEOUT: {timeout}") from e


def get_server_settings() -> dict[str, str | int]:
    """Transport, host and port for the MCP server."""
    port = os.getenv("MCP_PORT", "8000")
    try:
        port_int = int(port)
    except ValueError as e:
        raise ValueError(f"Invalid MCP_PORT: {port}") from e

    return {
        "transport": os.getenv("MCP_TRANSPORT", "streamable-http"),
        "host": os.getenv("MCP_HOST", "0.0.0.0"),
        "port": port_int,
    }


def get_log_level() -> str:
    return os.getenv("LOG_LEVEL", "INFO").upper()
