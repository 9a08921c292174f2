"""
Entry point for the calendar availability MCP server.
"""

import logging

from . import mcp
from .config import get_log_level, get_server_settings

logger = logging.getLogger(__name__)


def main():
    """Starts the server."""
    logging.basicConfig(
        level=get_log_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings = get_server_settings()

    if settings["transport"] == "stdio":
        mcp.run(transport="stdio")
        return

    logger.info("Server running at http://%s:%s", settings["host"], settings["port"])
    mcp.run(
        transport=settings["transport"], host=settings["host"], port=settings["port"]
    )


if __name__ == "__main__":
    main()
