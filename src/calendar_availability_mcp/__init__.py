"""
Calendar Availability MCP package initialization.
"""

from fastmcp import FastMCP

from .tools import calendar_availability, calendar_connect, calendar_manage

# Initialize FastMCP instance
mcp = FastMCP(
    name="Calendar Availability",
    instructions="Reads Google Calendar events across many calendars in one batched call, checks free/busy times and suggests free slots common to all calendars. OAuth credentials are passed with every tool call.",
)

# Register tools
mcp.tool(calendar_manage)
mcp.tool(calendar_availability)
mcp.tool(calendar_connect)

__all__ = [
    "mcp",
    "calendar_manage",
    "calendar_availability",
    "calendar_connect",
]
