"""Named tool registry handed to the context-gathering agent.

Every tool returns a string and takes at most one string argument. agno
builds each tool's schema from its signature and docstring, and records a
raised exception as a failed tool call rather than propagating it.
"""

from collections.abc import Awaitable, Callable

from streamchat.tools.time_tool import get_current_time
from streamchat.tools.web_search import web_search

Tool = Callable[..., str] | Callable[..., Awaitable[str]]

TOOLS: dict[str, Tool] = {
    "get_current_time": get_current_time,
    "web_search": web_search,
}


def get_tools() -> list[Tool]:
    """Tools in registration order, for handing to an agno Agent."""
    return list(TOOLS.values())
