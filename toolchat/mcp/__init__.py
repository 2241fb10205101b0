from .base import ToolProviderError, ToolTransport
from .connector import ToolConnector
from .stdio import StdioTransport
from .streamable_http import StreamableHttpTransport

__all__ = [
    "StdioTransport",
    "StreamableHttpTransport",
    "ToolConnector",
    "ToolProviderError",
    "ToolTransport",
]
