"""Host (agent runtime) API access."""

from ctxrecover.host.client import BaseHostClient, Toast, get_last_assistant, show_toast
from ctxrecover.host.http_client import HttpHostClient

__all__ = [
    "BaseHostClient",
    "HttpHostClient",
    "Toast",
    "get_last_assistant",
    "show_toast",
]
