"""Context object shared across worker threads."""

import ssl
from dataclasses import dataclass
from typing import Optional

from servicebox.lifecycle.state import ServerLifecycle
from servicebox.pipeline.router import RouteTable


@dataclass
class WorkerContext:
    """Dependencies shared across handler threads."""

    routes: RouteTable
    lifecycle: ServerLifecycle
    socket_timeout: float
    tls_context: Optional[ssl.SSLContext] = None
