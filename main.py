"""Example service: a hello world route next to the built-in probes."""

import os
import sys
from dataclasses import dataclass

from servicebox.domain.errors import ServerClosed
from servicebox.domain.http_types import HttpRequest, HttpResponse
from servicebox.domain.response_builders import text_response
from servicebox.options import EnableServer, EnableTracing, SetConfigFromFile
from servicebox.service import Service, new_service


@dataclass
class App:
    """Example application embedding a service."""

    service: Service

    def hello_world(self, request: HttpRequest) -> HttpResponse:
        """Greet the caller."""
        return text_response("Hello, World!", request)


def main() -> None:
    """Build the service from flags and an optional config file, then serve."""
    options = []
    config_path = os.getenv("SERVICEBOX_CONFIG")
    if config_path:
        options.append(SetConfigFromFile(config_path))
    options.extend([EnableServer(), EnableTracing()])

    app = App(service=new_service(*options, argv=sys.argv[1:]))
    app.service.web_server.get("/", app.hello_world)

    app.service.logger.info(
        "Starting webserver",
        extra={
            "event": "app_starting",
            "listen_address": app.service.config.listen_address,
        },
    )
    try:
        app.service.listen_and_serve()
    except ServerClosed:
        app.service.logger.info("Webserver stopped", extra={"event": "app_stopped"})


if __name__ == "__main__":
    main()
