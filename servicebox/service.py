"""The service aggregate and its construction."""

import threading
from dataclasses import dataclass, field, replace
from typing import Optional, Sequence

from servicebox.bootstrap.config import (
    DEFAULT_CONFIG,
    Config,
    SetOnceFlags,
    apply_patch,
    ensure_listen_address,
)
from servicebox.bootstrap.environment import is_running_in_kubernetes
from servicebox.bootstrap.flags import parse_flags, patch_from_flags
from servicebox.bootstrap.logging_setup import (
    CorrelationLoggerAdapter,
    configure_logging,
)
from servicebox.lifecycle.cancellation import CancellationToken
from servicebox.lifecycle.coordinator import listen_and_serve
from servicebox.observability.flight_recorder import FlightRecorder
from servicebox.options import Option, compose
from servicebox.runtime.limits import ResourceLimitGuard
from servicebox.web.server import WebServer


@dataclass
class Service:
    """Configuration, logger, web server and cancellation of one process.

    Embed or wrap it in the application object; build it with
    ``new_service``.
    """

    config: Config = field(default_factory=lambda: replace(DEFAULT_CONFIG))
    cancellation: CancellationToken = field(default_factory=CancellationToken)
    logger: Optional[CorrelationLoggerAdapter] = None
    web_server: Optional[WebServer] = None
    flight_recorder: Optional[FlightRecorder] = None
    flight_recorder_lock: threading.Lock = field(
        default_factory=threading.Lock, repr=False
    )
    limits: ResourceLimitGuard = field(default_factory=ResourceLimitGuard, repr=False)
    set_once: SetOnceFlags = field(default_factory=SetOnceFlags, repr=False)
    global_logger: bool = False

    def cancel(self) -> None:
        """Cancel the service; safe to call any number of times."""
        self.cancellation.cancel()

    def listen_and_serve(self) -> None:
        """Serve the web server until cancelled; see ``lifecycle.coordinator``."""
        listen_and_serve(self)


def finalize(service: Service) -> Service:
    """Resolve defaults, logging, resource limits and tracing after composition."""
    ensure_listen_address(service.config)
    service.logger = configure_logging(
        service.config.log_level,
        use_json=is_running_in_kubernetes(),
        global_logger=service.global_logger,
    )
    service.limits.apply(service.config)

    recorder = service.flight_recorder
    if recorder is not None:
        recorder.start()
        service.cancellation.add_done_callback(recorder.stop)
        if service.web_server is not None:
            service.web_server.use(recorder.middleware)
    return service


def new_service(
    *options: Option,
    argv: Optional[Sequence[str]] = None,
    handle_signals: bool = True,
) -> Service:
    """Build a service from ``options`` applied in order.

    Flags parsed from ``argv`` are merged after every option. With
    ``handle_signals`` the service is cancelled on SIGINT or SIGTERM.
    """
    cancellation = (
        CancellationToken.bound_to_signals() if handle_signals else CancellationToken()
    )
    service = Service(cancellation=cancellation)
    try:
        compose(service, options)
        if argv is not None:
            patch = patch_from_flags(parse_flags(argv))
            apply_patch(service.config, patch, service.set_once, "flags")
        finalize(service)
    except BaseException:
        # also covers SystemExit from flag parsing; restores signal handlers
        cancellation.cancel()
        raise
    return service
