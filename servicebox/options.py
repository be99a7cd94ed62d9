"""Service options and the sequential composer that applies them."""

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Iterable, Optional, Union

from prometheus_client import CollectorRegistry

from servicebox.bootstrap.config import (
    Config,
    ConfigPatch,
    apply_patch,
    ensure_listen_address,
    load_config_file,
)
from servicebox.bootstrap.logging_setup import component_logger
from servicebox.domain.http_types import Handler
from servicebox.observability.flight_recorder import DEFAULT_MAX_EVENTS, FlightRecorder
from servicebox.web.server import TRACEZ_PATH, create_web_server, trace_snapshot_handler

if TYPE_CHECKING:
    from servicebox.service import Service

OPTIONS_LOGGER = component_logger("options")


@dataclass(frozen=True)
class SetConfig:
    """Merge explicit configuration values; a full ``Config`` sets every field."""

    config: Union[Config, ConfigPatch]


@dataclass(frozen=True)
class SetConfigFromFile:
    """Merge the values of a YAML or JSON configuration file."""

    path: Union[str, Path]


@dataclass(frozen=True)
class EnableServer:
    """Create the web server with its probe endpoints."""

    metrics: bool = True
    registry: Optional[CollectorRegistry] = None


@dataclass(frozen=True)
class OverrideLiveness:
    """Serve /healthz with ``handler``."""

    handler: Handler


@dataclass(frozen=True)
class OverrideReadiness:
    """Serve /readyz with ``handler``."""

    handler: Handler


@dataclass(frozen=True)
class EnableGlobalLogger:
    """Route every logger in the process through the service log handler."""


@dataclass(frozen=True)
class SetCpuFloor:
    """Request a minimum number of CPU threads."""

    threads: int

    def __post_init__(self) -> None:
        if self.threads < 1:
            raise ValueError("CPU floor must be at least 1 thread")


@dataclass(frozen=True)
class SetMemRatio:
    """Request the share of the container memory limit the process may use."""

    ratio: float

    def __post_init__(self) -> None:
        if not 0 < self.ratio <= 1:
            raise ValueError("memory limit ratio must be in (0, 1]")


@dataclass(frozen=True)
class EnableTracing:
    """Keep recent trace events in a flight recorder served at /tracez."""

    max_events: int = DEFAULT_MAX_EVENTS


Option = Union[
    SetConfig,
    SetConfigFromFile,
    EnableServer,
    OverrideLiveness,
    OverrideReadiness,
    EnableGlobalLogger,
    SetCpuFloor,
    SetMemRatio,
    EnableTracing,
]


def _set_config(service: "Service", option: SetConfig) -> None:
    apply_patch(service.config, option.config, service.set_once, "config")


def _set_config_from_file(service: "Service", option: SetConfigFromFile) -> None:
    patch = load_config_file(option.path)
    apply_patch(service.config, patch, service.set_once, str(option.path))


def _enable_server(service: "Service", option: EnableServer) -> None:
    if service.web_server is not None:
        OPTIONS_LOGGER.debug(
            "Web server already enabled", extra={"event": "web_server_exists"}
        )
        return

    service.web_server = create_web_server(option.metrics, option.registry)
    ensure_listen_address(service.config)
    service.web_server.get(
        TRACEZ_PATH,
        trace_snapshot_handler(
            lambda: service.flight_recorder, service.flight_recorder_lock
        ),
    )


def _ensure_server(service: "Service") -> None:
    if service.web_server is None:
        _enable_server(service, EnableServer())


def _override_liveness(service: "Service", option: OverrideLiveness) -> None:
    _ensure_server(service)
    service.web_server.set_liveness_probe(option.handler)


def _override_readiness(service: "Service", option: OverrideReadiness) -> None:
    _ensure_server(service)
    service.web_server.set_readiness_probe(option.handler)


def _enable_global_logger(service: "Service", _option: EnableGlobalLogger) -> None:
    service.global_logger = True


def _set_cpu_floor(service: "Service", option: SetCpuFloor) -> None:
    patch = ConfigPatch(cpu_min_threads=option.threads)
    apply_patch(service.config, patch, service.set_once, "cpu_floor")


def _set_mem_ratio(service: "Service", option: SetMemRatio) -> None:
    patch = ConfigPatch(mem_limit_ratio=option.ratio)
    apply_patch(service.config, patch, service.set_once, "mem_ratio")


def _enable_tracing(service: "Service", option: EnableTracing) -> None:
    if service.flight_recorder is None:
        service.flight_recorder = FlightRecorder(option.max_events)


_APPLIERS: dict[type, Callable] = {
    SetConfig: _set_config,
    SetConfigFromFile: _set_config_from_file,
    EnableServer: _enable_server,
    OverrideLiveness: _override_liveness,
    OverrideReadiness: _override_readiness,
    EnableGlobalLogger: _enable_global_logger,
    SetCpuFloor: _set_cpu_floor,
    SetMemRatio: _set_mem_ratio,
    EnableTracing: _enable_tracing,
}


def compose(service: "Service", options: Iterable[Option]) -> "Service":
    """Apply ``options`` to ``service`` strictly in the given order."""
    for option in options:
        applier = _APPLIERS.get(type(option))
        if applier is None:
            raise TypeError(f"not a service option: {option!r}")
        applier(service, option)
        OPTIONS_LOGGER.debug(
            "Option applied",
            extra={"event": "option_applied", "option": type(option).__name__},
        )
    return service
