"""Service configuration model, merge rules and file loading."""

import json
import logging
import threading
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Union

import yaml

from servicebox.bootstrap.logging_setup import component_logger
from servicebox.domain.errors import ConfigLoadError, UnsupportedFormatError

CONFIG_LOGGER = component_logger("bootstrap.config")

DEFAULT_LISTEN_ADDRESS = ":8000"
DEFAULT_CPU_MIN_THREADS = 1
DEFAULT_MEM_LIMIT_RATIO = 0.8
CONFIG_ROOT_KEY = "box"

YAML_SUFFIXES = {".yaml", ".yml"}
JSON_SUFFIXES = {".json"}


@dataclass
class Config:
    """Resolved service configuration."""

    log_level: str = ""
    listen_address: str = ""
    tls_cert_file: str = ""
    tls_key_file: str = ""
    cpu_min_threads: int = DEFAULT_CPU_MIN_THREADS
    mem_limit_ratio: float = DEFAULT_MEM_LIMIT_RATIO

    @property
    def tls_enabled(self) -> bool:
        """Return True when both TLS certificate and key paths are set."""
        return bool(self.tls_cert_file) and bool(self.tls_key_file)


DEFAULT_CONFIG = Config(listen_address=DEFAULT_LISTEN_ADDRESS)


@dataclass(frozen=True)
class ConfigPatch:
    """A partial configuration; ``None`` marks a field the source leaves alone."""

    log_level: Optional[str] = None
    listen_address: Optional[str] = None
    tls_cert_file: Optional[str] = None
    tls_key_file: Optional[str] = None
    cpu_min_threads: Optional[int] = None
    mem_limit_ratio: Optional[float] = None

    @classmethod
    def from_config(cls, config: Config) -> "ConfigPatch":
        """Treat every field of a full configuration as explicitly set."""
        return cls(**{f.name: getattr(config, f.name) for f in fields(Config)})

    def explicit_fields(self) -> dict[str, Any]:
        """Return the fields this patch sets."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }


# Set-once fields and the value that does not count as a write.
SET_ONCE_DEFAULTS = {
    "cpu_min_threads": DEFAULT_CPU_MIN_THREADS,
    "mem_limit_ratio": DEFAULT_MEM_LIMIT_RATIO,
}


@dataclass
class SetOnceFlags:
    """Guard flags recording which set-once fields already accepted a value."""

    cpu_min_threads: bool = False
    mem_limit_ratio: bool = False
    _lock: threading.Lock = field(
        default_factory=threading.Lock, repr=False, compare=False
    )

    def claim(self, name: str) -> bool:
        """Mark ``name`` as written; return False if it already was."""
        with self._lock:
            if getattr(self, name):
                return False
            setattr(self, name, True)
            return True


def apply_patch(
    config: Config,
    patch: Union[Config, ConfigPatch],
    flags: SetOnceFlags,
    source: str = "config",
) -> list[str]:
    """Merge ``patch`` into ``config`` in place and return the written fields."""
    if isinstance(patch, Config):
        patch = ConfigPatch.from_config(patch)

    written = []
    for name, value in patch.explicit_fields().items():
        if name in SET_ONCE_DEFAULTS:
            if value == SET_ONCE_DEFAULTS[name]:
                continue
            if not flags.claim(name):
                CONFIG_LOGGER.debug(
                    "Ignoring write to set-once field",
                    extra={
                        "event": "set_once_ignored",
                        "field": name,
                        "source": source,
                    },
                )
                continue
        setattr(config, name, value)
        written.append(name)
    return written


def ensure_listen_address(config: Config) -> None:
    """Fall back to the default listen address when none was resolved."""
    if not config.listen_address:
        config.listen_address = DEFAULT_LISTEN_ADDRESS


def resolve(
    sources: Iterable[Union[Config, ConfigPatch]], base: Optional[Config] = None
) -> Config:
    """Apply configuration sources left to right on top of ``base``."""
    config = replace(base if base is not None else DEFAULT_CONFIG)
    flags = SetOnceFlags()
    for source in sources:
        apply_patch(config, source, flags)
    ensure_listen_address(config)
    return config


def _expect(
    path: str, raw: Mapping[str, Any], key: str, kind: Any, expected: str
) -> Any:
    value = raw.get(key)
    if value is None:
        return None
    # bool is an int subclass; reject it for numeric fields
    if isinstance(value, bool) or not isinstance(value, kind):
        raise ConfigLoadError(path, f"{key} must be {expected}, got {value!r}")
    return value


def patch_from_mapping(path: str, document: Any) -> ConfigPatch:
    """Decode a loaded document into a configuration patch."""
    if not isinstance(document, Mapping):
        raise ConfigLoadError(path, "top level must be a mapping")
    raw = document.get(CONFIG_ROOT_KEY)
    if raw is None:
        return ConfigPatch()
    if not isinstance(raw, Mapping):
        raise ConfigLoadError(path, f"{CONFIG_ROOT_KEY!r} must be a mapping")

    cpu_min_threads = _expect(path, raw, "cpuMinThreads", int, "an integer")
    if cpu_min_threads is not None and cpu_min_threads < 1:
        raise ConfigLoadError(path, "cpuMinThreads must be at least 1")

    mem_limit_ratio = _expect(
        path, raw, "memLimitRatio", (int, float), "a number"
    )
    if mem_limit_ratio is not None:
        mem_limit_ratio = float(mem_limit_ratio)
        if not 0 < mem_limit_ratio <= 1:
            raise ConfigLoadError(path, "memLimitRatio must be in (0, 1]")

    return ConfigPatch(
        log_level=_expect(path, raw, "logLevel", str, "a string"),
        listen_address=_expect(path, raw, "listenAddress", str, "a string"),
        tls_cert_file=_expect(path, raw, "tlsCertFile", str, "a string"),
        tls_key_file=_expect(path, raw, "tlsKeyFile", str, "a string"),
        cpu_min_threads=cpu_min_threads,
        mem_limit_ratio=mem_limit_ratio,
    )


def load_config_file(path: Union[str, Path]) -> ConfigPatch:
    """Load a YAML or JSON configuration file, selected by extension."""
    path_str = str(path)
    suffix = Path(path_str).suffix.lower()
    if suffix not in YAML_SUFFIXES | JSON_SUFFIXES:
        raise UnsupportedFormatError(path_str)

    try:
        with open(path_str, encoding="utf-8") as handle:
            text = handle.read()
    except OSError as error:
        raise ConfigLoadError(path_str, error.strerror or str(error)) from error

    if not text.strip():
        raise ConfigLoadError(path_str, "file is empty")

    try:
        if suffix in YAML_SUFFIXES:
            document = yaml.safe_load(text)
        else:
            document = json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as error:
        raise ConfigLoadError(path_str, str(error)) from error

    patch = patch_from_mapping(path_str, document)
    if CONFIG_LOGGER.logger.isEnabledFor(logging.DEBUG):
        CONFIG_LOGGER.debug(
            "Configuration file loaded",
            extra={
                "event": "config_loaded",
                "path": path_str,
                "fields": sorted(patch.explicit_fields()),
            },
        )
    return patch
