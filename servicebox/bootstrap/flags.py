"""Command-line flags mirroring the configuration fields."""

import argparse
from typing import Optional, Sequence

from servicebox.bootstrap.config import (
    DEFAULT_CPU_MIN_THREADS,
    DEFAULT_MEM_LIMIT_RATIO,
    ConfigPatch,
)


def _positive_int(text: str) -> int:
    """Parse a thread count of at least one."""
    try:
        value = int(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid int value: {text!r}") from exc
    if value < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {value}")
    return value


def _ratio(text: str) -> float:
    """Parse a fraction in the range (0, 1]."""
    try:
        value = float(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid float value: {text!r}") from exc
    if not 0 < value <= 1:
        raise argparse.ArgumentTypeError(f"must be in (0, 1], got {value}")
    return value


def register_flags(parser: argparse.ArgumentParser) -> argparse.ArgumentParser:
    """Register every configuration field as a flag on ``parser``.

    The registered flags are ``-log-level``, ``-listen-address``,
    ``-tls-cert-file``, ``-tls-key-file``, ``-cpu-min-threads`` and
    ``-mem-limit-ratio``; each one is also accepted with a double dash.
    Registering twice on the same parser raises ``argparse.ArgumentError``.
    """
    parser.add_argument(
        "-log-level", "--log-level", dest="log_level", default="", help="Log level"
    )
    parser.add_argument(
        "-listen-address",
        "--listen-address",
        dest="listen_address",
        default="",
        help="Webserver listen address",
    )
    parser.add_argument(
        "-tls-cert-file",
        "--tls-cert-file",
        dest="tls_cert_file",
        default="",
        help="Webserver TLS certificate file",
    )
    parser.add_argument(
        "-tls-key-file",
        "--tls-key-file",
        dest="tls_key_file",
        default="",
        help="Webserver TLS key file",
    )
    parser.add_argument(
        "-cpu-min-threads",
        "--cpu-min-threads",
        dest="cpu_min_threads",
        type=_positive_int,
        default=DEFAULT_CPU_MIN_THREADS,
        help="CPU minimum threads",
    )
    parser.add_argument(
        "-mem-limit-ratio",
        "--mem-limit-ratio",
        dest="mem_limit_ratio",
        type=_ratio,
        default=DEFAULT_MEM_LIMIT_RATIO,
        help="Memory limit ratio",
    )
    return parser


def build_flag_parser(
    description: str = "Service configuration",
) -> argparse.ArgumentParser:
    """Return a fresh parser with all configuration flags registered."""
    return register_flags(argparse.ArgumentParser(description=description))


def parse_flags(argv: Sequence[str]) -> argparse.Namespace:
    """Parse configuration flags from ``argv``."""
    return build_flag_parser().parse_args(list(argv))


def patch_from_flags(namespace: argparse.Namespace) -> ConfigPatch:
    """Convert parsed flags into a patch holding only the values given."""

    def _text(name: str) -> Optional[str]:
        value = getattr(namespace, name, "")
        return value or None

    cpu_min_threads = getattr(namespace, "cpu_min_threads", DEFAULT_CPU_MIN_THREADS)
    mem_limit_ratio = getattr(namespace, "mem_limit_ratio", DEFAULT_MEM_LIMIT_RATIO)
    return ConfigPatch(
        log_level=_text("log_level"),
        listen_address=_text("listen_address"),
        tls_cert_file=_text("tls_cert_file"),
        tls_key_file=_text("tls_key_file"),
        cpu_min_threads=cpu_min_threads if cpu_min_threads > 1 else None,
        mem_limit_ratio=(
            mem_limit_ratio if mem_limit_ratio != DEFAULT_MEM_LIMIT_RATIO else None
        ),
    )
