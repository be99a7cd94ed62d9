"""Golden unit tests validating configuration flag parsing."""

import argparse

import pytest

from servicebox.bootstrap.config import ConfigPatch
from servicebox.bootstrap.flags import (
    build_flag_parser,
    parse_flags,
    patch_from_flags,
    register_flags,
)


def test_parse_flags_uses_defaults() -> None:
    """Defaults leave every configuration field unset."""
    args = parse_flags([])

    assert args.log_level == ""
    assert args.listen_address == ""
    assert args.tls_cert_file == ""
    assert args.tls_key_file == ""
    assert args.cpu_min_threads == 1
    assert args.mem_limit_ratio == 0.8
    assert patch_from_flags(args) == ConfigPatch()


def test_parse_flags_honors_single_dash_overrides() -> None:
    """Single-dash flags map onto every configuration field."""
    args = parse_flags(
        [
            "-log-level",
            "debug",
            "-listen-address",
            "0.0.0.0:9090",
            "-tls-cert-file",
            "cert.pem",
            "-tls-key-file",
            "key.pem",
            "-cpu-min-threads",
            "4",
            "-mem-limit-ratio",
            "0.5",
        ]
    )

    assert patch_from_flags(args) == ConfigPatch(
        log_level="debug",
        listen_address="0.0.0.0:9090",
        tls_cert_file="cert.pem",
        tls_key_file="key.pem",
        cpu_min_threads=4,
        mem_limit_ratio=0.5,
    )


def test_parse_flags_accepts_double_dash() -> None:
    """Double-dash spellings are accepted as well."""
    args = parse_flags(["--log-level", "error", "--cpu-min-threads", "2"])

    patch = patch_from_flags(args)
    assert patch.log_level == "error"
    assert patch.cpu_min_threads == 2
    assert patch.mem_limit_ratio is None


def test_parse_flags_rejects_non_numeric_threads() -> None:
    """Invalid numeric values abort parsing."""
    with pytest.raises(SystemExit):
        parse_flags(["-cpu-min-threads", "many"])


def test_register_flags_twice_on_same_parser_fails() -> None:
    """Duplicate registration on one parser is a programming error."""
    parser = build_flag_parser()
    with pytest.raises(argparse.ArgumentError):
        register_flags(parser)


def test_register_flags_extends_application_parser() -> None:
    """Flags can be added next to an application's own arguments."""
    parser = argparse.ArgumentParser()
    parser.add_argument("--greeting", default="hello")
    register_flags(parser)

    args = parser.parse_args(["--greeting", "hi", "-listen-address", ":9000"])
    assert args.greeting == "hi"
    assert patch_from_flags(args).listen_address == ":9000"


def test_patch_from_flags_tolerates_missing_attributes() -> None:
    """A namespace without configuration flags yields an empty patch."""
    assert patch_from_flags(argparse.Namespace()) == ConfigPatch()


@pytest.mark.parametrize(
    "argv",
    [
        ["-mem-limit-ratio", "5"],
        ["-mem-limit-ratio", "0"],
        ["-mem-limit-ratio", "-0.2"],
        ["-cpu-min-threads", "-4"],
        ["-cpu-min-threads", "0"],
    ],
)
def test_parse_flags_rejects_out_of_range_values(argv, capsys) -> None:
    """Out-of-range limits abort parsing instead of being dropped."""
    with pytest.raises(SystemExit) as excinfo:
        parse_flags(argv)

    assert excinfo.value.code == 2
    assert argv[0] in capsys.readouterr().err


def test_parse_flags_accepts_full_memory_ratio() -> None:
    """A ratio of exactly one is within range."""
    args = parse_flags(["-mem-limit-ratio", "1"])

    assert patch_from_flags(args).mem_limit_ratio == 1.0
