"""Socket creation and TLS configuration."""

import socket
import ssl
from typing import Optional

ACCEPT_POLL_SECONDS = 0.5


def parse_listen_address(address: str) -> tuple[str, int]:
    """Split ``host:port`` into a bindable pair; an empty host binds all interfaces."""
    host, separator, port = address.rpartition(":")
    if not separator:
        raise ValueError(f"listen address {address!r} is missing a port")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    try:
        return host, int(port)
    except ValueError as exc:
        raise ValueError(f"listen address {address!r} has an invalid port") from exc


def create_server_socket(address: str) -> socket.socket:
    """Create the listening socket with a short accept timeout for stop polling."""
    host, port = parse_listen_address(address)
    if not host and socket.has_dualstack_ipv6():
        server_socket = socket.create_server(
            ("", port), family=socket.AF_INET6, dualstack_ipv6=True
        )
    else:
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        server_socket = socket.create_server((host, port), family=family)
    server_socket.settimeout(ACCEPT_POLL_SECONDS)
    return server_socket


def create_tls_context(cert_file: str, key_file: str) -> ssl.SSLContext:
    """Load the certificate chain into a server-side TLS context."""
    tls_context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    tls_context.load_cert_chain(cert_file, key_file)
    return tls_context


def wrap_client_socket(
    client_socket: socket.socket, tls_context: Optional[ssl.SSLContext]
) -> socket.socket:
    """Perform the server-side TLS handshake when TLS is enabled."""
    if tls_context is None:
        return client_socket
    return tls_context.wrap_socket(client_socket, server_side=True)
