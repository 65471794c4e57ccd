"""Local address lookup for the status display string."""

import logging
import socket

logger = logging.getLogger(__name__)

WILDCARD_HOSTS = ("", "0.0.0.0", "::")


def resolve_host_address(bind_host: str = "0.0.0.0") -> str:
    """Best-effort LAN IPv4 address clients can use to reach this machine.

    A specific bind host is returned as is. For wildcard binds the address
    of the interface carrying the default route is used; no packet is sent.
    """
    if bind_host not in WILDCARD_HOSTS:
        return bind_host
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect(("10.255.255.255", 1))
            return sock.getsockname()[0]
    except OSError as e:
        logger.debug(f"Could not resolve local address: {e}")
        return "unknown"


def format_local_address(host: str, port: int) -> str:
    if ":" in host and not host.startswith("["):
        host = f"[{host}]"
    return f"ws://{host}:{port}"
