import ipaddress
import socket
from urllib.parse import urlparse

BLOCKED_HOSTNAMES = {"localhost", "metadata.google.internal"}

# ranges ipaddress does not flag as private on every python version
EXTRA_BLOCKED_NETS = [
    ipaddress.ip_network("100.64.0.0/10"),  # CGNAT
    ipaddress.ip_network("169.254.169.254/32"),  # cloud metadata
]


class BlockedTarget(ValueError):
    pass


def is_ip_blocked(ip: str) -> bool:
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return True

    if (
        addr.is_private
        or addr.is_loopback
        or addr.is_link_local
        or addr.is_multicast
        or addr.is_reserved
        or addr.is_unspecified
    ):
        return True
    return any(addr.version == net.version and addr in net for net in EXTRA_BLOCKED_NETS)


def resolve_all_ips(host: str) -> list[str]:
    try:
        infos = socket.getaddrinfo(host, None)
    except socket.gaierror as e:
        raise BlockedTarget(f"Cannot resolve host {host!r}: {e}") from e
    ips: list[str] = []
    for _family, _type, _proto, _canon, sockaddr in infos:
        ip = sockaddr[0]
        if ip not in ips:
            ips.append(ip)
    return ips


def validate_url_target(url: str) -> str:
    """
    Reject anything but public http(s) targets. Every resolved address is
    checked so a hostname can't smuggle a private IP next to a public one.
    Returns the normalized host.
    """
    p = urlparse(url)
    if p.scheme not in ("http", "https"):
        raise BlockedTarget("Only http/https allowed")
    host = p.hostname
    if not host:
        raise BlockedTarget("Invalid host")
    host_l = host.lower().strip(".")
    if host_l in BLOCKED_HOSTNAMES:
        raise BlockedTarget("Blocked hostname")

    ips = resolve_all_ips(host_l)
    if not ips:
        raise BlockedTarget("Cannot resolve host")
    for ip in ips:
        if is_ip_blocked(ip):
            raise BlockedTarget(f"Blocked resolved IP: {ip}")

    return host_l
