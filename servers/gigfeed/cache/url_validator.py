"""
SSRF guard for outbound fetches.

Image URLs come from scraped third-party pages, so every URL the image cache
or a feed source requests is checked first. A URL passes when:
- its scheme is http or https (https only for feeds)
- its host is not a localhost variant or a cloud metadata name
- neither the host literal nor, optionally, any address it resolves to lies
  in a loopback, private, link-local, CGNAT, multicast or reserved network
"""

import ipaddress
import socket
from typing import Optional, Union
from urllib.parse import urlparse

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


class SSRFError(Exception):
    """Raised when a URL may not be fetched."""
    pass


BLOCKED_NETWORKS = [
    (ipaddress.ip_network(cidr), label)
    for cidr, label in (
        ("0.0.0.0/8", "this-network"),
        ("10.0.0.0/8", "private"),
        ("100.64.0.0/10", "carrier-grade NAT"),
        ("127.0.0.0/8", "loopback"),
        ("169.254.0.0/16", "link-local/metadata"),
        ("172.16.0.0/12", "private"),
        ("192.0.0.0/24", "IETF assignments"),
        ("192.168.0.0/16", "private"),
        ("224.0.0.0/4", "multicast"),
        ("240.0.0.0/4", "reserved"),
        ("::/128", "unspecified"),
        ("::1/128", "loopback"),
        ("fc00::/7", "unique-local"),
        ("fe80::/10", "link-local"),
    )
]

METADATA_HOSTS = frozenset({"metadata", "metadata.google.internal"})
LOCAL_HOSTS = frozenset({"localhost", "localhost.localdomain", "0.0.0.0", "127.0.0.1", "::1"})


def validate_url(url: str, require_https: bool = False, resolve_dns: bool = True) -> str:
    """
    Check a URL against the SSRF policy.

    Args:
        url: URL to check; "//host/path" is read as https
        require_https: Refuse plain http
        resolve_dns: Also check every address the host resolves to. Lookup
                     failures pass, since the request itself will fail.

    Returns:
        The normalized URL

    Raises:
        SSRFError: With a message naming the reason
    """
    if not isinstance(url, str) or not url.strip():
        raise SSRFError("URL must be a non-empty string")

    url = url.strip()
    if url.startswith("//"):
        url = "https:" + url

    try:
        parsed = urlparse(url)
        host = parsed.hostname
    except ValueError as e:
        raise SSRFError(f"Invalid URL format: {e}") from e

    _check_scheme(parsed.scheme.lower(), require_https)
    if not host:
        raise SSRFError("URL must include a hostname")

    host = host.lower().rstrip(".")
    _check_hostname(host)

    literal = _parse_ip_address(host)
    if literal is not None:
        label = _blocked_label(literal)
        if label:
            raise SSRFError(
                f"Access to {host} is blocked (private/internal IP addresses are not allowed: {label})"
            )
    elif resolve_dns:
        _check_resolved(host)

    return url


def _check_scheme(scheme: str, require_https: bool) -> None:
    if require_https and scheme != "https":
        raise SSRFError(f"Only HTTPS URLs are allowed (got {scheme or 'no scheme'}://)")
    if scheme not in ("http", "https"):
        raise SSRFError(f"Only HTTP(S) URLs are allowed (got {scheme or 'no scheme'}://)")


def _check_hostname(host: str) -> None:
    if host in LOCAL_HOSTS or host.startswith("localhost") or host.endswith(".localhost"):
        raise SSRFError(f"Access to {host} is blocked (localhost addresses are not allowed)")
    if host in METADATA_HOSTS:
        raise SSRFError(f"Access to {host} is blocked (cloud metadata hosts are not allowed)")


def _check_resolved(host: str) -> None:
    try:
        addresses = _resolve_hostname(host)
    except (socket.gaierror, UnicodeError):
        return
    for address in addresses:
        parsed = _parse_ip_address(address)
        if parsed is not None and _blocked_label(parsed):
            raise SSRFError(f"Access to {host} is blocked (resolves to private/internal IP {address})")


def _parse_ip_address(host: str) -> Optional[IPAddress]:
    """Return host as an IP address, or None if it is a name."""
    try:
        return ipaddress.ip_address(host.strip("[]"))
    except ValueError:
        return None


def _blocked_label(address: IPAddress) -> Optional[str]:
    """Name of the blocked network containing address, if any."""
    # ::ffff:a.b.c.d is judged as a.b.c.d
    mapped = getattr(address, "ipv4_mapped", None)
    if mapped is not None:
        address = mapped
    for network, label in BLOCKED_NETWORKS:
        if address.version == network.version and address in network:
            return label
    return None


def _resolve_hostname(host: str) -> list[str]:
    """Every address host resolves to, deduplicated."""
    infos = socket.getaddrinfo(host, None, socket.AF_UNSPEC)
    return sorted({info[4][0] for info in infos})


def validate_image_url(url: str, resolve_dns: bool = True) -> str:
    """Image hosts may use http or https."""
    return validate_url(url, require_https=False, resolve_dns=resolve_dns)


def validate_feed_url(url: str, resolve_dns: bool = True) -> str:
    """Listing feeds must use https."""
    return validate_url(url, require_https=True, resolve_dns=resolve_dns)
