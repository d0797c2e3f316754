# src/wiki_moderation/services/iputil.py
"""IP address helpers for attribution records."""

from __future__ import annotations

import ipaddress
from collections.abc import Iterable


def sanitize_ip(ip: str | None) -> str | None:
    """Return ``ip`` in canonical form; IPv6 is compressed and upper-cased."""
    if not ip:
        return None
    ip = ip.strip()
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return ip
    if address.version == 6:
        return address.compressed.upper()
    return str(address)


def ip_to_hex(ip: str | None) -> str | None:
    """Return the sortable hex form used for range lookups, e.g. ``7F000001``."""
    if not ip:
        return None
    try:
        address = ipaddress.ip_address(ip.strip())
    except ValueError:
        return None
    if address.version == 6:
        return "v6-" + format(int(address), "032X")
    return format(int(address), "08X")


def client_ip_from_xff(xff: str | None, trusted_proxies: Iterable[str] = ()) -> tuple[str | None, bool]:
    """Find the client address in an X-Forwarded-For header.

    Returns:
        ``(ip, proxies_only)`` where ``ip`` is the first valid address that
        is not a trusted proxy, and ``proxies_only`` is True when every
        valid hop is a trusted proxy.
    """
    if not xff:
        return None, False

    trusted = {sanitize_ip(proxy) for proxy in trusted_proxies}
    hops = []
    for part in xff.split(","):
        candidate = sanitize_ip(part)
        if not candidate:
            continue
        try:
            ipaddress.ip_address(candidate)
        except ValueError:
            continue
        hops.append(candidate)

    for hop in hops:
        if hop not in trusted:
            return hop, False
    return None, bool(hops)


def checkuser_xff(xff: str | None, trusted_proxies: Iterable[str] = ()) -> tuple[str | None, str | None]:
    """Return the ``(xff, xff_hex)`` pair stored with a checkuser record.

    A header made only of trusted proxies is recorded as empty.
    """
    xff_ip, proxies_only = client_ip_from_xff(xff, trusted_proxies)
    if proxies_only:
        return "", None
    return xff, ip_to_hex(xff_ip)
