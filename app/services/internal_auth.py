from __future__ import annotations

import ipaddress
import secrets
from dataclasses import dataclass
from functools import lru_cache

from fastapi import Request

INTERNAL_TOKEN_HEADER = "X-Internal-Token"

IpNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network


def is_valid_internal_token(*, expected_token: str, received_token: str | None) -> bool:
    if not expected_token or not received_token:
        return False
    return secrets.compare_digest(expected_token, received_token)


@lru_cache(maxsize=32)
def parse_allowlist(allowlist: str) -> tuple[IpNetwork, ...]:
    """Parses a comma separated list of addresses and CIDR blocks; bad entries are skipped."""
    networks: list[IpNetwork] = []
    for raw_entry in allowlist.split(","):
        entry = raw_entry.strip()
        if not entry:
            continue
        try:
            networks.append(ipaddress.ip_network(entry, strict=False))
        except ValueError:
            continue
    return tuple(networks)


def _parse_ip(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    try:
        return str(ipaddress.ip_address(value.strip()))
    except ValueError:
        return None


def is_client_ip_allowed(*, client_ip: str | None, allowlist: str) -> bool:
    if client_ip is None:
        return False
    networks = parse_allowlist(allowlist)
    if not networks:
        return False
    parsed_ip = ipaddress.ip_address(client_ip)
    return any(parsed_ip in network for network in networks)


def extract_client_ip(request: Request, *, trusted_proxies: str = "") -> str | None:
    client_host = _parse_ip(request.client.host if request.client is not None else None)
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for and is_client_ip_allowed(client_ip=client_host, allowlist=trusted_proxies):
        return _parse_ip(forwarded_for.split(",", maxsplit=1)[0])
    return client_host


@dataclass(frozen=True, slots=True)
class InternalAccessPolicy:
    token: str
    allowlist: str
    trusted_proxies: str = ""

    def denial_reason(self, request: Request) -> str | None:
        """Returns why the request is refused, or None when it may proceed."""
        client_ip = extract_client_ip(request, trusted_proxies=self.trusted_proxies)
        if not is_client_ip_allowed(client_ip=client_ip, allowlist=self.allowlist):
            return "ip_not_allowed"
        if not is_valid_internal_token(
            expected_token=self.token,
            received_token=request.headers.get(INTERNAL_TOKEN_HEADER),
        ):
            return "invalid_token"
        return None
