"""Sender IP allow-list for marketplace webhooks."""
import ipaddress
import logging
from typing import Iterable, List, Mapping, Optional, Union

logger = logging.getLogger(__name__)

# Published marketplace egress addresses, plus loopback for local development
DEFAULT_ALLOWED_IPS = [
    # Staging
    "34.246.34.27",
    "18.202.142.208",
    "54.72.10.41",
    # Middle East + Turkey
    "63.32.225.161",
    "18.202.96.85",
    "52.208.41.152",
    # Local
    "127.0.0.1",
    "::1",
]

_Network = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


def client_ip(headers: Mapping[str, str], fallback: Optional[str] = None) -> str:
    """First address in X-Forwarded-For, else the socket peer, else "unknown"."""
    forwarded = headers.get("x-forwarded-for") or headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return fallback or "unknown"


class IpAllowList:
    """
    Accepts single addresses and CIDR blocks. An empty configuration falls
    back to DEFAULT_ALLOWED_IPS.
    """

    def __init__(self, entries: Optional[Iterable[str]] = None):
        entries = list(entries or []) or DEFAULT_ALLOWED_IPS
        self.networks: List[_Network] = []
        for entry in entries:
            try:
                self.networks.append(ipaddress.ip_network(entry.strip(), strict=False))
            except ValueError:
                logger.warning("Ignoring invalid allow-list entry %r", entry)

    def is_allowed(self, ip: str) -> bool:
        try:
            address = ipaddress.ip_address(ip)
        except ValueError:
            return False
        return any(address in network for network in self.networks)
