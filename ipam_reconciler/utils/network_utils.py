"""Address and CIDR helpers.

Pure functions shared by the allocation engine, the reconciliation cache
and the deployment orchestrator. Every address crossing a store boundary
goes through normalize_address() so "10.0.0.5/24" and "10.0.0.5" compare
equal.
"""

import ipaddress
import logging
from typing import List, Optional, Tuple, Union

from .error_handlers import InvalidCIDR, InvalidAddress, UnsupportedAddressFamily

logger = logging.getLogger(__name__)

IPv4_MAX_PREFIX_LENGTH = 32


def normalize_address(address: Optional[str]) -> Optional[str]:
    """Strip any /prefix-length suffix and surrounding whitespace"""
    if address is None:
        return None
    return str(address).strip().split("/", 1)[0]


def parse_host_address(address: str) -> Union[ipaddress.IPv4Address, ipaddress.IPv6Address]:
    """Validate a host address (suffix allowed) and return it parsed

    Raises:
        InvalidAddress: If the text is not an IPv4/IPv6 address
    """
    normalized = normalize_address(address)
    if not normalized:
        raise InvalidAddress("IP address is required")
    try:
        return ipaddress.ip_address(normalized)
    except ValueError:
        raise InvalidAddress(f"'{address}' is not a valid IP address")


def address_to_int(address: str) -> int:
    """Integer value of an address, used for range containment queries"""
    return int(parse_host_address(address))


def address_family(address: str) -> int:
    """4 or 6"""
    return parse_host_address(address).version


def host_cidr(address: str) -> str:
    """Host route for an address: /32 for IPv4, /128 for IPv6"""
    parsed = parse_host_address(address)
    return f"{parsed}/{parsed.max_prefixlen}"


def _parse_network(cidr: str) -> Union[ipaddress.IPv4Network, ipaddress.IPv6Network]:
    if not cidr or not isinstance(cidr, str):
        raise InvalidCIDR(f"Invalid CIDR: {cidr!r}")
    try:
        return ipaddress.ip_network(cidr.strip(), strict=False)
    except ValueError as e:
        raise InvalidCIDR(f"Invalid CIDR: {cidr} ({e})")


def cidr_bounds(cidr: str) -> Tuple[int, int, int]:
    """Return (family, network_int, broadcast_int) for a prefix

    Works for both families; IPv6 "broadcast" is simply the last address.
    """
    network = _parse_network(cidr)
    return network.version, int(network.network_address), int(network.broadcast_address)


def usable_host_count(cidr: str) -> int:
    """Number of IPv4 host addresses, network and broadcast excluded"""
    network = _parse_network(cidr)
    return max(network.num_addresses - 2, 0)


def enumerate_hosts(cidr: str, limit: Optional[int] = None) -> List[str]:
    """Expand an IPv4 prefix into its ordered host addresses

    Produces network+1 through broadcast-1, truncated to
    min(usable_count, limit). limit=None means no cap. /31 and /32 have no
    usable hosts under this rule.

    Raises:
        InvalidCIDR: Malformed address or prefix length outside [0, 32]
        UnsupportedAddressFamily: IPv6 prefix (no enumeration strategy)
    """
    if limit is not None and limit < 0:
        raise ValueError(f"limit must be non-negative, got {limit}")

    network = _parse_network(cidr)
    if network.version != 4:
        raise UnsupportedAddressFamily(
            f"Cannot enumerate IPv6 prefix {cidr}: only IPv4 pools are supported"
        )

    usable = max(network.num_addresses - 2, 0)
    count = usable if limit is None else min(usable, limit)

    first = int(network.network_address) + 1
    return [str(ipaddress.IPv4Address(first + offset)) for offset in range(count)]
