"""Command-line flag types."""

from __future__ import annotations

import ipaddress
import re
from typing import Iterable, Iterator

_PREFIX_RE = re.compile(r"/[0-9]+")

IPNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network


def _parse_cidr(value: str) -> IPNetwork:
    address, sep, prefix = value.partition("/")
    if not sep or not _PREFIX_RE.fullmatch("/" + prefix) or not address:
        raise ValueError(f"invalid CIDR address: {value}")
    try:
        return ipaddress.ip_network(value, strict=False)
    except ValueError as exc:
        raise ValueError(f"invalid CIDR address: {value}") from exc


class CIDRSliceFlag:
    """A flag value holding a comma separated list of CIDR networks."""

    def __init__(self, networks: Iterable[IPNetwork] = ()) -> None:
        self.networks: list[IPNetwork] = list(networks)

    def set(self, value: str) -> None:
        """Replace the networks with those parsed from ``value``; raise ValueError if invalid."""
        self.networks = [_parse_cidr(part) for part in value.split(",")]

    def get(self) -> CIDRSliceFlag:
        return self

    def __str__(self) -> str:
        return ",".join(str(network) for network in self.networks)

    def __iter__(self) -> Iterator[IPNetwork]:
        return iter(self.networks)

    def __len__(self) -> int:
        return len(self.networks)