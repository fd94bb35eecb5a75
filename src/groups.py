#!/usr/bin/env python
# -*- encoding: utf-8 -*-

"""
Group token parsing and address expansion.

A group token has the form ``[SOURCE,]GROUP[+NUM]``. The optional ``+NUM``
suffix asks for NUM consecutive groups, derived from GROUP by incrementing
the low-order 32 bits of the address in network byte order:

    225.1.2.3+3        -> 225.1.2.3, 225.1.2.4, 225.1.2.5
    10.0.0.1,232.1.1.1 -> one SSM session
    ff2e::1+2          -> ff2e::1, ff2e::2
"""

############################## BEGIN IMPORTS ##################################

import socket
import struct
from abc import ABC, abstractmethod
from typing import List, Optional, Tuple, Type, Union
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from storage import SessionTable

############################## END IMPORTS ####################################

from errors import AddressError, CapacityError, ConfigurationError
import logging
logger = logging.getLogger(__name__)

############################## BEGIN GROUPS ###################################

SockAddr = Union[Tuple[str, int], Tuple[str, int, int, int]]
GroupPair = Tuple[Optional[str], str]

class Endpoint(ABC):
    """Base of the per-family socket endpoints.

    Subclasses fix the address family and the way the address is stepped
    to the next group. The family never changes for the lifetime of an
    endpoint, incrementing returns a new endpoint of the same class.

    Attributes:
        packed: Address in network byte order.
        port: UDP port, 0 for endpoints only used as a join source.
    """

    family = socket.AF_UNSPEC  # type: int
    size = 0  # type: int

    def __init__(self, packed: bytes, port: int = 0) -> None:
        if len(packed) != self.size:
            raise AddressError(f"Invalid address length {len(packed)}")
        self.packed = packed
        self.port = port

    @classmethod
    def from_text(cls, text: str, port: int = 0) -> "Endpoint":
        try:
            packed = socket.inet_pton(cls.family, text)
        except (OSError, ValueError):
            raise AddressError(f"{text} is not a valid multicast group")
        return cls(packed, port)

    @abstractmethod
    def increment(self) -> "Endpoint":
        """Endpoint of the next group, same family and port."""
        raise NotImplementedError

    @property
    def sockaddr(self) -> SockAddr:
        return (str(self), self.port)

    def __str__(self) -> str:
        return socket.inet_ntop(self.family, self.packed)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Endpoint):
            return NotImplemented
        return (self.family, self.packed, self.port) == \
            (other.family, other.packed, other.port)

    def __hash__(self) -> int:
        return hash((self.family, self.packed, self.port))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({str(self)!r}, port={self.port})"

class IPv4Endpoint(Endpoint):
    family = socket.AF_INET
    size = 4

    def increment(self) -> "IPv4Endpoint":
        """Next address, the whole 32-bit value wraps around on overflow."""
        step, = struct.unpack("!I", self.packed)
        step = (step + 1) & 0xFFFFFFFF
        return IPv4Endpoint(struct.pack("!I", step), self.port)

class IPv6Endpoint(Endpoint):
    family = socket.AF_INET6
    size = 16

    def increment(self) -> "IPv6Endpoint":
        """Next address, only the last 4 bytes count, no carry into byte 11."""
        step, = struct.unpack("!I", self.packed[12:])
        step = (step + 1) & 0xFFFFFFFF
        return IPv6Endpoint(self.packed[:12] + struct.pack("!I", step), self.port)

    @property
    def sockaddr(self) -> SockAddr:
        return (str(self), self.port, 0, 0)

ENDPOINTS = {
    socket.AF_INET: IPv4Endpoint,
    socket.AF_INET6: IPv6Endpoint,
}

def detect_family(text: str) -> int:
    """Address family from the textual form, a colon means IPv6."""
    return socket.AF_INET6 if ":" in text else socket.AF_INET

def endpoint_class(text: str) -> Type[Endpoint]:
    return ENDPOINTS[detect_family(text)]

def parse_endpoint(text: str, port: int = 0) -> Endpoint:
    """
    Convert the presentation form of an address to an endpoint.

    Args:
        text: IPv4 or IPv6 address, family is detected from the text.
        port: UDP port to attach.

    Returns:
        IPv4Endpoint or IPv6Endpoint.

    Raises:
        AddressError: If the text is not a valid address of its family.
    """
    return endpoint_class(text).from_text(text, port)

def parse_token(token: str) -> Tuple[Optional[str], str, int]:
    """
    Split a ``[SOURCE,]GROUP[+NUM]`` token into its parts.

    Args:
        token: Group token from the command line.

    Returns:
        Tuple of (source or None, group, number of groups).

    Raises:
        ConfigurationError: If NUM is not a decimal number or GROUP is empty.
    """
    num = 1
    text = token.strip()

    if "+" in text:
        text, _, suffix = text.rpartition("+")
        if not suffix.isdigit():
            raise ConfigurationError(f"Invalid number of groups in '{token}'")
        num = int(suffix)

    source = None  # type: Optional[str]
    if "," in text:
        source, _, text = text.partition(",")
        source = source.strip() or None

    group = text.strip()
    if not group:
        raise ConfigurationError(f"Missing group in '{token}'")

    return source, group, num

def expand_token(
    token: str,
    count: Optional[int] = None,
    limit: Optional[int] = None,
) -> List[GroupPair]:
    """
    Expand a group token into (source, group) pairs.

    The first pair keeps the group text as given, every following group is
    the previous address with its low-order 32 bits incremented by one.

    Args:
        token: Group token, ``[SOURCE,]GROUP[+NUM]``.
        count: Number of groups, overrides the ``+NUM`` suffix.
        limit: Free slots left in the session table, if known.

    Returns:
        Exactly NUM (source, group) pairs.

    Raises:
        ConfigurationError: On an invalid group or a count below one.
        CapacityError: If NUM is larger than limit.
    """
    source, group, num = parse_token(token)
    if count is not None:
        num = count

    if num < 1:
        raise ConfigurationError(f"Invalid number of groups given ({num})")

    if limit is not None and num > limit:
        raise CapacityError(
            f"Cannot add {num} groups, only {max(limit, 0)} slots left"
        )

    endpoint = parse_endpoint(group)
    pairs = []  # type: List[GroupPair]

    for _ in range(num):
        logger.debug("Adding (S,G) %s,%s to list ...", source or "*", group)
        pairs.append((source, group))
        endpoint = endpoint.increment()
        group = str(endpoint)

    return pairs

def expand_into(table: "SessionTable", token: str) -> List[int]:
    """Expand a token directly into a session table, all or nothing."""
    pairs = expand_token(token, limit=table.capacity - len(table))
    return table.put(pairs)

############################## END GROUPS #####################################

if __name__ == "__main__":
    for pair in expand_token("225.1.2.254+4"):
        print(pair)
