#!/usr/bin/env python
# -*- encoding: utf-8 -*-

"""
Multicast sender and receiver.

Both work on the resolved session table. The sender emits one sequence
numbered datagram per group and period, the receiver joins every group on
its own socket and counts what arrives, including gaps in the sequence.
"""

############################## BEGIN IMPORTS ##################################

import selectors
import socket
import struct
import time
from typing_extensions import Protocol
from typing import Dict, Optional, Tuple
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sigloop import SessionContext

############################## END IMPORTS ####################################

from config import BUFSZ
from errors import TransportError
from storage import Session, SessionTable
from utils import ifindex, ifinfo
import logging
logger = logging.getLogger(__name__)

############################## BEGIN TRANSPORT ################################

# Not exported by every Python build, values from linux/in.h and in6.h
IP_ADD_SOURCE_MEMBERSHIP = getattr(socket, "IP_ADD_SOURCE_MEMBERSHIP", 39)
MCAST_JOIN_SOURCE_GROUP = getattr(socket, "MCAST_JOIN_SOURCE_GROUP", 46)
SOCKADDR_STORAGE_SIZE = 128

MAGIC = b"mcjoin"
HEADER = struct.Struct("!6sIH")

class Transport(Protocol):
    def init(self) -> None:
        ...

    def step(self) -> None:
        ...

    def close(self) -> None:
        ...

def make_packet(seq: int, index: int, size: int) -> bytes:
    """Header with magic, sequence number and group index, zero padded."""
    header = HEADER.pack(MAGIC, seq & 0xFFFFFFFF, index & 0xFFFF)
    return header + bytes(max(size - HEADER.size, 0))

def parse_packet(data: bytes) -> Optional[Tuple[int, int]]:
    """Returns (seq, index) of a packet, or None if it is not one of ours."""
    if len(data) < HEADER.size:
        return None
    magic, seq, index = HEADER.unpack_from(data)
    if magic != MAGIC:
        return None
    return seq, index

def sockaddr_storage(family: int, packed: bytes) -> bytes:
    """Native struct sockaddr_storage holding an IPv6 address, port 0."""
    if family == socket.AF_INET6:
        addr = struct.pack("=H", family) + struct.pack("!HI", 0, 0) + \
            packed + struct.pack("=I", 0)
    else:
        addr = struct.pack("=H", family) + struct.pack("!H", 0) + packed
    return addr.ljust(SOCKADDR_STORAGE_SIZE, b"\0")

def group_source_req(ifidx: int, session: Session) -> bytes:
    """struct group_source_req, 64-bit Linux alignment."""
    return struct.pack("=I", ifidx) + bytes(4) + \
        sockaddr_storage(session.grp.family, session.grp.packed) + \
        sockaddr_storage(session.src.family, session.src.packed)

def all_done(table: SessionTable, count: int) -> bool:
    return bool(count) and all(s.count >= count for s in table)

class Sender(object):
    """Sends one datagram per group every period.

    Attributes:
        table: Resolved sessions, one destination each.
        ctx: Loop context, asked to stop once `count` packets are sent.
        sockets: One socket per address family in use.
    """

    def __init__(
        self,
        table: SessionTable,
        ctx: "SessionContext",
        iface: str = "",
        ttl: int = 1,
        size: int = 100,
        count: int = 0,
        period: float = 0.1,
    ) -> None:
        self.table = table
        self.ctx = ctx
        self.iface = iface
        self.ttl = ttl
        self.size = min(max(size, HEADER.size), BUFSZ)
        self.count = count
        self.period = period
        self.sockets = {}  # type: Dict[int, socket.socket]

    def init(self) -> None:
        idx = ifindex(self.iface)

        for family in sorted(self.table.families()):
            sd = socket.socket(family, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
            try:
                if family == socket.AF_INET:
                    sd.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, self.ttl)
                    if idx:
                        mreqn = struct.pack("=4s4si", bytes(4), bytes(4), idx)
                        sd.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_IF, mreqn)
                else:
                    sd.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_MULTICAST_HOPS, self.ttl)
                    if idx:
                        sd.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_MULTICAST_IF, idx)
            except OSError as e:
                sd.close()
                raise TransportError(f"Failed setting up sender socket: {e}")

            self.sockets[family] = sd

        logger.info(
            "Sending to %d groups on %s, TTL %d",
            len(self.table), self.iface or "default interface", self.ttl,
        )

    def step(self) -> None:
        time.sleep(self.period)

        for index, session in enumerate(self.table):
            if self.count and session.count >= self.count:
                continue

            seq = 0 if session.seq is None else session.seq + 1
            sd = self.sockets[session.grp.family]
            try:
                sd.sendto(make_packet(seq, index, self.size), session.grp.sockaddr)
            except OSError as e:
                raise TransportError(f"Failed sending to {session.group}: {e}")

            session.seq = seq
            session.count += 1
            session.mark()

        if all_done(self.table, self.count):
            logger.info("Sent %d packets to every group, done", self.count)
            self.ctx.stop()

    def close(self) -> None:
        for sd in self.sockets.values():
            sd.close()
        self.sockets.clear()

class Receiver(object):
    """Joins every group on its own socket and counts arriving packets.

    Attributes:
        table: Resolved sessions, each gets a socket in `Session.sd`.
        ctx: Loop context, asked to stop once `count` packets arrived on
            every group.
        selector: Readiness of all group sockets.
    """

    def __init__(
        self,
        table: SessionTable,
        ctx: "SessionContext",
        iface: str = "",
        count: int = 0,
        period: float = 0.1,
        bufsize: int = BUFSZ,
    ) -> None:
        self.table = table
        self.ctx = ctx
        self.iface = iface
        self.count = count
        self.period = period
        self.bufsize = bufsize
        self.selector = selectors.DefaultSelector()

    def init(self) -> None:
        idx = ifindex(self.iface)

        for index, session in enumerate(self.table):
            session.sd = self.open_socket(session, idx)
            self.selector.register(session.sd, selectors.EVENT_READ, index)

    def open_socket(self, session: Session, idx: int) -> socket.socket:
        grp = session.grp
        sd = socket.socket(grp.family, socket.SOCK_DGRAM, socket.IPPROTO_UDP)

        try:
            sd.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sd.bind(grp.sockaddr)
            self.join(sd, session, idx)
            sd.setblocking(False)
        except OSError as e:
            sd.close()
            raise TransportError(f"Failed joining {session.label}: {e}")

        logger.info(f"Joining {session.label} on {self.iface or 'default interface'}")
        return sd

    def join(self, sd: socket.socket, session: Session, idx: int) -> None:
        grp, src = session.grp, session.src

        if grp.family == socket.AF_INET:
            if src is not None:
                addr = ifinfo(self.iface, socket.AF_INET, fallback=False)
                mreq = grp.packed + socket.inet_aton(addr) + src.packed
                sd.setsockopt(socket.IPPROTO_IP, IP_ADD_SOURCE_MEMBERSHIP, mreq)
            else:
                mreqn = struct.pack("=4s4si", grp.packed, bytes(4), idx)
                sd.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreqn)
            return

        if src is not None:
            gsr = group_source_req(idx, session)
            sd.setsockopt(socket.IPPROTO_IPV6, MCAST_JOIN_SOURCE_GROUP, gsr)
        else:
            mreq = struct.pack("=16sI", grp.packed, idx)
            sd.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_JOIN_GROUP, mreq)

    def handle_packet(self, session: Session, data: bytes) -> bool:
        """
        Account one received datagram.

        Args:
            session: Session the datagram arrived on.
            data: Datagram payload.

        Returns:
            True if the packet was counted, False once the stop count of
            the session has been reached.
        """
        if self.count and session.count >= self.count:
            return False

        session.count += 1
        session.mark()

        header = parse_packet(data)
        if header is None:
            logger.debug("Unknown payload, %d bytes from %s", len(data), session.group)
            return True

        seq, _ = header
        last = session.seq

        if last is None or seq == 0 or seq > last:
            if last is not None and seq > last + 1:
                gap = seq - last - 1
                session.gaps += gap
                logger.info(
                    "%s: gap of %d packets detected, seqno %d after %d",
                    session.group, gap, seq, last,
                )
            session.seq = seq

        return True

    def step(self) -> None:
        try:
            events = self.selector.select(self.period)
        except OSError as e:
            raise TransportError(f"Failed waiting for packets: {e}")

        for key, _ in events:
            session = self.table[key.data]
            while True:
                try:
                    data = key.fileobj.recv(self.bufsize)
                except BlockingIOError:
                    break
                except OSError as e:
                    raise TransportError(f"Failed receiving on {session.group}: {e}")
                self.handle_packet(session, data)

        if all_done(self.table, self.count):
            logger.info("Received %d packets on every group, done", self.count)
            self.ctx.stop()

    def close(self) -> None:
        for session in self.table:
            if session.sd is None:
                continue
            try:
                self.selector.unregister(session.sd)
            except (KeyError, ValueError):
                pass
            session.sd.close()
            session.sd = None
        self.selector.close()

############################## END TRANSPORT ##################################
