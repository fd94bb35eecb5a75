#!/usr/bin/env python
# -*- encoding: utf-8 -*-

############################## BEGIN IMPORTS ##################################

import socket
from abc import ABC, abstractmethod
from collections import deque
from typing_extensions import Protocol

from typing import (
    Any,
    Deque,
    Generic,
    Iterable,
    Iterator,
    List,
    Optional,
    Set,
    TypeVar,
)

############################## END IMPORTS ####################################

from config import MARK_ACTIVE, MARK_BLANK, MAX_NUM_GROUPS, STATUS_HISTORY
from errors import AddressError, CapacityError
from groups import Endpoint, GroupPair, parse_endpoint
import logging
logger = logging.getLogger(__name__)

############################## BEGIN VARIABLES ################################

class SupportsFileno(Protocol):
    def fileno(self) -> int:
        ...

    def close(self) -> None:
        ...

V = TypeVar("V")

############################## END VARIABLES ##################################
############################## BEGIN CLASSES ##################################

class Session(object):
    """
    One tracked (source, group) pair.

    The address identity is fixed at creation, only the counters and the
    activity history change afterwards.

    Attributes:
        source: Source address for SSM, None means any source (ASM).
        group: Group address as given or derived from the group token.
        grp: Resolved group endpoint, carries the UDP port.
        src: Resolved source endpoint, port 0, None for ASM.
        history: Activity marks, one per tick, newest last.
        count: Packets received, or sent when acting as sender.
        gaps: Sequence number gaps detected by the receiver.
        seq: Last sequence number seen or sent, None before the first.
        spin: Spinner phase, advanced on activity only.
        sd: Socket owned by the transport layer, if any.
    """

    def __init__(self, source: Optional[str], group: str) -> None:
        self.source = source
        self.group = group

        self.grp = None  # type: Optional[Endpoint]
        self.src = None  # type: Optional[Endpoint]

        self.history = deque(
            MARK_BLANK * STATUS_HISTORY, maxlen=STATUS_HISTORY
        )  # type: Deque[str]

        self.count = 0
        self.gaps = 0
        self.seq = None  # type: Optional[int]
        self.spin = 0
        self.sd = None  # type: Optional[SupportsFileno]

    @property
    def label(self) -> str:
        return f"{self.source or '*'},{self.group}"

    @property
    def active(self) -> bool:
        """Whether the most recent history slot shows activity."""
        return self.history[-1] == MARK_ACTIVE

    def mark(self) -> None:
        self.history[-1] = MARK_ACTIVE

    def age(self) -> None:
        """Drop the oldest slot and append a blank one."""
        self.history.append(MARK_BLANK)

    def __repr__(self) -> str:
        fields = [
            f"source={self.source!r}",
            f"group={self.group!r}",
            f"count={self.count}",
            f"gaps={self.gaps}",
        ]
        return f"Session({', '.join(fields)})"

class AbstractRepository(ABC, Generic[V]):
    """Abstract indexed repository interface."""

    @abstractmethod
    def put(self, items: Iterable[Any]) -> List[int]:
        """Insert multiple items, returns their indexes."""
        raise NotImplementedError

    @abstractmethod
    def clear(self) -> None:
        """Remove all items."""
        raise NotImplementedError

class SessionTable(AbstractRepository[Session]):
    """
    Fixed capacity collection of sessions.

    Sessions are only ever appended, before the timer is armed, and the
    whole table is torn down at exit. Inserting beyond the capacity raises
    CapacityError instead of truncating.

    Attributes:
        capacity: Maximum number of sessions.
        need4: Number of resolved IPv4 sessions.
        need6: Number of resolved IPv6 sessions.
    """

    def __init__(self, capacity: int = MAX_NUM_GROUPS) -> None:
        self.capacity = capacity
        self._sessions = []  # type: List[Session]
        self.need4 = 0
        self.need6 = 0

    def add(self, source: Optional[str], group: str) -> int:
        if len(self._sessions) >= self.capacity:
            raise CapacityError(
                f"Cannot add {source or '*'},{group}, max ({self.capacity}) reached"
            )
        self._sessions.append(Session(source, group))
        return len(self._sessions) - 1

    def put(self, items: Iterable[GroupPair]) -> List[int]:
        """Add (source, group) pairs, none of them if they do not all fit."""
        pairs = list(items)
        if len(self._sessions) + len(pairs) > self.capacity:
            raise CapacityError(
                f"Invalid number of groups given ({len(pairs)}), "
                f"or max ({self.capacity}) reached"
            )
        return [self.add(source, group) for source, group in pairs]

    def resolve(self, index: int, port: int) -> None:
        """
        Resolve the endpoints of a session.

        The group endpoint gets the port, the source endpoint does not as it
        is only used for source filtered joins. Counts the session towards
        the address family sockets the transport layer has to open.

        Raises:
            AddressError: If the group or source does not parse, or the
                source is of another family than the group.
        """
        session = self._sessions[index]
        grp = parse_endpoint(session.group, port)

        src = None
        if session.source:
            try:
                src = type(grp).from_text(session.source)
            except AddressError:
                raise AddressError(
                    f"{session.source} is not a valid source for {session.group}"
                )

        session.grp = grp
        session.src = src

        if grp.family == socket.AF_INET6:
            self.need6 += 1
        else:
            self.need4 += 1

    def resolve_all(self, port: int) -> None:
        for index in range(len(self._sessions)):
            self.resolve(index, port)
            self.reset_history(index)

    def reset_history(self, index: int) -> None:
        """Blank the history and seed the spinner from the group address."""
        session = self._sessions[index]
        session.history.extend(MARK_BLANK * STATUS_HISTORY)
        session.spin = ord(session.group[-1])

    def age(self) -> None:
        for session in self._sessions:
            session.age()

    def total(self) -> int:
        return sum(session.count for session in self._sessions)

    def families(self) -> Set[int]:
        result = set()  # type: Set[int]
        if self.need4:
            result.add(socket.AF_INET)
        if self.need6:
            result.add(socket.AF_INET6)
        return result

    def clear(self) -> None:
        self._sessions[:] = []
        self.need4 = 0
        self.need6 = 0

    def __getitem__(self, index: int) -> Session:
        return self._sessions[index]

    def __iter__(self) -> Iterator[Session]:
        yield from self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def __repr__(self) -> str:
        return "{}({}, capacity={})".format(
            type(self).__name__, self._sessions, self.capacity
        )

############################## END CLASSES ###################################

if __name__ == "__main__":
    table = SessionTable(capacity=3)
    table.put([(None, "225.1.2.3"), ("10.0.0.1", "232.1.1.1")])
    table.resolve_all(1234)
    print(repr(table))
    print(table.families())
