#!/usr/bin/env python
# -*- encoding: utf-8 -*-

############################## BEGIN IMPORTS ##################################

import curses
import sys
import time
from abc import ABC, abstractmethod
from collections import deque
from itertools import islice
from typing import Deque, Dict, List, Optional, TextIO

############################## END IMPORTS ####################################

from config import GROUP_ROW, HEADING_ROW, HOSTDATE_ROW, TITLE_ROW
from config import LOG_DATEFMT, STATUS_HISTORY
from curses_helper import Terminal
from storage import Session, SessionTable
from utils import get_hostname, ifinfo
import logging
logger = logging.getLogger(__name__)

############################## BEGIN PLOTTER ##################################

SPINNER = "|/-\\"
PROGRESS = ".*"
HOWTO = "ctrl-c to exit"

class LogBuffer(logging.Handler):
    """Logging handler feeding the log region of the full screen.

    Keeps the most recent formatted lines, `dirty` tells the plotter that
    there is something new to draw.
    """

    def __init__(self, maxlen: int = 200, level: int = logging.NOTSET) -> None:
        super(LogBuffer, self).__init__(level)
        self.lines = deque(maxlen=maxlen)  # type: Deque[str]
        self.dirty = False
        self.setFormatter(
            logging.Formatter("%(asctime)s  %(message)s", datefmt=LOG_DATEFMT)
        )

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
        except Exception:
            self.handleError(record)
            return
        self.lines.extend(msg.splitlines() or [""])
        self.dirty = True

def spin(session: Session) -> str:
    """Spinner glyph of a session, the phase advances on activity only."""
    act = SPINNER[session.spin % len(SPINNER)]
    if session.active:
        session.spin += 1
    return act

def format_line(session: Session, act: str, swidth: int) -> str:
    """One plotter row: label, spinner, recent history and packet count."""
    window = ""
    if swidth > 0:
        start = len(session.history) - swidth
        window = "".join(islice(session.history, start, None))
    return f"{session.label[:34]:<31s}  {act} [{window}] {session.count:13d}"

def format_stats(table: SessionTable) -> List[str]:
    """Final per group statistics, as printed when the receiver exits."""
    gwidth = max((len(s.group) for s in table), default=0)
    lines = [
        f"Group {s.group:<{gwidth}} received {s.count} packets, gaps: {s.gaps}"
        for s in table
    ]
    lines.append(f"\nReceived total: {table.total()} packets")
    return lines

class Plotter(ABC):
    """Base class of the two rendering modes.

    Attributes:
        table: Sessions to render.
        ops: Number of terminal control operations issued so far.
    """

    def __init__(self, table: SessionTable) -> None:
        self.table = table
        self.ops = 0

    @abstractmethod
    def redraw(self, resized: bool = False) -> None:
        """Full repaint, on startup and after the terminal was resized."""
        raise NotImplementedError

    @abstractmethod
    def show(self) -> None:
        """Per tick update, ages every session history by one slot."""
        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        raise NotImplementedError

class FullPlotter(Plotter):
    """Cursor-addressed status screen.

    Layout, top to bottom: title, host/date bar, column heading, one row per
    session, log heading and the log region. Only the rows that changed
    since the previous tick are rewritten.
    """

    def __init__(
        self,
        terminal: Terminal,
        table: SessionTable,
        join: bool = True,
        iface: str = "",
        logbuf: Optional[LogBuffer] = None,
        hostname: Optional[str] = None,
        address: Optional[str] = None,
    ) -> None:
        super(FullPlotter, self).__init__(table)
        self.terminal = terminal
        self.join = join
        self.iface = iface
        self.logbuf = logbuf
        self.hostname = hostname
        self.address = address

        self.width = terminal.width
        self.height = terminal.height
        self._opened = False
        self._rows = {}  # type: Dict[int, str]

    @property
    def title(self) -> str:
        if self.join:
            return "mcjoin :: receiving multicast"
        return "mcjoin :: sending multicast"

    @property
    def log_heading_row(self) -> int:
        return GROUP_ROW + len(self.table) + 1

    @property
    def log_row(self) -> int:
        return self.log_heading_row + 1

    @property
    def exit_row(self) -> int:
        return max(self.height - 1, self.log_row)

    def gotoxy(self, x: int, y: int) -> None:
        self.ops += 1
        self.terminal.gotoxy(max(x, 0), y)

    def redraw(self, resized: bool = False) -> None:
        if resized:
            self.width, self.height = self.terminal.size()

        if not self._opened:
            self._opened = True
            self.terminal.raw()
            self.terminal.hidecursor()
            self.ops += 2

        self.terminal.cls()
        self.ops += 1

        width = self.width
        self.gotoxy((width - len(self.title)) // 2, TITLE_ROW)
        self.terminal.write(self.title, curses.A_BOLD)
        self.gotoxy((width - len(HOWTO)) // 2, HOSTDATE_ROW)
        self.terminal.write(HOWTO, curses.A_DIM)

        self.gotoxy(0, HEADING_ROW)
        heading = f"{'SOURCE,GROUP':<31s}    PLOTTER{' ' * max(width - 55, 1)}      PACKETS"
        self.terminal.write(heading, curses.A_REVERSE)

        self.gotoxy(0, self.log_heading_row)
        heading = f"{'TIME':<24s}  LOG{' ' * max(width - 29, 1)}"
        self.terminal.write(heading, curses.A_REVERSE)

        # Screen is blank now, everything has to be painted again
        self._rows.clear()
        if self.logbuf is not None:
            self.logbuf.dirty = True

        if resized:
            self.paint(advance=False)
        self.terminal.refresh()

    def paint(self, advance: bool = True) -> None:
        """Host/date bar, session rows and log region, no aging."""
        if self.hostname is None:
            self.hostname = get_hostname()
        if self.address is None:
            self.address = ifinfo(self.iface)

        now = time.ctime()
        self.gotoxy(0, HOSTDATE_ROW)
        self.terminal.write(f"{self.hostname} ({self.address}@{self.iface})")
        self.gotoxy(self.width - len(now) - 1, HOSTDATE_ROW)
        self.terminal.write(now)

        swidth = min(self.width - 50, STATUS_HISTORY)
        last_row = self.height - 1

        for i, session in enumerate(self.table):
            # Spinner must turn for every session, visible or not
            if advance:
                act = spin(session)
            else:
                act = SPINNER[session.spin % len(SPINNER)]
            line = format_line(session, act, swidth)
            row = GROUP_ROW + i

            if row >= last_row or self._rows.get(i) == line:
                continue

            self._rows[i] = line
            self.gotoxy(0, row)
            self.terminal.write(line)

        self.log_show()

    def log_show(self) -> None:
        if self.logbuf is None or not self.logbuf.dirty:
            return
        self.logbuf.dirty = False

        rows = self.height - self.log_row - 1
        if rows <= 0:
            return

        lines = list(self.logbuf.lines)[-rows:]
        for i, line in enumerate(lines):
            self.gotoxy(0, self.log_row + i)
            self.terminal.write(line[:max(self.width - 1, 0)])
            self.terminal.clrtoeol()

    def show(self) -> None:
        self.paint()
        self.terminal.refresh()
        self.table.age()

    def close(self) -> None:
        if not self._opened:
            return
        self.gotoxy(0, self.exit_row)
        self.terminal.showcursor()
        self.terminal.cooked()
        self.ops += 2
        self._opened = False

class OldPlotter(Plotter):
    """Plain output mode, no cursor control at all.

    Emits one progress character per tick in which any session saw
    traffic, toggling between the two PROGRESS symbols.
    """

    def __init__(
        self,
        table: SessionTable,
        stream: Optional[TextIO] = sys.stdout,
    ) -> None:
        super(OldPlotter, self).__init__(table)
        self.stream = stream
        self.act = ""
        self.emitted = 0

    def redraw(self, resized: bool = False) -> None:
        return

    def progress(self) -> None:
        self.act = PROGRESS[1] if self.act == PROGRESS[0] else PROGRESS[0]
        self.emitted += 1
        if self.stream is None:
            return
        self.stream.write(self.act)
        self.stream.flush()

    def show(self) -> None:
        if any(session.active for session in self.table):
            self.progress()
        self.table.age()

    def close(self) -> None:
        if self.stream is not None and self.emitted:
            self.stream.write("\n")
            self.stream.flush()

############################## END PLOTTER ####################################
