#!/usr/bin/env python
# -*- encoding: utf-8 -*-

############################## BEGIN IMPORTS ##################################

import _curses, curses
import locale
import shutil
from contextlib import contextmanager
from typing import Optional, Tuple

############################## END IMPORTS ####################################

import logging
logger = logging.getLogger(__name__)

############################## BEGIN TERMINAL #################################

@contextmanager
def locale_context():
    """
    Context manager to temporarily switch to the user's locale, so that
    curses can measure and draw non-ASCII text.
    """
    old_locale = locale.setlocale(locale.LC_ALL, None)

    try:
        locale.setlocale(locale.LC_ALL, "")
        yield

    finally:
        try:
            locale.setlocale(locale.LC_ALL, old_locale)
        except locale.Error as e:
            logger.error(f"Failed to restore locale {old_locale}: {e}")

class Terminal(object):
    """Thin curses wrapper providing cursor-addressed output.

    The screen is only initialized by `open()`, all other primitives are
    no-ops until then so that the size can be queried up front.

    Attributes:
        stdscr: The root curses window, None until opened.
        width/height: Last known terminal size.
    """

    def __init__(self, width: int = 80, height: int = 24) -> None:
        self.stdscr = None  # type: Optional[_curses._CursesWindow]
        self.width = width
        self.height = height

    def open(self) -> "Terminal":
        if self.stdscr is None:
            self.stdscr = curses.initscr()
            self.stdscr.keypad(True)
            try:
                curses.start_color()
                curses.use_default_colors()
            except curses.error:
                pass
        return self

    def size(self) -> Tuple[int, int]:
        """Query the terminal size, returns (width, height)."""
        cols, lines = shutil.get_terminal_size((self.width, self.height))
        self.width, self.height = cols, lines

        if self.stdscr is not None:
            try:
                curses.resizeterm(lines, cols)
            except curses.error:
                logger.debug("Failed resizing screen to %dx%d", cols, lines)

        return self.width, self.height

    def raw(self) -> None:
        """Unbuffered input without echo, signal keys keep working."""
        if self.stdscr is None:
            return
        curses.noecho()
        curses.cbreak()

    def cooked(self) -> None:
        if self.stdscr is None:
            return
        curses.nocbreak()
        curses.echo()
        curses.endwin()
        self.stdscr = None

    def hidecursor(self) -> None:
        try:
            curses.curs_set(0)
        except curses.error:
            pass

    def showcursor(self) -> None:
        try:
            curses.curs_set(1)
        except curses.error:
            pass

    def gotoxy(self, x: int, y: int) -> None:
        if self.stdscr is None:
            return
        try:
            self.stdscr.move(y, x)
        except _curses.error:
            pass

    def cls(self) -> None:
        if self.stdscr is not None:
            self.stdscr.erase()

    def clrtoeol(self) -> None:
        if self.stdscr is not None:
            self.stdscr.clrtoeol()

    def write(self, text: str, attr: int = curses.A_NORMAL) -> None:
        if self.stdscr is None:
            return
        try:
            self.stdscr.addstr(text, attr)
        except _curses.error:
            # Writing into the last cell, or off screen
            pass

    def refresh(self) -> None:
        if self.stdscr is not None:
            self.stdscr.refresh()

############################## END TERMINAL ###################################
