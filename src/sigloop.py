#!/usr/bin/env python
# -*- encoding: utf-8 -*-

"""
Timer and signal handling, and the main loop.

Signal handlers only ever assign a single flag in the SessionContext. The
main loop polls those flags at iteration boundaries, so all rendering and
socket I/O happens on the one control thread:

    SIGALRM                  -> ctx.tick     (periodic interval timer)
    SIGWINCH                 -> ctx.winchg   (terminal resized)
    SIGINT, SIGHUP, SIGTERM  -> ctx.running  (cleared, cooperative stop)
"""

############################## BEGIN IMPORTS ##################################

import signal
from typing import Any, Callable, Dict, Optional
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from plotter import Plotter
    from transport import Transport

############################## END IMPORTS ####################################

from config import SETTLE_SECS
from storage import SessionTable
import logging
logger = logging.getLogger(__name__)

############################## BEGIN SIGLOOP ##################################

EXIT_SIGNALS = (signal.SIGINT, signal.SIGHUP, signal.SIGTERM)
Handler = Callable[[int, Any], None]

class SessionContext(object):
    """
    State owned by the main loop and shared with the signal handlers.

    Attributes:
        table: The session table.
        running: Cleared by a termination signal or a finished transport.
        winchg: Set on terminal resize, cleared when the loop repaints.
        tick: Set by the interval timer, cleared when the loop renders.
        period: Timer interval in seconds.
        settle: Delay before the first timer fire, in seconds.
    """

    def __init__(
        self,
        table: SessionTable,
        period: float = 0.1,
        settle: float = SETTLE_SECS,
    ) -> None:
        self.table = table
        self.period = period
        self.settle = settle

        self.running = True
        self.winchg = False
        self.tick = False

    def stop(self) -> None:
        self.running = False

    def take_tick(self) -> bool:
        if not self.tick:
            return False
        self.tick = False
        return True

    def take_winchg(self) -> bool:
        if not self.winchg:
            return False
        self.winchg = False
        return True

class SignalMux(object):
    """Installs the flag-setting handlers and arms the interval timer."""

    def __init__(self, ctx: SessionContext) -> None:
        self.ctx = ctx
        self._saved = {}  # type: Dict[int, Any]
        self.armed = False

    def _exit_loop(self, signo: int, frame: Any) -> None:
        self.ctx.running = False

    def _winch(self, signo: int, frame: Any) -> None:
        self.ctx.winchg = True

    def _alarm(self, signo: int, frame: Any) -> None:
        self.ctx.tick = True

    def _install(self, signo: int, handler: Handler) -> None:
        self._saved.setdefault(signo, signal.getsignal(signo))
        signal.signal(signo, handler)

    def install(self) -> None:
        for signo in EXIT_SIGNALS:
            self._install(signo, self._exit_loop)
        self._install(signal.SIGWINCH, self._winch)
        self._install(signal.SIGALRM, self._alarm)

    def arm(self) -> None:
        """Start the interval timer, first fire after the settle delay."""
        signal.setitimer(signal.ITIMER_REAL, self.ctx.settle, self.ctx.period)
        self.armed = True
        logger.debug(
            "Timer armed, first tick in %.1fs then every %.3fs",
            self.ctx.settle, self.ctx.period,
        )

    def disarm(self) -> None:
        if self.armed:
            signal.setitimer(signal.ITIMER_REAL, 0)
            self.armed = False

    def uninstall(self) -> None:
        self.disarm()
        for signo, handler in self._saved.items():
            signal.signal(signo, handler if handler is not None else signal.SIG_DFL)
        self._saved.clear()

    def __enter__(self) -> "SignalMux":
        self.install()
        return self

    def __exit__(self, *exc: Any) -> None:
        self.uninstall()

def main_loop(
    ctx: SessionContext,
    transport: "Transport",
    plotter: "Plotter",
    mux: Optional[SignalMux] = None,
) -> int:
    """
    Run until a termination signal arrives or the transport is done.

    Each iteration repaints the screen when needed (first iteration, after a
    resize), renders one tick if the timer fired, then runs one send or
    receive step. A TransportError from the step leaves the loop at once and
    propagates to the caller.

    Returns:
        Number of iterations run.
    """
    iterations = 0

    try:
        # Partially opened sockets are released by close() as well
        transport.init()
        if mux is not None:
            mux.arm()

        first = True
        while ctx.running:
            resized = ctx.take_winchg()
            if first or resized:
                plotter.redraw(resized=resized)
                first = False

            if ctx.take_tick():
                plotter.show()

            transport.step()
            iterations += 1

        logger.debug("Leaving main loop after %d iterations", iterations)

    finally:
        if mux is not None:
            mux.disarm()
        transport.close()

    return iterations

############################## END SIGLOOP ####################################
