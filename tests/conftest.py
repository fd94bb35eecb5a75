import pytest

from sigloop import SessionContext
from storage import SessionTable


class FakeTerminal(object):
    """Records every terminal primitive instead of driving curses."""

    def __init__(self, width=100, height=40):
        self.width = width
        self.height = height
        self.calls = []
        self.writes = []
        self.cursor = (0, 0)

    def _call(self, name):
        self.calls.append((name,))

    def size(self):
        self._call("size")
        return self.width, self.height

    def raw(self):
        self._call("raw")

    def cooked(self):
        self._call("cooked")

    def hidecursor(self):
        self._call("hidecursor")

    def showcursor(self):
        self._call("showcursor")

    def cls(self):
        self._call("cls")

    def clrtoeol(self):
        self._call("clrtoeol")

    def refresh(self):
        self._call("refresh")

    def gotoxy(self, x, y):
        self.calls.append(("gotoxy", x, y))
        self.cursor = (x, y)

    def write(self, text, attr=0):
        self.calls.append(("write", text))
        self.writes.append((self.cursor, text))

    def moves(self):
        return [c for c in self.calls if c[0] == "gotoxy"]

    def rows_written(self, row):
        return [text for (x, y), text in self.writes if y == row]


class FakeTransport(object):
    """Runs a scripted action on every step."""

    def __init__(self, ctx, steps=3, action=None):
        self.ctx = ctx
        self.steps = steps
        self.action = action
        self.calls = 0
        self.initialized = False
        self.closed = False

    def init(self):
        self.initialized = True

    def step(self):
        self.calls += 1
        if self.action is not None:
            self.action(self)
        if self.calls >= self.steps:
            self.ctx.stop()

    def close(self):
        self.closed = True


class RecordingPlotter(object):
    def __init__(self, table):
        self.table = table
        self.redraws = []
        self.shows = 0
        self.closed = False

    def redraw(self, resized=False):
        self.redraws.append(resized)

    def show(self):
        self.shows += 1
        self.table.age()

    def close(self):
        self.closed = True


@pytest.fixture
def table():
    table = SessionTable(capacity=8)
    table.put([
        (None, "225.1.2.3"),
        (None, "225.1.2.4"),
        ("10.0.0.1", "232.1.1.1"),
    ])
    table.resolve_all(1234)
    return table


@pytest.fixture
def ctx(table):
    return SessionContext(table, period=0.01, settle=5.0)


@pytest.fixture
def terminal():
    return FakeTerminal()
