import os
import signal

import pytest

from conftest import FakeTransport, RecordingPlotter
from errors import TransportError
from plotter import format_stats
from sigloop import SignalMux, main_loop


@pytest.fixture
def mux(ctx):
    mux = SignalMux(ctx)
    mux.install()
    yield mux
    mux.uninstall()


def test_loop_runs_until_stopped(ctx, table):
    transport = FakeTransport(ctx, steps=3)
    plotter = RecordingPlotter(table)

    assert main_loop(ctx, transport, plotter) == 3
    assert transport.initialized
    assert transport.closed
    assert plotter.redraws == [False]


def test_tick_renders_once_per_timer_fire(ctx, table):
    def fire(transport):
        if transport.calls in (1, 3):
            ctx.tick = True

    plotter = RecordingPlotter(table)
    main_loop(ctx, FakeTransport(ctx, steps=5, action=fire), plotter)

    assert plotter.shows == 2
    assert not ctx.tick


def test_resize_forces_repaint_with_size_query(ctx, table):
    def resize(transport):
        if transport.calls == 2:
            ctx.winchg = True

    plotter = RecordingPlotter(table)
    main_loop(ctx, FakeTransport(ctx, steps=4, action=resize), plotter)

    assert plotter.redraws == [False, True]
    assert not ctx.winchg


def test_transport_error_leaves_loop_at_once(ctx, table):
    def fail(transport):
        if transport.calls == 2:
            raise TransportError("Failed sending to 225.1.2.3")

    transport = FakeTransport(ctx, steps=10, action=fail)

    with pytest.raises(TransportError):
        main_loop(ctx, transport, RecordingPlotter(table))

    assert transport.calls == 2
    assert transport.closed
    assert ctx.running


@pytest.mark.parametrize("signo", [signal.SIGINT, signal.SIGHUP, signal.SIGTERM])
def test_termination_signal_ends_loop_after_current_step(ctx, table, mux, signo):
    def receive(transport):
        table[transport.calls % len(table)].count += 1
        if transport.calls == 2:
            os.kill(os.getpid(), signo)

    transport = FakeTransport(ctx, steps=100, action=receive)
    iterations = main_loop(ctx, transport, RecordingPlotter(table), mux)

    assert iterations == 2
    assert transport.calls == 2
    assert not ctx.running
    assert format_stats(table)[-1] == "\nReceived total: 2 packets"
    assert table.total() == sum(s.count for s in table)


def test_winch_signal_only_sets_flag(ctx, mux):
    os.kill(os.getpid(), signal.SIGWINCH)
    assert ctx.winchg
    assert ctx.running


def test_alarm_signal_only_sets_flag(ctx, mux):
    os.kill(os.getpid(), signal.SIGALRM)
    assert ctx.take_tick()
    assert not ctx.take_tick()


def test_arm_and_disarm_timer(ctx, mux):
    mux.arm()
    remaining, interval = signal.getitimer(signal.ITIMER_REAL)
    assert 0 < remaining <= ctx.settle
    assert interval == pytest.approx(ctx.period, abs=0.001)

    mux.disarm()
    assert signal.getitimer(signal.ITIMER_REAL) == (0.0, 0.0)


def test_uninstall_restores_handlers(ctx):
    before = signal.getsignal(signal.SIGTERM)
    with SignalMux(ctx):
        assert signal.getsignal(signal.SIGTERM) != before
    assert signal.getsignal(signal.SIGTERM) == before
