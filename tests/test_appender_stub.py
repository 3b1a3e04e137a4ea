import logging

from promxy.appender_stub import AppenderStub
from promxy.labels import from_strings

MESSAGE = "No remote_write endpoint defined in promxy"


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def warnings_logged(caplog):
    return [r for r in caplog.records if r.getMessage() == MESSAGE]


def test_add_returns_zero_and_warns_once(caplog):
    caplog.set_level(logging.WARNING, logger="promxy.appender_stub")
    clock = FakeClock()
    stub = AppenderStub(clock=clock)
    labels = from_strings("__name__", "up")
    assert stub.add(labels, 1, 1.0) == 0
    clock.now = 30.0
    assert stub.add(labels, 2, 2.0) == 0
    assert len(warnings_logged(caplog)) == 1


def test_warns_again_after_interval(caplog):
    caplog.set_level(logging.WARNING, logger="promxy.appender_stub")
    clock = FakeClock()
    stub = AppenderStub(interval=60.0, clock=clock)
    labels = from_strings("__name__", "up")
    stub.add(labels, 1, 1.0)
    clock.now = 61.0
    stub.add(labels, 2, 1.0)
    assert len(warnings_logged(caplog)) == 2
    # Exactly one interval later is not yet past the interval.
    clock.now = 121.0
    stub.add(labels, 3, 1.0)
    assert len(warnings_logged(caplog)) == 2


def test_add_fast_goes_through_add(caplog):
    caplog.set_level(logging.WARNING, logger="promxy.appender_stub")
    stub = AppenderStub(clock=FakeClock())
    assert stub.add_fast(from_strings("__name__", "up"), 5, 1, 1.0) is None
    assert len(warnings_logged(caplog)) == 1
    assert warnings_logged(caplog)[0].levelno == logging.WARNING