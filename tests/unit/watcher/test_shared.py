import threading
import time

import pytest

from remotewatch.watcher.shared import (
    CancellationRequested, ObservationScope, StopSignal, TaskLifecycle,
    TaskState, normalize_path,
)


@pytest.mark.parametrize('path,expected', [
    ('foo/bar/', '/foo/bar'),
    ('/foo/bar', '/foo/bar'),
    ('foo', '/foo'),
    ('/', ''),
    ('', ''),
])
def test_normalize_path(path, expected):
    assert normalize_path(path) == expected


def test_unknown_scope_is_rejected():
    assert ObservationScope.validate('children') == 'children'
    with pytest.raises(ValueError):
        ObservationScope.validate('everything')


class TestStopSignal(object):
    def test_call_returns_value(self):
        assert StopSignal().call(lambda a, b=0: a + b, 1, b=2) == 3

    def test_call_reraises_error(self):
        def fail():
            raise KeyError('x')

        with pytest.raises(KeyError):
            StopSignal().call(fail)

    def test_call_after_stop_is_cancelled(self):
        signal = StopSignal()
        signal.set()
        with pytest.raises(CancellationRequested):
            signal.call(lambda: 1)

    def test_stop_wakes_blocked_call(self):
        signal = StopSignal()
        release = threading.Event()
        threading.Timer(0.1, signal.set).start()
        start = time.time()
        try:
            with pytest.raises(CancellationRequested):
                signal.call(release.wait, 10)
        finally:
            release.set()
        assert time.time() - start < 5

    def test_sleep_returns_early_on_stop(self):
        signal = StopSignal()
        threading.Timer(0.1, signal.set).start()
        start = time.time()
        assert signal.sleep(10)
        assert time.time() - start < 5

    def test_sleep_times_out_without_stop(self):
        assert not StopSignal().sleep(0.01)


class TestTaskLifecycle(object):
    def test_transitions(self):
        calls = []
        lifecycle = TaskLifecycle('a/', 'children', lambda: calls.append(1))
        assert lifecycle.path == '/a'
        assert lifecycle.state == TaskState.CREATED
        assert lifecycle.begin()
        assert not lifecycle.begin()
        assert lifecycle.state == TaskState.RUNNING
        assert lifecycle.fire_changed()
        assert lifecycle.stop()
        assert not lifecycle.stop()
        assert lifecycle.stopped
        assert lifecycle.signal.is_set()
        assert not lifecycle.fire_changed()
        assert calls == [1]

    def test_stopped_task_never_runs(self):
        lifecycle = TaskLifecycle('/a', 'descendants', lambda: None)
        lifecycle.stop()
        assert not lifecycle.begin()
        assert lifecycle.state == TaskState.STOPPED
