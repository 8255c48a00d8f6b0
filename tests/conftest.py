import threading

import mock
import pytest

from remotewatch.config import Config
from remotewatch.watcher.shared import (
    StopSignal, CancellationRequested, TaskState,
)


class InlineStopSignal(StopSignal):
    """Stop signal that never waits.

    Sleeps are recorded instead of taken and calls run on the caller's
    thread, which keeps the loops deterministic in unit tests.
    """
    def __init__(self):
        super(InlineStopSignal, self).__init__()
        self.sleeps = []

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        return self.is_set()

    def call(self, func, *args, **kwargs):
        if self.is_set():
            raise CancellationRequested()
        result = func(*args, **kwargs)
        if self.is_set():
            raise CancellationRequested()
        return result


class Recorder(object):
    def __init__(self):
        self.calls = 0
        self.fired = threading.Event()

    def __call__(self):
        self.calls += 1
        self.fired.set()


class FakeTask(object):
    def __init__(self, path, scope, changed, events):
        self.path = path
        self.scope = scope
        self.changed = changed
        self.state = TaskState.CREATED
        self.stop_calls = 0
        self.started = threading.Event()
        self._stopped = threading.Event()
        self._events = events
        self._lock = threading.Lock()

    def start(self):
        with self._lock:
            if self.state == TaskState.STOPPED:
                return
            self.state = TaskState.RUNNING
            self._events.append(('start', self.path, id(self)))
        self.started.set()
        self._stopped.wait(5)

    def stop(self):
        with self._lock:
            self.stop_calls += 1
            self.state = TaskState.STOPPED
            self._events.append(('stop', self.path, id(self)))
        self._stopped.set()

    def fire_changed(self):
        self.changed()


class FakeProvider(object):
    def __init__(self, decline=False):
        self.decline = decline
        self.events = []
        self.tasks = []
        self._lock = threading.Lock()

    def create_observation_task(self, path, scope, on_changed):
        if self.decline:
            return None
        task = FakeTask(path, scope, on_changed, self.events)
        with self._lock:
            self.events.append(('create', path, id(task)))
            self.tasks.append(task)
        return task


def make_response(status_code=200, json_body=None, content=b'', text=''):
    response = mock.Mock()
    response.status_code = status_code
    response.content = content
    response.text = text
    if isinstance(json_body, Exception):
        response.json.side_effect = json_body
    else:
        response.json.return_value = json_body
    return response


@pytest.fixture
def stop_signal():
    return InlineStopSignal()


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def fast_config():
    return Config.create(
        etag_interval=0.05,
        etag_failure_interval=0.05,
        auth_failure_interval=0.05,
        cursor_retry_interval=0.05,
        longpoll_failure_interval=0.05,
        request_timeout=5,
    )
