import functools
import logging
import queue
import threading

from typing import Any, Callable, Optional  # noqa


LOGGER = logging.getLogger(__name__)


class RemoteWatchError(Exception):
    pass


class TransientNetworkFailure(RemoteWatchError):
    """The request could not be completed or returned a non-2xx status."""


class AuthenticationFailed(TransientNetworkFailure):
    """The remote rejected our credentials (HTTP 401)."""


class MalformedResponse(RemoteWatchError):
    """The response body did not contain what we asked for."""


class CancellationRequested(RemoteWatchError):
    """Raised inside a watch loop when its task has been stopped."""


class ObservationScope(object):
    CHILDREN = 'children'
    DESCENDANTS = 'descendants'

    ALL = (CHILDREN, DESCENDANTS)

    @classmethod
    def validate(cls, scope):
        # type: (str) -> str
        if scope not in cls.ALL:
            raise ValueError("Unknown observation scope %r, expected one of: %s"
                             % (scope, ', '.join(cls.ALL)))
        return scope


class TaskState(object):
    CREATED = 'created'
    RUNNING = 'running'
    STOPPED = 'stopped'


def normalize_path(path):
    # type: (str) -> str
    """Return ``path`` with a leading slash and no trailing slash.

    The root ``"/"`` normalizes to the empty string, which is how the
    providers address their top level folder.
    """
    if not path.startswith('/'):
        path = '/' + path
    if path.endswith('/'):
        path = path[:-1]
    return path


class StopSignal(object):
    """Cancellation token shared between a task's worker and ``stop()``.

    Every blocking wait of a watch loop goes through this object so that
    setting it wakes the worker right away, whether it is sleeping off a
    backoff or waiting on a network response.
    """
    def __init__(self):
        # type: () -> None
        self._cond = threading.Condition()
        self._stopped = False

    def set(self):
        # type: () -> None
        with self._cond:
            self._stopped = True
            self._cond.notify_all()

    def is_set(self):
        # type: () -> bool
        return self._stopped

    def sleep(self, seconds):
        # type: (float) -> bool
        """Wait up to ``seconds``, returns True if stopped meanwhile."""
        with self._cond:
            self._cond.wait_for(lambda: self._stopped, timeout=seconds)
            return self._stopped

    def call(self, func, *args, **kwargs):
        # type: (Callable[..., Any], *Any, **Any) -> Any
        """Run ``func`` on a helper thread and wait for it or for stop.

        If the signal is set first, CancellationRequested is raised and the
        outstanding call is abandoned; its result is thrown away once the
        request hits its own timeout.
        """
        outcome = {}  # type: dict

        def _run():
            # type: () -> None
            try:
                outcome['value'] = func(*args, **kwargs)
            except Exception as e:
                outcome['error'] = e
            finally:
                with self._cond:
                    outcome['done'] = True
                    self._cond.notify_all()

        if self._stopped:
            raise CancellationRequested()
        t = threading.Thread(target=_run)
        t.daemon = True
        t.start()
        with self._cond:
            self._cond.wait_for(
                lambda: self._stopped or 'done' in outcome)
            if self._stopped:
                raise CancellationRequested()
        if 'error' in outcome:
            raise outcome['error']
        return outcome['value']


class TaskLifecycle(object):
    """State and notification plumbing every observation task composes.

    Tracks the created -> running -> stopped transitions and guarantees the
    changed callback is not invoked once the task has been stopped.
    """
    def __init__(self, path, scope, changed, stop_signal=None):
        # type: (str, str, Callable[[], None], Optional[StopSignal]) -> None
        self.path = normalize_path(path)
        self.scope = ObservationScope.validate(scope)
        self.signal = stop_signal if stop_signal is not None else StopSignal()
        self._changed = changed
        self._state = TaskState.CREATED
        self._lock = threading.RLock()

    @property
    def state(self):
        # type: () -> str
        return self._state

    @property
    def stopped(self):
        # type: () -> bool
        return self._state == TaskState.STOPPED

    def begin(self):
        # type: () -> bool
        with self._lock:
            if self._state != TaskState.CREATED:
                return False
            self._state = TaskState.RUNNING
            return True

    def stop(self):
        # type: () -> bool
        with self._lock:
            if self._state == TaskState.STOPPED:
                return False
            self._state = TaskState.STOPPED
        self.signal.set()
        return True

    def fire_changed(self):
        # type: () -> bool
        with self._lock:
            if self._state == TaskState.STOPPED:
                return False
            self._changed()
            return True


class ObservationTask(object):
    """One running watcher for one path.

    ``start`` blocks for the lifetime of the watch and is run by the worker
    that owns the task. ``stop`` may be called from any thread at any time,
    more than once, and makes ``start`` return promptly.
    """
    @property
    def path(self):
        # type: () -> str
        raise NotImplementedError('path')

    @property
    def state(self):
        # type: () -> str
        raise NotImplementedError('state')

    @property
    def stopped(self):
        # type: () -> bool
        raise NotImplementedError('stopped')

    def start(self):
        # type: () -> None
        raise NotImplementedError('start')

    def stop(self):
        # type: () -> None
        raise NotImplementedError('stop')

    def fire_changed(self):
        # type: () -> None
        raise NotImplementedError('fire_changed')


_SHUTDOWN = object()


class CallbackDispatcher(object):
    """Runs change callbacks, in submission order, on one delivery thread."""
    def __init__(self, name='remotewatch-delivery'):
        # type: (str) -> None
        self._name = name
        self._queue = None  # type: Optional[queue.Queue]
        self._thread = None  # type: Optional[threading.Thread]
        self._lock = threading.Lock()

    def submit(self, func, *args):
        # type: (Callable[..., None], *Any) -> None
        with self._lock:
            if self._thread is None:
                # Each delivery thread drains its own queue.
                self._queue = queue.Queue()
                self._thread = threading.Thread(
                    target=self._run, args=(self._queue,), name=self._name)
                self._thread.daemon = True
                self._thread.start()
            self._queue.put((func, args))

    def wrap(self, callback):
        # type: (Callable[[], None]) -> Callable[[], None]
        return functools.partial(self.submit, callback)

    def close(self, timeout=None):
        # type: (Optional[float]) -> None
        """Stop the delivery thread once already queued callbacks ran."""
        with self._lock:
            thread, self._thread = self._thread, None
            if thread is None:
                return
            self._queue.put(_SHUTDOWN)
        if thread is not threading.current_thread():
            thread.join(timeout)

    def _run(self, pending):
        # type: (queue.Queue) -> None
        while True:
            item = pending.get()
            if item is _SHUTDOWN:
                return
            func, args = item
            try:
                func(*args)
            except Exception:
                LOGGER.exception("Change callback %r failed", func)
