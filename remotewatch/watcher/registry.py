import logging
import threading

from typing import Any, Callable, Dict, List, Optional  # noqa

from remotewatch.watcher.shared import (
    CallbackDispatcher, ObservationScope, ObservationTask, normalize_path,
)


LOGGER = logging.getLogger(__name__)


class ObservationRegistry(object):
    """Keeps at most one running observation task per path.

    Each task loops on its own daemon thread.  Change callbacks are all
    delivered on the registry's single dispatcher thread, never on the
    thread that detected the change.
    """
    def __init__(self, dispatcher=None):
        # type: (Optional[CallbackDispatcher]) -> None
        if dispatcher is None:
            dispatcher = CallbackDispatcher()
        self._dispatcher = dispatcher
        self._tasks = {}  # type: Dict[str, ObservationTask]
        self._lock = threading.Lock()

    def register(self, path, scope, provider, on_changed):
        # type: (str, str, Any, Callable[[], None]) -> Optional[ObservationTask]
        path = normalize_path(path)
        ObservationScope.validate(scope)
        with self._lock:
            # The old task is stopped before its replacement exists; stop()
            # only flags the task so holding the lock here is cheap.
            previous = self._tasks.pop(path, None)
            if previous is not None:
                previous.stop()
            task = provider.create_observation_task(
                path, scope, self._dispatcher.wrap(on_changed))
            if task is None:
                LOGGER.debug("%r declined to observe %r", provider, path)
                return None
            self._tasks[path] = task
            self._start_worker(path, task)
        return task

    def unregister(self, path):
        # type: (str) -> bool
        with self._lock:
            task = self._tasks.pop(normalize_path(path), None)
        if task is None:
            return False
        task.stop()
        return True

    def clear(self):
        # type: () -> None
        with self._lock:
            tasks = list(self._tasks.values())
            self._tasks.clear()
        for task in tasks:
            task.stop()

    def changed_notification(self, path):
        # type: (str) -> bool
        with self._lock:
            task = self._tasks.get(normalize_path(path))
        if task is None:
            return False
        task.fire_changed()
        return True

    def get(self, path):
        # type: (str) -> Optional[ObservationTask]
        with self._lock:
            return self._tasks.get(normalize_path(path))

    def paths(self):
        # type: () -> List[str]
        with self._lock:
            return sorted(self._tasks)

    def close(self):
        # type: () -> None
        self.clear()
        self._dispatcher.close()

    def __contains__(self, path):
        # type: (object) -> bool
        if not isinstance(path, str):
            return False
        return self.get(path) is not None

    def __len__(self):
        # type: () -> int
        with self._lock:
            return len(self._tasks)

    def __enter__(self):
        # type: () -> ObservationRegistry
        return self

    def __exit__(self, *exc_info):
        # type: (*Any) -> None
        self.close()

    def _start_worker(self, path, task):
        # type: (str, ObservationTask) -> None
        t = threading.Thread(target=self._run, args=(task,),
                             name='remotewatch:%s' % (path or '/'))
        t.daemon = True
        t.start()

    def _run(self, task):
        # type: (ObservationTask) -> None
        try:
            task.start()
        except Exception:
            LOGGER.exception("Observation task for %r crashed", task.path)
