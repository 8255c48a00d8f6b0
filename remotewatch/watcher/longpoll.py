import logging
import math
import threading

import requests

from typing import Any, Callable, Dict, Optional, Tuple  # noqa

from remotewatch.config import Config, MAX_SERVER_BACKOFF
from remotewatch.watcher.shared import (
    ObservationTask, ObservationScope, TaskLifecycle, StopSignal,
    CancellationRequested, TransientNetworkFailure, AuthenticationFailed,
    MalformedResponse,
)


LOGGER = logging.getLogger(__name__)


class CursorReset(MalformedResponse):
    """The server no longer accepts the cursor and a new one is needed."""


class CursorCache(object):
    """Latest known change-stream cursor for each watched path.

    One instance is shared by every cursor task of a provider.  Recursive
    and flat cursors for the same path are kept apart.  Entries are only
    written with cursors that were fetched successfully.
    """
    def __init__(self):
        # type: () -> None
        self._cursors = {}  # type: Dict[Tuple[str, bool], str]
        self._lock = threading.Lock()

    def get(self, path, recursive=False):
        # type: (str, bool) -> Optional[str]
        with self._lock:
            return self._cursors.get((path, recursive))

    def set(self, path, cursor, recursive=False):
        # type: (str, str, bool) -> None
        with self._lock:
            self._cursors[(path, recursive)] = cursor

    def discard(self, path, recursive=False):
        # type: (str, bool) -> None
        with self._lock:
            self._cursors.pop((path, recursive), None)

    def clear(self):
        # type: () -> None
        with self._lock:
            self._cursors.clear()

    def __contains__(self, path):
        # type: (object) -> bool
        with self._lock:
            return any(key[0] == path for key in self._cursors)

    def __len__(self):
        # type: () -> int
        with self._lock:
            return len(self._cursors)


class DropboxNotifyAPI(object):
    """The two list_folder endpoints a cursor task talks to."""
    def __init__(self, session, access_token, config=None):
        # type: (requests.Session, str, Optional[Config]) -> None
        self._session = session
        self._access_token = access_token
        self._config = config or Config()

    def latest_cursor(self, path, recursive=False):
        # type: (str, bool) -> str
        body = {'path': path}  # type: Dict[str, Any]
        if recursive:
            body['recursive'] = True
        headers = {'Authorization': 'Bearer %s' % self._access_token}
        parsed = self._post(self._config.cursor_url, body, headers,
                            self._config.request_timeout)
        cursor = parsed.get('cursor')
        if not isinstance(cursor, str) or not cursor:
            raise MalformedResponse(
                "get_latest_cursor response has no cursor: %r" % parsed)
        return cursor

    def longpoll(self, cursor):
        # type: (str) -> Tuple[bool, int]
        body = {'cursor': cursor, 'timeout': self._config.longpoll_timeout}
        parsed = self._post(self._config.longpoll_url, body, {},
                            self._config.longpoll_read_timeout)
        changes = parsed.get('changes')
        if not isinstance(changes, bool):
            raise MalformedResponse(
                "longpoll response has no changes flag: %r" % parsed)
        backoff = parsed.get('backoff', 0)
        if (isinstance(backoff, bool)
                or not isinstance(backoff, (int, float))
                or math.isnan(backoff)):
            raise MalformedResponse(
                "longpoll response has a bad backoff: %r" % parsed)
        return changes, int(min(max(backoff, 0), MAX_SERVER_BACKOFF))

    def _post(self, url, body, headers, timeout):
        # type: (str, Dict[str, Any], Dict[str, str], float) -> Dict[str, Any]
        try:
            response = self._session.post(
                url, json=body, headers=headers,
                timeout=(self._config.request_timeout, timeout))
        except requests.RequestException as e:
            raise TransientNetworkFailure("POST %s failed: %s" % (url, e))
        if response.status_code == 401:
            raise AuthenticationFailed("POST %s was rejected: 401" % url)
        if response.status_code == 409:
            raise CursorReset("POST %s returned 409: %s"
                              % (url, response.text))
        if not 200 <= response.status_code < 300:
            raise TransientNetworkFailure(
                "POST %s returned %s" % (url, response.status_code))
        try:
            parsed = response.json()
        except ValueError as e:
            raise MalformedResponse("POST %s returned invalid JSON: %s"
                                    % (url, e))
        if not isinstance(parsed, dict):
            raise MalformedResponse("POST %s returned %r" % (url, parsed))
        return parsed


class CursorObservationTask(ObservationTask):
    def __init__(self, path, scope, changed, api, cursor_cache, config=None,
                 stop_signal=None):
        # type: (str, str, Callable[[], None], DropboxNotifyAPI, CursorCache, Optional[Config], Optional[StopSignal]) -> None
        self._lifecycle = TaskLifecycle(path, scope, changed, stop_signal)
        self._api = api
        self._cache = cursor_cache
        self._config = config or Config()
        self._recursive = scope == ObservationScope.DESCENDANTS
        self._cursor = None  # type: Optional[str]

    @property
    def path(self):
        # type: () -> str
        return self._lifecycle.path

    @property
    def scope(self):
        # type: () -> str
        return self._lifecycle.scope

    @property
    def state(self):
        # type: () -> str
        return self._lifecycle.state

    @property
    def stopped(self):
        # type: () -> bool
        return self._lifecycle.stopped

    @property
    def cursor(self):
        # type: () -> Optional[str]
        return self._cursor

    def start(self):
        # type: () -> None
        if not self._lifecycle.begin():
            return
        LOGGER.debug("Watching %r via cursor long-polling", self.path)
        try:
            self._run()
        except CancellationRequested:
            pass
        LOGGER.debug("Stopped watching %r", self.path)

    def stop(self):
        # type: () -> None
        self._lifecycle.stop()

    def fire_changed(self):
        # type: () -> None
        self._lifecycle.fire_changed()

    def _run(self):
        # type: () -> None
        signal = self._lifecycle.signal
        self._cursor = self._acquire_cursor()
        while not signal.is_set():
            try:
                changes, backoff = signal.call(self._api.longpoll, self._cursor)
            except CursorReset as e:
                LOGGER.warning("Cursor for %r was reset: %s", self.path, e)
                self._cache.discard(self.path, self._recursive)
                self._cursor = self._acquire_cursor()
                continue
            except (TransientNetworkFailure, MalformedResponse) as e:
                LOGGER.debug("Long-poll for %r failed: %s", self.path, e)
                if signal.sleep(self._config.longpoll_failure_interval):
                    return
                continue
            if signal.is_set():
                return
            if changes:
                LOGGER.info("%r changed", self.path)
                self.fire_changed()
                self._refresh_cursor()
            if backoff > 0 and signal.sleep(backoff):
                return

    def _acquire_cursor(self):
        # type: () -> str
        cached = self._cache.get(self.path, self._recursive)
        if cached is not None:
            return cached
        signal = self._lifecycle.signal
        auth_failing = False
        while True:
            try:
                cursor = signal.call(
                    self._api.latest_cursor, self.path, self._recursive)
            except AuthenticationFailed as e:
                if not auth_failing:
                    LOGGER.error("%s; retrying in %ss", e,
                                 self._config.auth_failure_interval)
                auth_failing = True
                interval = self._config.auth_failure_interval
            except (TransientNetworkFailure, MalformedResponse) as e:
                LOGGER.debug("Fetching a cursor for %r failed: %s",
                             self.path, e)
                interval = self._config.cursor_retry_interval
            else:
                self._cache.set(self.path, cursor, self._recursive)
                return cursor
            if signal.sleep(interval):
                raise CancellationRequested()

    def _refresh_cursor(self):
        # type: () -> None
        try:
            cursor = self._lifecycle.signal.call(
                self._api.latest_cursor, self.path, self._recursive)
        except (TransientNetworkFailure, MalformedResponse) as e:
            LOGGER.warning("Keeping the old cursor for %r: %s", self.path, e)
            return
        self._cursor = cursor
        self._cache.set(self.path, cursor, self._recursive)
