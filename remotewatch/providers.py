import logging

import requests
from urllib.parse import quote

from typing import Any, Callable, Optional  # noqa

from remotewatch.config import Config
from remotewatch.watcher.shared import ObservationTask, normalize_path  # noqa
from remotewatch.watcher.etag import ETagObservationTask, PropfindTagReader
from remotewatch.watcher.longpoll import (
    CursorCache, CursorObservationTask, DropboxNotifyAPI,
)


LOGGER = logging.getLogger(__name__)


class ObservationProvider(object):
    def create_observation_task(self, path, scope, on_changed):
        # type: (str, str, Callable[[], None]) -> Optional[ObservationTask]
        raise NotImplementedError('create_observation_task')


class WebDAVProvider(ObservationProvider):
    """Watches folders on a WebDAV server by polling their ETag."""
    def __init__(self, base_url, auth=None, session=None, config=None):
        # type: (str, Any, Optional[requests.Session], Optional[Config]) -> None
        self._base_url = base_url.rstrip('/')
        self._auth = auth
        self._session = session or requests.Session()
        self._config = config or Config()

    def url_for(self, path):
        # type: (str) -> str
        return self._base_url + quote(normalize_path(path) or '/')

    def create_observation_task(self, path, scope, on_changed):
        # type: (str, str, Callable[[], None]) -> Optional[ObservationTask]
        reader = PropfindTagReader(self._session, self.url_for(path),
                                   auth=self._auth,
                                   timeout=self._config.request_timeout)
        return ETagObservationTask(path, scope, on_changed, reader,
                                   config=self._config)

    def __repr__(self):
        # type: () -> str
        return 'WebDAVProvider(%r)' % self._base_url


class DropboxProvider(ObservationProvider):
    """Watches Dropbox folders with list_folder cursors and long-polls.

    Every task created by one provider shares its cursor cache, so a path
    that is watched again resumes from the last cursor seen for it.
    """
    def __init__(self, access_token, session=None, config=None,
                 cursor_cache=None):
        # type: (Optional[str], Optional[requests.Session], Optional[Config], Optional[CursorCache]) -> None
        self._access_token = access_token
        self._session = session or requests.Session()
        self._config = config or Config()
        if cursor_cache is None:
            cursor_cache = CursorCache()
        self.cursor_cache = cursor_cache

    def create_observation_task(self, path, scope, on_changed):
        # type: (str, str, Callable[[], None]) -> Optional[ObservationTask]
        if not self._access_token:
            LOGGER.warning("No Dropbox access token, not watching %r", path)
            return None
        api = DropboxNotifyAPI(self._session, self._access_token,
                               config=self._config)
        return CursorObservationTask(path, scope, on_changed, api,
                                     self.cursor_cache, config=self._config)

    def __repr__(self):
        # type: () -> str
        return 'DropboxProvider()'
