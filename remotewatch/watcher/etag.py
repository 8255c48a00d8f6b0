import logging
from xml.etree import ElementTree

import requests

from typing import Any, Callable, Optional, Tuple  # noqa

from remotewatch.config import Config
from remotewatch.watcher.shared import (
    ObservationTask, TaskLifecycle, StopSignal, CancellationRequested,
    TransientNetworkFailure, AuthenticationFailed, MalformedResponse,
)


LOGGER = logging.getLogger(__name__)

PROPFIND_BODY = (
    '<?xml version="1.0" encoding="utf-8" ?>\n'
    '<D:propfind xmlns:D="DAV:">\n'
    '<D:allprop/></D:propfind>'
)
PROPFIND_HEADERS = {
    'Depth': '1',
    'Content-Type': 'text/xml; charset="utf-8"',
}


def _local_name(tag):
    # type: (Any) -> str
    if not isinstance(tag, str):
        # Comments and processing instructions.
        return ''
    return tag.rsplit('}', 1)[-1].lower()


def _children(node, suffix):
    # type: (ElementTree.Element, str) -> Any
    return (child for child in node if _local_name(child.tag).endswith(suffix))


def parse_etag(data):
    # type: (bytes) -> Optional[str]
    """Return the getetag value of the first response in a multistatus.

    Element names are matched on their local part so any namespace prefix
    the server picks is accepted.  Returns None when the document cannot be
    parsed or carries no tag.
    """
    try:
        root = ElementTree.fromstring(data)
    except (ElementTree.ParseError, ValueError, LookupError):
        return None
    multistatus = root
    for node in root.iter():
        if _local_name(node.tag).endswith('multistatus'):
            multistatus = node
            break
    response = next(_children(multistatus, 'response'), None)
    if response is None:
        return None
    for propstat in _children(response, 'propstat'):
        for prop in _children(propstat, 'prop'):
            for value in _children(prop, 'getetag'):
                if value.text and value.text.strip():
                    return value.text.strip()
    return None


class PropfindTagReader(object):
    def __init__(self, session, url, auth=None, timeout=30.0):
        # type: (requests.Session, str, Any, float) -> None
        self._session = session
        self._url = url
        self._auth = auth
        self._timeout = timeout

    @property
    def url(self):
        # type: () -> str
        return self._url

    def read_tag(self):
        # type: () -> str
        try:
            response = self._session.request(
                'PROPFIND', self._url, headers=PROPFIND_HEADERS,
                data=PROPFIND_BODY.encode('utf-8'), auth=self._auth,
                timeout=self._timeout)
        except requests.RequestException as e:
            raise TransientNetworkFailure(
                "PROPFIND %s failed: %s" % (self._url, e))
        if response.status_code == 401:
            raise AuthenticationFailed(
                "PROPFIND %s was rejected: 401" % self._url)
        if not 200 <= response.status_code < 300:
            raise TransientNetworkFailure(
                "PROPFIND %s returned %s" % (self._url, response.status_code))
        tag = parse_etag(response.content)
        if tag is None:
            raise MalformedResponse(
                "PROPFIND %s response carries no getetag" % self._url)
        return tag


class ETagObservationTask(ObservationTask):
    """Polls a WebDAV resource and fires when its ETag changes.

    The first tag read only sets the baseline.  A read that fails resets
    the baseline too, so the loop never reports a change across a gap in
    which it could not see the resource.
    """
    def __init__(self, path, scope, changed, reader, config=None,
                 stop_signal=None):
        # type: (str, str, Callable[[], None], PropfindTagReader, Optional[Config], Optional[StopSignal]) -> None
        self._lifecycle = TaskLifecycle(path, scope, changed, stop_signal)
        self._reader = reader
        self._config = config or Config()
        self._last_tag = None  # type: Optional[str]
        self._auth_failing = False

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
    def last_tag(self):
        # type: () -> Optional[str]
        return self._last_tag

    def start(self):
        # type: () -> None
        if not self._lifecycle.begin():
            return
        LOGGER.debug("Watching %s via ETag polling", self._reader.url)
        signal = self._lifecycle.signal
        try:
            while not signal.is_set():
                backoff = self.poll_once()
                if signal.sleep(backoff):
                    break
        except CancellationRequested:
            pass
        LOGGER.debug("Stopped watching %s", self._reader.url)

    def stop(self):
        # type: () -> None
        self._lifecycle.stop()

    def fire_changed(self):
        # type: () -> None
        self._lifecycle.fire_changed()

    def poll_once(self):
        # type: () -> float
        """Read the current tag once and return the backoff to apply."""
        signal = self._lifecycle.signal
        backoff = self._config.etag_interval
        try:
            tag = signal.call(self._reader.read_tag)  # type: Optional[str]
        except AuthenticationFailed as e:
            if not self._auth_failing:
                LOGGER.error("%s; retrying in %ss", e,
                             self._config.auth_failure_interval)
            self._auth_failing = True
            tag = None
            backoff = self._config.auth_failure_interval
        except (TransientNetworkFailure, MalformedResponse) as e:
            LOGGER.debug("Could not read ETag: %s", e)
            tag = None
            backoff = self._config.etag_failure_interval
        else:
            self._auth_failing = False
        if signal.is_set():
            raise CancellationRequested()
        self.record_tag(tag)
        return backoff

    def record_tag(self, tag):
        # type: (Optional[str]) -> bool
        previous, self._last_tag = self._last_tag, tag
        if previous is not None and tag is not None and previous != tag:
            LOGGER.info("%s changed (ETag %s -> %s)", self.path, previous, tag)
            self.fire_changed()
            return True
        return False
