import io
import logging

import mock
import pytest
import requests

from remotewatch.config import Config
from remotewatch.logs import configure_logging
from remotewatch.providers import DropboxProvider, WebDAVProvider
from remotewatch.watcher.etag import ETagObservationTask
from remotewatch.watcher.longpoll import CursorCache, CursorObservationTask


def test_webdav_url_quotes_path():
    provider = WebDAVProvider('https://dav.example.com/remote.php/dav/',
                              session=mock.Mock(spec=requests.Session))
    assert provider.url_for('my docs/') == (
        'https://dav.example.com/remote.php/dav/my%20docs')
    assert provider.url_for('/') == 'https://dav.example.com/remote.php/dav/'


def test_webdav_creates_etag_task():
    provider = WebDAVProvider('https://dav.example.com',
                              session=mock.Mock(spec=requests.Session))
    task = provider.create_observation_task('/docs', 'children',
                                            lambda: None)
    assert isinstance(task, ETagObservationTask)
    assert task.path == '/docs'


def test_dropbox_tasks_share_the_provider_cache():
    cache = CursorCache()
    provider = DropboxProvider('token', cursor_cache=cache,
                               session=mock.Mock(spec=requests.Session))
    first = provider.create_observation_task('/a', 'children', lambda: None)
    second = provider.create_observation_task('/b', 'children', lambda: None)
    assert isinstance(first, CursorObservationTask)
    assert isinstance(second, CursorObservationTask)
    assert provider.cursor_cache is cache


def test_dropbox_without_token_declines():
    provider = DropboxProvider(None,
                               session=mock.Mock(spec=requests.Session))
    assert provider.create_observation_task('/a', 'children',
                                            lambda: None) is None


class TestConfig(object):
    def test_defaults(self):
        config = Config()
        assert config.etag_interval == 20.0
        assert config.etag_failure_interval == 30.0
        assert config.longpoll_timeout == 30
        assert config.longpoll_read_timeout == 120.0

    def test_longpoll_timeout_is_clamped(self):
        assert Config.create(longpoll_timeout=5).longpoll_timeout == 30
        assert Config.create(longpoll_timeout=9000).longpoll_timeout == 480

    def test_unknown_option_rejected(self):
        with pytest.raises(TypeError):
            Config.create(poll_every=3)

    def test_from_env(self):
        config = Config.from_env({
            'REMOTEWATCH_ETAG_INTERVAL': '5',
            'REMOTEWATCH_LONGPOLL_URL': 'http://localhost/longpoll',
            'UNRELATED': 'x',
        })
        assert config.etag_interval == 5.0
        assert config.longpoll_url == 'http://localhost/longpoll'


def test_configure_logging_replaces_its_handler():
    stream = io.StringIO()
    configure_logging(logging.DEBUG, stream=stream)
    logger = configure_logging(logging.DEBUG, stream=stream)
    logging.getLogger('remotewatch.test').debug('hello')
    assert stream.getvalue().count('hello') == 1
    assert len([h for h in logger.handlers
                if getattr(h, '_remotewatch', False)]) == 1
