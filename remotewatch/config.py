import os

from typing import Any, Dict, Mapping, Optional  # noqa


DROPBOX_CURSOR_URL = (
    'https://api.dropboxapi.com/2/files/list_folder/get_latest_cursor')
DROPBOX_LONGPOLL_URL = (
    'https://notify.dropboxapi.com/2/files/list_folder/longpoll')

# Dropbox only accepts long-poll timeouts in this range.
MIN_LONGPOLL_TIMEOUT = 30
MAX_LONGPOLL_TIMEOUT = 480

# Upper bound on a server-requested backoff before the next long-poll.
MAX_SERVER_BACKOFF = 3600


class Config(object):
    """Timing and endpoint settings shared by the observation tasks.

    All intervals are in seconds.  Values can be overridden per instance
    with ``Config.create(**overrides)`` or read from ``REMOTEWATCH_*``
    environment variables with ``Config.from_env()``.
    """
    _DEFAULTS = {
        'etag_interval': 20.0,
        'etag_failure_interval': 30.0,
        'auth_failure_interval': 300.0,
        'cursor_retry_interval': 1.0,
        'longpoll_timeout': 30,
        'longpoll_failure_interval': 30.0,
        'request_timeout': 30.0,
        'cursor_url': DROPBOX_CURSOR_URL,
        'longpoll_url': DROPBOX_LONGPOLL_URL,
    }  # type: Dict[str, Any]

    def __init__(self, **options):
        # type: (**Any) -> None
        unknown = set(options) - set(self._DEFAULTS)
        if unknown:
            raise TypeError("Unknown config option(s): %s"
                            % ', '.join(sorted(unknown)))
        values = dict(self._DEFAULTS)
        values.update(options)
        self.etag_interval = float(values['etag_interval'])
        self.etag_failure_interval = float(values['etag_failure_interval'])
        self.auth_failure_interval = float(values['auth_failure_interval'])
        self.cursor_retry_interval = float(values['cursor_retry_interval'])
        self.longpoll_timeout = min(
            max(int(values['longpoll_timeout']), MIN_LONGPOLL_TIMEOUT),
            MAX_LONGPOLL_TIMEOUT)
        self.longpoll_failure_interval = float(
            values['longpoll_failure_interval'])
        self.request_timeout = float(values['request_timeout'])
        self.cursor_url = values['cursor_url']
        self.longpoll_url = values['longpoll_url']

    @classmethod
    def create(cls, **overrides):
        # type: (**Any) -> Config
        return cls(**overrides)

    @classmethod
    def from_env(cls, environ=None):
        # type: (Optional[Mapping[str, str]]) -> Config
        if environ is None:
            environ = os.environ
        overrides = {}
        for key in cls._DEFAULTS:
            env_name = 'REMOTEWATCH_%s' % key.upper()
            if env_name in environ:
                overrides[key] = environ[env_name]
        return cls(**overrides)

    @property
    def longpoll_read_timeout(self):
        # type: () -> float
        # The server may add up to 90 seconds of jitter to the requested
        # long-poll timeout before answering.
        return self.longpoll_timeout + 90.0
