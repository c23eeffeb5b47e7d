"""Class for handling environment configuration and defaults."""

from os import environ

from catindexer.lib import util
from catindexer.lib.script import MatchStrategy


class Env:
    """Wraps environment configuration.  Optionally, accepts overrides."""

    class Error(Exception):
        pass

    # Height of the first signet block that can spend via OP_CAT
    DEFAULT_START_BLOCK = 193536

    def __init__(self, **overrides):
        self.logger = util.class_logger(__name__, self.__class__.__name__)
        self.bitcoind_url = self.default('BITCOIND_URL', '127.0.0.1')
        self.bitcoind_port = self.integer('BITCOIND_PORT', 38332)
        self.bitcoind_username = self.default('BITCOIND_USERNAME', '')
        self.bitcoind_password = self.default('BITCOIND_PASSWORD', '')
        self.rpc_timeout = self.integer('RPC_TIMEOUT', 30)
        self.start_block = self.integer('START_BLOCK', self.DEFAULT_START_BLOCK)
        self.db_dir = self.default('DB_DIRECTORY', 'db')
        self.db_engine = self.default('DB_ENGINE', 'leveldb')
        self.match_strategy = self.default('MATCH_STRATEGY', MatchStrategy.PREVOUT)
        self.report_file = self.default('REPORT_FILE', 'report.json')
        self.report_window = self.integer('REPORT_WINDOW', 1000)
        self.plot_file = self.default('PLOT_FILE', 'cat_txs.png')
        self.rest_host = self.default('REST_HOST', '127.0.0.1')
        self.rest_port = self.integer('REST_PORT', 8000)

        for key, value in overrides.items():
            if value is None:
                continue
            if not hasattr(self, key):
                raise self.Error(f'unknown setting {key}')
            setattr(self, key, value)

        self.validate()

    def validate(self):
        if self.match_strategy not in MatchStrategy.ALL:
            raise self.Error(f'unknown MATCH_STRATEGY {self.match_strategy!r}, '
                             f'expected one of {", ".join(MatchStrategy.ALL)}')
        if self.start_block < 0:
            raise self.Error(f'START_BLOCK must be non-negative, got {self.start_block}')
        if self.report_window <= 0:
            raise self.Error(f'REPORT_WINDOW must be positive, got {self.report_window}')

    @classmethod
    def default(cls, envvar, default):
        return environ.get(envvar, default)

    @classmethod
    def integer(cls, envvar, default):
        value = environ.get(envvar)
        if value is None:
            return default
        try:
            return int(value)
        except Exception:
            raise cls.Error(f'cannot convert envvar {envvar} value {value} '
                            f'to an integer')

    def daemon_url(self):
        """Return the RPC service URL, credentials included."""
        auth = ''
        if self.bitcoind_username:
            auth = f'{self.bitcoind_username}:{self.bitcoind_password}@'
        host = self.bitcoind_url
        if '://' in host:
            host = host.split('://', 1)[1]
        return f'http://{auth}{host}:{self.bitcoind_port}'

    def redacted_daemon_url(self):
        if not self.bitcoind_username:
            return self.daemon_url()
        return self.daemon_url().replace(f':{self.bitcoind_password}@', ':***@', 1)
