"""Backend database abstraction."""

import os

from catindexer.lib import util


class StoreError(Exception):
    """Raised when the backend cannot read, write or decode stored data."""


def db_class(name):
    """Returns a DB engine class."""
    for db_class in Storage.__subclasses__():
        if db_class.__name__.lower() == name.lower():
            db_class.import_module()
            return db_class
    raise RuntimeError(f'unrecognised DB engine "{name}"')


def open_storage(env):
    """Open the index database named by the environment."""
    return db_class(env.db_engine)(env.db_dir)


class Storage:
    """
    Abstract base class of the DB backend abstraction.

    Every write is synchronous: it has reached stable storage when the
    call returns.
    """

    def __init__(self, name):
        self.logger = util.class_logger(__name__, self.__class__.__name__)
        self.is_new = not os.path.exists(name)
        self.open(name, create=self.is_new)
        if self.is_new:
            self.logger.info(f'created new database {name}')

    @classmethod
    def import_module(cls):
        """Import the DB engine module."""
        raise NotImplementedError

    def open(self, name, create):
        """Open an existing database or create a new one."""
        raise NotImplementedError

    def close(self):
        """Close an existing database."""
        raise NotImplementedError

    def get(self, key):
        raise NotImplementedError

    def put(self, key, value):
        raise NotImplementedError

    def iterator(self, prefix=b'', reverse=False):
        """Return an iterator that yields (key, value) pairs from the
        database sorted by key.

        If `prefix` is set, only keys starting with `prefix` will be
        included.  If `reverse` is True the items are returned in
        reverse order.
        """
        raise NotImplementedError


class LevelDB(Storage):
    """LevelDB database engine."""

    @classmethod
    def import_module(cls):
        import plyvel
        cls.module = plyvel

    def open(self, name, create):
        try:
            self.db = self.module.DB(name, create_if_missing=create)
        except self.module.Error as e:
            raise StoreError(f'cannot open database {name}: {e}') from e

    def close(self):
        self.db.close()

    def get(self, key):
        try:
            return self.db.get(key)
        except self.module.Error as e:
            raise StoreError(f'read of {key!r} failed: {e}') from e

    def put(self, key, value):
        try:
            self.db.put(key, value, sync=True)
        except self.module.Error as e:
            raise StoreError(f'write of {key!r} failed: {e}') from e

    def iterator(self, prefix=b'', reverse=False):
        if prefix:
            return self.db.iterator(prefix=prefix, reverse=reverse)
        return self.db.iterator(reverse=reverse)
