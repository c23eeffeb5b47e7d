"""Read-only access to a bitcoind node over JSON-RPC."""

from http.client import HTTPException

import bitcoin.rpc
from bitcoin.core import b2lx

from catindexer.lib import util


class ChainSourceError(Exception):
    """Raised when the node cannot be reached or returns an RPC error."""


class Daemon:
    """
    Thin wrapper around python-bitcoinlib's RPC proxy.

    Every transport or RPC failure is re-raised as ChainSourceError so
    callers have a single error type to abort on.
    """

    # The proxy reports unknown heights, hashes and txids as IndexError
    RPC_ERRORS = (bitcoin.rpc.JSONRPCError, HTTPException, IndexError, OSError,
                  ValueError)

    def __init__(self, env, proxy=None):
        self.logger = util.class_logger(__name__, self.__class__.__name__)
        self.env = env
        if proxy is None:
            proxy = bitcoin.rpc.Proxy(service_url=env.daemon_url(),
                                      timeout=env.rpc_timeout)
        self.proxy = proxy
        self.logger.info(f'daemon at {env.redacted_daemon_url()}')

    def _call(self, what, func, *args):
        try:
            return func(*args)
        except self.RPC_ERRORS as e:
            raise ChainSourceError(f'{what} failed: {e}') from e

    def get_block_count(self) -> int:
        return self._call('getblockcount', self.proxy.getblockcount)

    def get_block_hash(self, height: int) -> bytes:
        return self._call(f'getblockhash {height:,d}',
                          self.proxy.getblockhash, height)

    def get_block(self, block_hash: bytes):
        """Return the CBlock with the given hash."""
        return self._call(f'getblock {b2lx(block_hash)}',
                          self.proxy.getblock, block_hash)

    def get_raw_transaction(self, txid: bytes):
        """Return the CTransaction with the given txid (needs -txindex)."""
        return self._call(f'getrawtransaction {b2lx(txid)}',
                          self.proxy.getrawtransaction, txid)

    def get_block_at(self, height: int):
        return self.get_block(self.get_block_hash(height))
