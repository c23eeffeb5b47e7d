"""
OP_CAT Transaction Index for CatIndexer

Persists the scan checkpoint and, for every scanned height, the set of
transactions found to spend through an OP_CAT tapscript.

Database Schema:
- CHECKPOINT          -> CBOR uint, the next height to scan
- <decimal height>    -> CBOR array of serialized transactions (with witness),
                         sorted by txid; logically a set keyed by txid

Keys are the ASCII decimal height so that an index directory written by
another implementation with the same key scheme can be reused.
"""

from typing import Dict, Iterable, List

import cbor2
from bitcoin.core import CTransaction, b2lx
from bitcoin.core.serialize import SerializationError

from catindexer.lib import util
from catindexer.server.storage import StoreError


class MatchDecodeError(Exception):
    """Raised when a stored match set cannot be decoded."""


class CatDBKeys:
    CHECKPOINT = b'CHECKPOINT'


def pack_height_key(height: int) -> bytes:
    return str(height).encode('ascii')


def unpack_height_key(key: bytes) -> int:
    return int(key.decode('ascii'))


def is_height_key(key: bytes) -> bool:
    return key.isdigit()


class CatIndex:
    """
    Checkpoint and per-height match sets on top of a storage handle.

    Single writer only: add_matches() is a read-modify-write and is not
    atomic against another process writing the same height.  Readers in a
    separate process are fine while no scan is running.
    """

    def __init__(self, db, env):
        self.logger = util.class_logger(__name__, self.__class__.__name__)
        self.db = db
        self.env = env
        self.start_block = getattr(env, 'start_block', 0)

    # ========================================================================
    # Checkpoint
    # ========================================================================

    def get_checkpoint(self) -> int:
        """Return the next height to scan, or the start height if unset."""
        raw = self.db.get(CatDBKeys.CHECKPOINT)
        if raw is None:
            return self.start_block
        try:
            height = cbor2.loads(raw)
        except cbor2.CBORDecodeError as e:
            raise StoreError(f'corrupt checkpoint: {e}') from e
        if not isinstance(height, int) or height < 0:
            raise StoreError(f'corrupt checkpoint value {height!r}')
        return height

    def set_checkpoint(self, height: int):
        """Durably record `height` as the next height to scan."""
        if self.db.get(CatDBKeys.CHECKPOINT) is not None:
            current = self.get_checkpoint()
            if height < current:
                raise StoreError(f'checkpoint cannot move back to {height:,d} '
                                 f'from {current:,d}')
        self.db.put(CatDBKeys.CHECKPOINT, cbor2.dumps(height))

    # ========================================================================
    # Match sets
    # ========================================================================

    def get_matches(self, height: int) -> Dict[str, CTransaction]:
        """Return {txid hex: transaction} for `height`, empty if none."""
        raw = self.db.get(pack_height_key(height))
        if raw is None:
            return {}
        return self._decode_matches(height, raw)

    def add_matches(self, height: int, txs: Iterable[CTransaction]) -> int:
        """
        Union `txs` into the match set stored at `height`.

        The entry is written even when `txs` is empty so that a scanned
        height is distinguishable from an unscanned one.  Returns the size
        of the resulting set.
        """
        matches = self.get_matches(height)
        for tx in txs:
            matches.setdefault(b2lx(tx.GetTxid()), tx)
        self.db.put(pack_height_key(height), self._encode_matches(matches))
        return len(matches)

    def count_matches(self, height: int) -> int:
        return len(self.get_matches(height))

    def heights(self) -> List[int]:
        """Heights that have a stored entry, ascending."""
        heights = [unpack_height_key(key)
                   for key, _value in self.db.iterator()
                   if is_height_key(key)]
        return sorted(heights)

    @staticmethod
    def _encode_matches(matches: Dict[str, CTransaction]) -> bytes:
        return cbor2.dumps([matches[txid].serialize() for txid in sorted(matches)])

    def _decode_matches(self, height: int, raw: bytes) -> Dict[str, CTransaction]:
        try:
            items = cbor2.loads(raw)
            if not isinstance(items, list):
                raise MatchDecodeError(f'match set at height {height:,d} is '
                                       f'a {type(items).__name__}, not a list')
            txs = [CTransaction.deserialize(item) for item in items]
        except (cbor2.CBORDecodeError, SerializationError, TypeError, ValueError) as e:
            raise MatchDecodeError(f'corrupt match set at height {height:,d}: {e}') from e
        return {b2lx(tx.GetTxid()): tx for tx in txs}
