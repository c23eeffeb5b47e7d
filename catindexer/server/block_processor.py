"""Block processor: walks the chain and records OP_CAT spends by height."""

import time
from typing import List

from bitcoin.core import CTransaction, b2lx

from catindexer.lib import util
from catindexer.server.metrics import MetricNames, get_metrics


# Blocks this close to the tip are never indexed; they may still reorg.
BLOCK_DEPTH = 6


class ScanState:
    IDLE = 'idle'
    RUNNING = 'running'
    COMPLETED = 'completed'
    FAILED = 'failed'


def index_till(tip: int) -> int:
    """First height that is too close to `tip` to be indexed."""
    return max(0, tip - BLOCK_DEPTH)


class BlockProcessor:
    """
    Process blocks from the daemon in height order.

    Each height is committed in two synchronous steps: its match set, then
    the checkpoint advanced past it.  A crash between or before them leaves
    the checkpoint at that height, and re-scanning it is harmless because
    match sets are unioned.
    """

    def __init__(self, env, cat_index, daemon, matcher, metrics=None):
        self.logger = util.class_logger(__name__, self.__class__.__name__)
        self.env = env
        self.cat_index = cat_index
        self.daemon = daemon
        self.matcher = matcher
        self.metrics = metrics or get_metrics()
        self.state = ScanState.IDLE
        self.height = None

    def start(self) -> int:
        """Scan from the checkpoint up to the safety margin.

        Returns the number of heights processed.  Any error leaves the
        processor FAILED and is re-raised.
        """
        self.state = ScanState.RUNNING
        try:
            count = self._scan()
        except Exception:
            self.state = ScanState.FAILED
            self.metrics.inc_counter(MetricNames.SCAN_FAILURES)
            self.logger.exception(f'scan aborted at height {self.height}')
            raise
        self.state = ScanState.COMPLETED
        return count

    def _scan(self) -> int:
        tip = self.daemon.get_block_count()
        if tip < BLOCK_DEPTH:
            self.logger.info(f'tip {tip:,d} is within the safety margin; '
                             f'nothing to index')
            return 0
        last = index_till(tip)

        checkpoint = self.cat_index.get_checkpoint()
        self.logger.info(f'current checkpoint height: {checkpoint:,d}')
        self.logger.info(f'indexing up to height {last:,d} (tip {tip:,d})')

        count = 0
        for height in util.height_range(checkpoint, last):
            self.height = height
            start = time.monotonic()
            block = self.daemon.get_block_at(height)
            txs = self.process_block(height, block)
            self.cat_index.add_matches(height, txs)
            self.cat_index.set_checkpoint(height + 1)
            count += 1

            self.metrics.inc_counter(MetricNames.BLOCKS_PROCESSED)
            self.metrics.inc_counter(MetricNames.CAT_TXS_FOUND, len(txs))
            self.metrics.set_gauge(MetricNames.CHECKPOINT_HEIGHT, height + 1)
            self.metrics.observe_histogram(MetricNames.BLOCK_PROCESSING_TIME,
                                           time.monotonic() - start)

        self.logger.info(f'processed {count:,d} blocks; '
                         f'checkpoint is now {self.cat_index.get_checkpoint():,d}')
        return count

    def process_block(self, height: int, block) -> List[CTransaction]:
        """Return the transactions in `block` that spend via OP_CAT."""
        self.logger.info(f'parsing block height: {height}')
        txs = []
        for tx in block.vtx:
            if self.matcher.tx_matches(tx):
                self.logger.debug(f'found cat in witness for txid: {b2lx(tx.GetTxid())}')
                txs.append(tx)
        self.logger.info(f'block height: {height}, cat txs: {len(txs)}')
        return txs
