"""
Read-only queries over the OP_CAT index.

Totals, per-height time series for plotting and a detailed JSON report
of every matched transaction.  Nothing here writes to the index; heights
without an entry count as zero matches.
"""

import json
from typing import Any, Dict, List, Optional, Tuple

from bitcoin.core import CTransaction, b2lx, b2x

from catindexer.lib import util
from catindexer.lib.script import disassemble, tapscript_from_witness, witness_stack
from catindexer.server.block_processor import index_till


class CatReport:

    def __init__(self, cat_index, daemon, env):
        self.logger = util.class_logger(__name__, self.__class__.__name__)
        self.cat_index = cat_index
        self.daemon = daemon
        self.env = env
        self.start_block = getattr(env, 'start_block', 0)

    def index_till(self) -> int:
        return index_till(self.daemon.get_block_count())

    def _range(self, start: Optional[int], end: Optional[int]) -> Tuple[int, int]:
        if start is None:
            start = self.start_block
        if end is None:
            end = self.index_till()
        return start, end

    def get_cats_in_range(self, start: Optional[int] = None,
                          end: Optional[int] = None) -> List[Tuple[int, int]]:
        """(height, match count) for every height in [start, end)."""
        start, end = self._range(start, end)
        return [(height, self.cat_index.count_matches(height))
                for height in util.height_range(start, end)]

    def get_total_cat_txs(self, start: Optional[int] = None,
                          end: Optional[int] = None) -> int:
        return sum(count for _height, count in self.get_cats_in_range(start, end))

    # ========================================================================
    # Detail report
    # ========================================================================

    @staticmethod
    def tx_record(height: int, tx: CTransaction) -> Dict[str, Any]:
        """Expand a matched transaction into its report record."""
        asm, hexes = [], []
        for vin_idx in range(len(tx.vin)):
            script = tapscript_from_witness(witness_stack(tx, vin_idx))
            if script is None:
                continue
            asm.append(disassemble(script))
            hexes.append(script.hex())
        return {
            'height': height,
            'txid': b2lx(tx.GetTxid()),
            'tapscript_asm': '\n'.join(asm),
            'tapscript_hex': '\n'.join(hexes),
            'tx': b2x(tx.serialize()),
        }

    def report_records(self, window: Optional[int] = None) -> List[Dict[str, Any]]:
        """Records for the `window` heights ending at the checkpoint."""
        if window is None:
            window = self.env.report_window
        checkpoint = self.cat_index.get_checkpoint()
        records = []
        for height in util.height_range(max(0, checkpoint - window), checkpoint):
            matches = self.cat_index.get_matches(height)
            records.extend(self.tx_record(height, matches[txid])
                           for txid in sorted(matches))
        return records

    def generate_report(self, path: Optional[str] = None,
                        window: Optional[int] = None) -> int:
        """Write the detail report as JSON; returns the number of records."""
        path = path or self.env.report_file
        records = self.report_records(window)
        with open(path, 'w') as f:
            json.dump(records, f, indent=2)
        self.logger.info(f'wrote {len(records):,d} records to {path}')
        return len(records)

    # ========================================================================
    # Plot
    # ========================================================================

    def plot(self, path: Optional[str] = None, start: Optional[int] = None,
             end: Optional[int] = None) -> int:
        """Render match count per height to an image; returns points plotted."""
        import matplotlib
        matplotlib.use('Agg')
        import matplotlib.pyplot as plt

        path = path or self.env.plot_file
        series = self.get_cats_in_range(start, end)
        heights = [height for height, _count in series]
        counts = [count for _height, count in series]

        fig, ax = plt.subplots(figsize=(12, 6))
        ax.plot(heights, counts, label='OP_CAT transactions')
        ax.set_xlabel('Block height')
        ax.set_ylabel('Count of transactions')
        ax.set_title('OP_CAT transactions per block')
        ax.legend()
        fig.savefig(path)
        plt.close(fig)

        self.logger.info(f'plotted {len(series):,d} heights to {path}')
        return len(series)
