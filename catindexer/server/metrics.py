"""
Prometheus Metrics for CatIndexer

Collects scan-loop statistics in-process and renders them in the
Prometheus text exposition format for the /metrics endpoint:
- Blocks scanned and OP_CAT transactions found
- Checkpoint height
- Per-block processing time
"""

import time
from typing import Dict, Optional
from collections import defaultdict

from catindexer.lib import util


class MetricsCollector:
    """
    Collects and exposes Prometheus-compatible metrics.
    """

    HISTOGRAM_WINDOW = 1000

    def __init__(self, env=None):
        self.logger = util.class_logger(__name__, self.__class__.__name__)
        self.env = env

        # Counters (monotonically increasing)
        self.counters: Dict[str, int] = defaultdict(int)

        # Gauges (can go up or down)
        self.gauges: Dict[str, float] = defaultdict(float)

        # Histograms (for latency measurements)
        self.histograms: Dict[str, list] = defaultdict(list)

        self.start_time = time.time()

    # ========================================================================
    # Counters and gauges
    # ========================================================================

    def inc_counter(self, name: str, value: int = 1, labels: Dict[str, str] = None):
        """Increment a counter metric."""
        self.counters[self._make_key(name, labels)] += value

    def get_counter(self, name: str, labels: Dict[str, str] = None) -> int:
        return self.counters.get(self._make_key(name, labels), 0)

    def set_gauge(self, name: str, value: float, labels: Dict[str, str] = None):
        """Set a gauge metric value."""
        self.gauges[self._make_key(name, labels)] = value

    def get_gauge(self, name: str, labels: Dict[str, str] = None) -> float:
        return self.gauges.get(self._make_key(name, labels), 0.0)

    def observe_histogram(self, name: str, value: float, labels: Dict[str, str] = None):
        """Record a histogram observation."""
        key = self._make_key(name, labels)
        self.histograms[key].append(value)
        if len(self.histograms[key]) > self.HISTOGRAM_WINDOW:
            self.histograms[key] = self.histograms[key][-self.HISTOGRAM_WINDOW:]

    # ========================================================================
    # Metric Export
    # ========================================================================

    def generate_metrics(self) -> str:
        """Generate Prometheus text format metrics."""
        lines = []
        described = set()

        def describe(name, kind):
            if name not in described:
                described.add(name)
                lines.append(f'# HELP {name} {kind.capitalize()} metric')
                lines.append(f'# TYPE {name} {kind}')

        uptime = time.time() - self.start_time
        describe(MetricNames.UPTIME, 'gauge')
        lines.append(f'{MetricNames.UPTIME} {uptime:.2f}')
        lines.append('')

        for key, value in sorted(self.counters.items()):
            name, label_str = self._parse_key(key)
            describe(name, 'counter')
            lines.append(f'{name}{label_str} {value}')

        for key, value in sorted(self.gauges.items()):
            name, label_str = self._parse_key(key)
            describe(name, 'gauge')
            lines.append(f'{name}{label_str} {value:.6f}')

        for key, values in sorted(self.histograms.items()):
            if not values:
                continue
            name, label_str = self._parse_key(key)
            describe(name, 'summary')

            count = len(values)
            sorted_vals = sorted(values)
            lines.append(f'{name}_count{label_str} {count}')
            lines.append(f'{name}_sum{label_str} {sum(values):.6f}')
            for quantile in (0.5, 0.9, 0.99):
                value = sorted_vals[int(count * quantile)]
                if label_str:
                    lines.append(f'{name}{{quantile="{quantile}",{label_str[1:]} {value:.6f}')
                else:
                    lines.append(f'{name}{{quantile="{quantile}"}} {value:.6f}')

        return '\n'.join(lines) + '\n'

    def _make_key(self, name: str, labels: Dict[str, str] = None) -> str:
        """Create a unique key for a metric with labels."""
        if not labels:
            return name
        label_parts = [f'{k}="{v}"' for k, v in sorted(labels.items())]
        return f"{name}{{{','.join(label_parts)}}}"

    def _parse_key(self, key: str) -> tuple:
        """Parse a key back into name and label string."""
        if '{' in key:
            return key[:key.index('{')], key[key.index('{'):]
        return key, ''


class MetricNames:
    """Standard metric names for CatIndexer."""

    UPTIME = 'catindexer_uptime_seconds'

    BLOCKS_PROCESSED = 'catindexer_blocks_processed_total'
    BLOCK_PROCESSING_TIME = 'catindexer_block_processing_seconds'
    CAT_TXS_FOUND = 'catindexer_cat_txs_found_total'
    CHECKPOINT_HEIGHT = 'catindexer_checkpoint_height'
    SCAN_FAILURES = 'catindexer_scan_failures_total'


# Global metrics instance
_metrics: Optional[MetricsCollector] = None


def get_metrics() -> MetricsCollector:
    """Get the global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


def init_metrics(env) -> MetricsCollector:
    """Initialize the global metrics collector with environment."""
    global _metrics
    _metrics = MetricsCollector(env)
    return _metrics
