"""Miscellaneous helpers shared by the indexer modules."""

import logging


def class_logger(path, classname):
    """Return a hierarchical logger for a class."""
    return logging.getLogger(path).getChild(classname)


def height_range(start: int, end: int) -> range:
    """Heights in [start, end), empty when end <= start."""
    return range(start, max(start, end))
