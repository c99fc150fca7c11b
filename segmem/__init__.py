"""Segmented memory server: fit algorithms, hole merging, compaction and its TCP protocol."""

__version__ = "0.1.0"
__all__ = ["__version__"]