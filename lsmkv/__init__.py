"""A log-structured merge-tree key-value store with sorted tables, compaction and a write-ahead log."""

__version__ = "0.1.0"