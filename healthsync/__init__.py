"""healthsync: personal health sample sync, rollups, summaries and write-back."""

__version__ = "0.1.0"
