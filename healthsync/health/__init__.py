"""Server-side health engines: ingestion, rollups, summaries and the write-intent queue."""
