"""On-disk records, IO helpers and file locks."""
